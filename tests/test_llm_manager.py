"""
Tests for the LLM manager and the resilience helpers.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from reply_engine.errors import PipelineTimeoutError, UpstreamAnalysisError, ValidationError
from reply_engine.models.llm_manager import LLMManager, parse_json_response, resolve_env_vars
from reply_engine.models.resilience import Deadline, RetryPolicy, call_with_retry


class TestLLMManager:
    """Test LLM Manager functionality."""

    @pytest.fixture
    def config(self):
        return {
            "llm": {
                "default_provider": "openai",
                "openai": {
                    "api_key": "test_key",
                    "model": "gpt-4o-mini",
                    "temperature": 0.1,
                    "max_tokens": 2000
                }
            }
        }

    @pytest.fixture
    def llm_manager(self, config):
        with patch("openai.AsyncOpenAI") as mock_client:
            mock_client.return_value = Mock()
            return LLMManager(config)

    def test_initialization(self, llm_manager):
        """Test LLM manager initialization."""
        assert llm_manager.default_provider == "openai"
        assert "openai" in llm_manager.providers

    @pytest.mark.asyncio
    async def test_generate(self, llm_manager):
        """Test text generation."""
        mock_response = Mock()
        mock_response.choices = [Mock()]
        mock_response.choices[0].message.content = "Test response"

        llm_manager.providers["openai"].client.chat.completions.create = AsyncMock(return_value=mock_response)

        result = await llm_manager.generate("Test prompt")
        assert result == "Test response"

    @pytest.mark.asyncio
    async def test_system_prompt_and_overrides(self, llm_manager):
        """Test that the system prompt is sent first and call overrides win over config."""
        mock_response = Mock()
        mock_response.choices = [Mock()]
        mock_response.choices[0].message.content = None
        create = AsyncMock(return_value=mock_response)
        llm_manager.providers["openai"].client.chat.completions.create = create

        result = await llm_manager.generate("Where is my refund?", temperature=0.0)

        assert result == ""
        kwargs = create.await_args.kwargs
        assert kwargs["messages"][0]["role"] == "system"
        assert kwargs["messages"][1] == {"role": "user", "content": "Where is my refund?"}
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 2000
        assert llm_manager.get_usage() == {"openai": 1}

    def test_missing_key_skips_provider(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        config = {"llm": {"openai": {"api_key": "test_key"}, "anthropic": {"api_key": "${ANTHROPIC_API_KEY}"}}}

        with patch("openai.AsyncOpenAI"):
            manager = LLMManager(config)

        assert manager.get_available_providers() == ["openai"]
        assert manager.default_provider == "openai"

    def test_unknown_provider(self, llm_manager):
        with pytest.raises(ValueError):
            llm_manager._get_provider("local")

    def test_no_providers(self):
        with pytest.raises(ValueError):
            LLMManager({"llm": {}})

    def test_get_available_providers(self, llm_manager):
        """Test getting available providers."""
        providers = llm_manager.get_available_providers()
        assert "openai" in providers


class TestJSONParsing:

    def test_object_wrapped_in_prose(self):
        assert parse_json_response('Sure! {"language": "fr", "confidence": 0.9} Hope this helps.') == {
            "language": "fr",
            "confidence": 0.9,
        }

    def test_array(self):
        assert parse_json_response("[1, 2, 3]") == [1, 2, 3]

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_json_response("no json here")

    def test_resolve_env_vars(self, monkeypatch):
        monkeypatch.setenv("REPLY_TEST_KEY", "secret")
        assert resolve_env_vars("${REPLY_TEST_KEY}") == "secret"
        assert resolve_env_vars("${REPLY_MISSING_KEY}") == "${REPLY_MISSING_KEY}"


class TestCallWithRetry:

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        policy = RetryPolicy(timeout=1.0, max_attempts=3, base_delay=0.0)
        assert await call_with_retry(flaky, "flaky", policy) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_upstream_error(self):
        async def broken():
            raise ConnectionError("down")

        policy = RetryPolicy(timeout=1.0, max_attempts=2, base_delay=0.0)
        with pytest.raises(UpstreamAnalysisError) as exc_info:
            await call_with_retry(broken, "classify", policy)

        assert exc_info.value.operation == "classify"
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_validation_error_is_not_retried(self):
        calls = []

        async def invalid():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            await call_with_retry(invalid, "validate", RetryPolicy(max_attempts=3, base_delay=0.0))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_per_call_timeout(self):
        async def slow():
            await asyncio.sleep(1.0)

        policy = RetryPolicy(timeout=0.01, max_attempts=2, base_delay=0.0)
        with pytest.raises(UpstreamAnalysisError):
            await call_with_retry(slow, "slow", policy)

    @pytest.mark.asyncio
    async def test_expired_deadline(self):
        async def slow():
            await asyncio.sleep(1.0)

        deadline = Deadline(0.01)
        await asyncio.sleep(0.02)
        policy = RetryPolicy(timeout=5.0, max_attempts=3, base_delay=0.0)
        with pytest.raises(PipelineTimeoutError):
            await call_with_retry(slow, "slow", policy, deadline)

    def test_deadline_bounds_timeout(self):
        assert Deadline.unbounded().bound(3.0) == 3.0
        assert Deadline(1.0).bound(30.0) <= 1.0
