"""
LLM abstraction layer and resilience helpers for external calls.
"""

from .llm_manager import LLMManager, parse_json_response, resolve_env_vars
from .providers import LLMProvider, OpenAIProvider, AnthropicProvider, ProviderSettings
from .resilience import Deadline, RetryPolicy, call_with_retry

__all__ = [
    "LLMManager", "parse_json_response", "resolve_env_vars",
    "LLMProvider", "OpenAIProvider", "AnthropicProvider", "ProviderSettings",
    "Deadline", "RetryPolicy", "call_with_retry",
]
