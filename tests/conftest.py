"""
Shared fixtures and fakes for the reply engine tests.
"""

import asyncio
import hashlib
import json
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from reply_engine.index.embedder import Embedder, EmbedderRegistry
from reply_engine.models.llm_manager import LLMManager
from reply_engine.models.resilience import RetryPolicy


class FakeEmbedder(Embedder):
    """Deterministic embedder; known texts map to fixed vectors."""

    def __init__(self, model_version="fake:v1", vectors=None, dimension=2, delay=0.0):
        self.model_version = model_version
        self.vectors = dict(vectors or {})
        self.dimension = dimension
        self.delay = delay
        self.calls = []
        self.fail_with = None

    async def embed(self, text):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float32)
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        return np.random.default_rng(seed).normal(size=self.dimension).astype(np.float32)


def scripted_llm(responses):
    """
    Mock LLM manager whose generate() answers by prompt keyword.

    ``responses`` maps a substring of the prompt to a string, a dict (sent as
    JSON) or an exception instance to raise.
    """
    llm = Mock(spec=LLMManager)

    async def generate(prompt, **kwargs):
        for key, response in responses.items():
            if key in prompt:
                if isinstance(response, Exception):
                    raise response
                return json.dumps(response) if isinstance(response, (dict, list)) else response
        raise RuntimeError("no scripted response")

    llm.generate = AsyncMock(side_effect=generate)
    llm.embed = AsyncMock(return_value=[1.0, 0.0])
    llm.get_available_providers = Mock(return_value=["fake"])
    llm.get_usage = Mock(return_value={"fake": 0})
    return llm


HAPPY_RESPONSES = {
    "Identify the language": {"language": "en", "confidence": 0.98},
    "Analyze the sentiment": {"sentiment": "neutral", "score": 0.9, "explanation": "Plain request"},
    "Identify the intent": {"intent": "how_to", "confidence": 0.9, "entities": []},
    "customer support agent": "Go to Settings > Security > Reset Password and follow the prompts.",
    "Translate the following": "Allez dans Paramètres > Sécurité > Réinitialiser le mot de passe.",
}


@pytest.fixture
def fast_retry():
    return RetryPolicy(timeout=1.0, max_attempts=2, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def registry(embedder):
    registry = EmbedderRegistry()
    registry.register(embedder)
    return registry


@pytest.fixture
def happy_llm():
    return scripted_llm(HAPPY_RESPONSES)


@pytest.fixture
def engine_config(tmp_path):
    return {
        "index": {"storage_path": str(tmp_path / "index")},
        "kb": {"storage_path": str(tmp_path / "kb")},
        "learning": {"storage_path": str(tmp_path / "learning")},
        "resilience": {"timeout": 1.0, "max_attempts": 2, "base_delay": 0.0, "max_delay": 0.0},
        "composer": {"deadline_seconds": 5},
        "regeneration": {"max_concurrent": 2},
        "debug": {"enabled": False},
    }
