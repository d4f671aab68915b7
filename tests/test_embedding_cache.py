"""
Tests for the single-flight embedding cache.
"""

import asyncio

import pytest

from reply_engine.errors import PipelineTimeoutError, UpstreamAnalysisError, ValidationError
from reply_engine.index.embedder import EmbedderRegistry
from reply_engine.index.embedding_cache import EmbeddingCache
from reply_engine.models.resilience import Deadline

from conftest import FakeEmbedder


class TestEmbeddingCache:
    """Test embedding cache functionality."""

    @pytest.fixture
    def slow_embedder(self):
        return FakeEmbedder(vectors={"reset password": [1.0, 0.0]}, delay=0.05)

    @pytest.fixture
    def cache(self, slow_embedder, fast_retry):
        registry = EmbedderRegistry()
        registry.register(slow_embedder)
        return EmbeddingCache({"capacity": 2}, registry, fast_retry)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self, cache, slow_embedder):
        """Test that simultaneous requests for one key embed once."""
        results = await asyncio.gather(*(cache.get_or_compute("reset password") for _ in range(10)))

        assert len(slow_embedder.calls) == 1
        assert all(result is results[0] for result in results)
        stats = cache.get_stats()
        assert stats["computations"] == 1
        assert stats["shared"] == 9
        assert stats["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_cached_vector_is_read_only(self, cache):
        vector = await cache.get_or_compute("reset password")

        with pytest.raises(ValueError):
            vector[0] = 5.0
        assert await cache.get_or_compute("reset password") is vector
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter_and_is_not_cached(self, cache, slow_embedder):
        slow_embedder.fail_with = ConnectionError("embedding service down")

        results = await asyncio.gather(
            *(cache.get_or_compute("reset password") for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(result, UpstreamAnalysisError) for result in results)
        assert len(cache) == 0

        slow_embedder.fail_with = None
        vector = await cache.get_or_compute("reset password")
        assert list(vector) == [1.0, 0.0]
        assert cache.computations == 2

    @pytest.mark.asyncio
    async def test_lru_eviction(self, cache):
        await cache.get_or_compute("one")
        await cache.get_or_compute("two")
        await cache.get_or_compute("one")
        await cache.get_or_compute("three")

        assert len(cache) == 2
        version = cache.registry.current_version
        assert cache.invalidate("one", version)
        assert not cache.invalidate("two", version)

    @pytest.mark.asyncio
    async def test_versions_do_not_share_entries(self, cache):
        other = FakeEmbedder(model_version="fake:v2", dimension=3)
        cache.registry.register(other)

        first = await cache.get_or_compute("hello")
        second = await cache.get_or_compute("hello", "fake:v2")

        assert first.shape == (2,)
        assert second.shape == (3,)

    @pytest.mark.asyncio
    async def test_deadline_does_not_cancel_shared_work(self, cache, slow_embedder):
        task = asyncio.ensure_future(cache.get_or_compute("reset password"))

        with pytest.raises(PipelineTimeoutError):
            await cache.get_or_compute("reset password", deadline=Deadline(0.001))

        vector = await task
        assert list(vector) == [1.0, 0.0]
        assert len(slow_embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_rejects_empty_text_and_unknown_version(self, cache):
        with pytest.raises(ValidationError):
            await cache.get_or_compute("   ")
        with pytest.raises(ValidationError):
            await cache.get_or_compute("hello", "missing:v9")
