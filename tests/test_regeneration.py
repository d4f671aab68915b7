"""
Tests for item embedding and batch regeneration.
"""

import asyncio

import pytest

from reply_engine.index.embedder import EmbedderRegistry
from reply_engine.index.embedding_cache import EmbeddingCache
from reply_engine.index.regeneration import EmbeddingRegenerator
from reply_engine.index.vector_index import VectorIndex
from reply_engine.kb.knowledge_store import KnowledgeStore

from conftest import FakeEmbedder

OLD = "fake:v1"
NEW = "fake:v2"


class GatedEmbedder(FakeEmbedder):
    """Blocks on texts containing a marker until the gate opens."""

    def __init__(self, marker, **kwargs):
        super().__init__(**kwargs)
        self.marker = marker
        self.gate = asyncio.Event()

    async def embed(self, text):
        if self.marker in text:
            await self.gate.wait()
        return await super().embed(text)


class TestEmbeddingRegenerator:
    """Test regeneration after an embedding model upgrade."""

    @pytest.fixture
    def setup(self, fast_retry):
        index = VectorIndex()
        store = KnowledgeStore(vector_index=index)
        old = FakeEmbedder(model_version=OLD, dimension=2)
        new = GatedEmbedder("Slow", model_version=NEW, dimension=3)
        registry = EmbedderRegistry()
        registry.register(old)
        registry.register(new, current=True)
        cache = EmbeddingCache({}, registry, fast_retry)
        regenerator = EmbeddingRegenerator({"max_concurrent": 1}, store, index, cache, registry)

        for title in ("Alpha", "Beta", "Slow gamma"):
            item = store.create_item(title, f"{title} content")
            index.upsert(item.id, [1.0, 0.0], OLD, item.index_attributes(), item.content_hash)
            store.mark_embedded(item.id, OLD)
        return store, index, new, regenerator

    @pytest.mark.asyncio
    async def test_embed_item_marks_version(self, setup):
        store, index, new, regenerator = setup
        new.gate.set()
        item = store.get_all_items()[0]

        record = await regenerator.embed_item(item)

        assert record.model_version == NEW
        assert record.content_hash == item.content_hash
        assert store.get_item(item.id).embedding_model_version == NEW
        assert regenerator.is_current(item, NEW)

    @pytest.mark.asyncio
    async def test_interrupted_pass_resumes_without_reprocessing(self, setup):
        """Test that a second pass skips items the cancelled pass finished."""
        store, index, new, regenerator = setup

        job = regenerator.start()
        for _ in range(200):
            if job.succeeded == 2:
                break
            await asyncio.sleep(0.01)
        job.cancel()
        await job.wait()

        assert job.status == "cancelled"
        assert job.succeeded == 2
        assert index.count(OLD) == 3

        new.gate.set()
        resumed = await regenerator.start().wait()

        assert resumed.status == "completed"
        assert resumed.skipped == 2
        assert resumed.succeeded == 1
        assert index.versions() == [NEW]
        for item in store.get_all_items():
            record = index.get_record(item.id, NEW)
            assert record.content_hash == item.content_hash
            assert item.embedding_model_version == NEW

    @pytest.mark.asyncio
    async def test_purge_only_after_clean_pass(self, setup):
        store, index, new, regenerator = setup
        new.gate.set()
        new.fail_with = ConnectionError("embedding service down")

        failed = await regenerator.start().wait()

        assert failed.status == "failed"
        assert failed.failed == 3
        assert failed.purged == 0
        assert index.count(OLD) == 3

        new.fail_with = None
        clean = await regenerator.start().wait()

        assert clean.status == "completed"
        assert clean.purged == 3
        assert index.count(OLD) == 0
        assert index.count(NEW) == 3

    @pytest.mark.asyncio
    async def test_start_returns_active_job(self, setup):
        store, index, new, regenerator = setup

        first = regenerator.start()
        second = regenerator.start()

        assert first is second
        new.gate.set()
        await first.wait()
        assert regenerator.active_job.done

    @pytest.mark.asyncio
    async def test_content_edit_invalidates_vectors(self, setup):
        store, index, new, regenerator = setup
        new.gate.set()
        await regenerator.start().wait()
        item = store.get_all_items()[0]

        store.update_item(item.id, content="Rewritten content")

        assert index.get_record(item.id, NEW) is None
        assert item.embedding_model_version is None
        assert not regenerator.is_current(item, NEW)

        rerun = await regenerator.start().wait()
        assert rerun.succeeded == 1
        assert rerun.skipped == 2

    @pytest.mark.asyncio
    async def test_stale_vector_discarded_when_item_changes_mid_embed(self, setup):
        store, index, new, regenerator = setup
        item = next(i for i in store.get_all_items() if "Slow" in i.title)

        pending = asyncio.ensure_future(regenerator.embed_item(item))
        await asyncio.sleep(0.01)
        store.update_item(item.id, content="Edited while embedding")
        new.gate.set()

        with pytest.raises(RuntimeError):
            await pending
        assert index.get_record(item.id, NEW) is None

    @pytest.mark.asyncio
    async def test_pass_flushes_index_once(self, setup, monkeypatch):
        """Test that a pass writes the index at the end rather than per item."""
        store, index, new, regenerator = setup
        new.gate.set()
        flushes = []
        real_flush = index.flush
        monkeypatch.setattr(index, "flush", lambda: flushes.append(index.count(NEW)) or real_flush())

        job = await regenerator.start().wait()

        assert job.succeeded == 3
        assert flushes == [3]
