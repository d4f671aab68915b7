"""
Tests for knowledge retrieval.
"""

import pytest

from reply_engine.analysis.models import LanguageCode
from reply_engine.errors import ValidationError
from reply_engine.index.embedder import EmbedderRegistry
from reply_engine.index.embedding_cache import EmbeddingCache
from reply_engine.index.models import SearchFilter
from reply_engine.index.vector_index import VectorIndex
from reply_engine.kb.knowledge_store import KnowledgeStore
from reply_engine.retrieval import KnowledgeRetriever

from conftest import FakeEmbedder

QUERY = "How do I reset my password?"


class TestKnowledgeRetriever:
    """Test retrieval against the current and previous model versions."""

    @pytest.fixture
    def parts(self, fast_retry):
        index = VectorIndex()
        store = KnowledgeStore(vector_index=index)
        old = FakeEmbedder(model_version="fake:v1", vectors={QUERY: [1.0, 0.0]})
        new = FakeEmbedder(model_version="fake:v2", vectors={QUERY: [1.0, 0.0]})
        registry = EmbedderRegistry()
        registry.register(old)
        registry.register(new, current=True)
        cache = EmbeddingCache({}, registry, fast_retry)
        retriever = KnowledgeRetriever({"min_score": 0.5, "k": 5}, index, cache, registry, store)
        return index, store, registry, retriever

    @staticmethod
    def add(index, store, title, vector, version="fake:v2", **fields):
        item = store.create_item(title, f"{title} details", **fields)
        index.upsert(item.id, vector, version, item.index_attributes(), item.content_hash)
        return item

    @pytest.mark.asyncio
    async def test_min_score_threshold(self, parts):
        """Test that only matches at or above min_score are returned."""
        index, store, registry, retriever = parts
        best = self.add(index, store, "Reset password", [1.0, 0.0])
        self.add(index, store, "Orthogonal", [0.0, 1.0])
        self.add(index, store, "Opposite", [-1.0, 0.0])

        matches = await retriever.retrieve(QUERY, min_score=0.6)

        assert [m.item_id for m in matches] == [best.id]
        assert matches[0].item.title == "Reset password"
        assert matches[0].rank == 1

        inclusive = await retriever.retrieve(QUERY)
        assert len(inclusive) == 2
        assert inclusive[1].score == pytest.approx(0.5, abs=1e-6)

    @pytest.mark.asyncio
    async def test_language_hint_falls_back_to_all_languages(self, parts):
        index, store, registry, retriever = parts
        self.add(index, store, "Reset password", [1.0, 0.0], language="en")

        matches = await retriever.retrieve(QUERY, language=LanguageCode.FR)

        assert len(matches) == 1

    @pytest.mark.asyncio
    async def test_language_hint_prefers_matching_items(self, parts):
        index, store, registry, retriever = parts
        self.add(index, store, "Reset password", [1.0, 0.0], language="en")
        french = self.add(index, store, "Réinitialiser le mot de passe", [0.9, 0.1], language="fr")

        matches = await retriever.retrieve(QUERY, language=LanguageCode.FR)

        assert [m.item_id for m in matches] == [french.id]

    @pytest.mark.asyncio
    async def test_irrelevant_hinted_items_do_not_hide_relevant_ones(self, parts):
        """Test that the language hint is dropped when no item in that language clears min_score."""
        index, store, registry, retriever = parts
        english = self.add(index, store, "Reset password", [1.0, 0.0], language="en")
        self.add(index, store, "Cartes cadeaux", [-1.0, 0.0], language="fr")

        matches = await retriever.retrieve(QUERY, language=LanguageCode.FR)

        assert [m.item_id for m in matches] == [english.id]
        assert matches[0].score == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.asyncio
    async def test_filters(self, parts):
        index, store, registry, retriever = parts
        self.add(index, store, "Reset password", [1.0, 0.0], category="account")
        billing = self.add(index, store, "Refund timing", [0.8, 0.6], category="billing")

        matches = await retriever.retrieve(QUERY, filters=SearchFilter(category="billing"))

        assert [m.item_id for m in matches] == [billing.id]

    @pytest.mark.asyncio
    async def test_previous_version_scores_are_calibrated(self, parts):
        """Test that an empty current version falls back to older vectors, marked as calibrated."""
        index, store, registry, retriever = parts
        self.add(index, store, "Reset password", [1.0, 0.0], version="fake:v1")
        self.add(index, store, "Close match", [0.8, 0.6], version="fake:v1")
        self.add(index, store, "Opposite", [-1.0, 0.0], version="fake:v1")

        matches = await retriever.retrieve(QUERY)

        assert matches
        assert all(m.calibrated for m in matches)
        assert all(m.model_version == "fake:v1" for m in matches)
        assert matches[0].score == pytest.approx(0.9, abs=1e-6)
        assert all(m.score <= 0.9 for m in matches)

    @pytest.mark.asyncio
    async def test_half_migrated_index_searches_both_versions(self, parts):
        """Test that items not yet re-embedded stay retrievable through their older vector."""
        index, store, registry, retriever = parts
        migrated = self.add(index, store, "Shipping rates", [0.0, 1.0])
        index.upsert(migrated.id, [0.0, 1.0], "fake:v1", migrated.index_attributes(), migrated.content_hash)
        pending = self.add(index, store, "Reset password", [1.0, 0.0], version="fake:v1")
        self.add(index, store, "Gift cards", [-1.0, 0.0], version="fake:v1")

        matches = await retriever.retrieve(QUERY)

        by_id = {m.item_id: m for m in matches}
        assert pending.id in by_id
        assert by_id[pending.id].calibrated
        assert by_id[pending.id].model_version == "fake:v1"
        assert by_id[migrated.id].model_version == "fake:v2"
        assert not by_id[migrated.id].calibrated
        assert [m.item_id for m in matches].count(migrated.id) == 1

    @pytest.mark.asyncio
    async def test_calibrated_score_never_exceeds_raw_similarity(self, parts):
        """Test that a weak best match from an older version is still filtered by min_score."""
        index, store, registry, retriever = parts
        self.add(index, store, "Weak match", [0.1, 1.0], version="fake:v1")
        self.add(index, store, "Weaker match", [0.0, 1.0], version="fake:v1")

        assert await retriever.retrieve(QUERY, min_score=0.5) == []

        matches = await retriever.retrieve(QUERY, min_score=0.0)
        raw = (1.0 + 0.1 / (1.01 ** 0.5)) / 2.0
        assert matches[0].score == pytest.approx(raw * 0.9, abs=1e-5)

    @pytest.mark.asyncio
    async def test_version_fallback_disabled(self, parts):
        index, store, registry, retriever = parts
        self.add(index, store, "Reset password", [1.0, 0.0], version="fake:v1")
        retriever.allow_version_fallback = False

        assert await retriever.retrieve(QUERY) == []

    @pytest.mark.asyncio
    async def test_empty_index(self, parts):
        index, store, registry, retriever = parts

        assert await retriever.retrieve(QUERY) == []

    @pytest.mark.asyncio
    async def test_vectors_without_items_are_dropped(self, parts):
        index, store, registry, retriever = parts
        index.upsert("kb_ghost", [1.0, 0.0], "fake:v2")
        kept = self.add(index, store, "Reset password", [0.9, 0.1])

        matches = await retriever.retrieve(QUERY)

        assert [m.item_id for m in matches] == [kept.id]
        assert matches[0].rank == 1

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, parts):
        index, store, registry, retriever = parts

        with pytest.raises(ValidationError):
            await retriever.retrieve("")
        with pytest.raises(ValidationError):
            await retriever.retrieve(QUERY, k=0)
        with pytest.raises(ValidationError):
            await retriever.retrieve(QUERY, min_score=1.5)
