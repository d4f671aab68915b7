"""
Tests for the versioned vector index.
"""

import asyncio
import pickle

import numpy as np
import pytest

from reply_engine.errors import IndexEmptyError, ValidationError
from reply_engine.index.models import SearchFilter
from reply_engine.index.vector_index import VectorIndex, normalize

VERSION = "fake:v1"


class TestVectorIndex:
    """Test vector index functionality."""

    @pytest.fixture
    def index(self):
        index = VectorIndex()
        index.upsert("kb_a", [1.0, 0.0], VERSION, {"category": "account", "language": "en", "tags": ["password"]})
        index.upsert("kb_b", [0.6, 0.8], VERSION, {"category": "billing", "language": "en", "tags": ["refund"]})
        index.upsert("kb_c", [0.0, 1.0], VERSION, {"category": "billing", "language": "fr", "tags": ["refund"]})
        index.upsert("kb_d", [-1.0, 0.0], VERSION, {"category": "shipping", "language": "en"})
        return index

    def test_results_sorted_by_score(self, index):
        """Test that search results are ordered and ranked from 1."""
        matches = index.search([1.0, 0.0], VERSION, k=4)

        assert [m.item_id for m in matches] == ["kb_a", "kb_b", "kb_c", "kb_d"]
        assert [m.rank for m in matches] == [1, 2, 3, 4]
        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_exact_vector_scores_one(self, index):
        matches = index.search([2.0, 0.0], VERSION, k=1)

        assert matches[0].item_id == "kb_a"
        assert matches[0].score == pytest.approx(1.0, abs=1e-6)

    def test_scores_in_unit_range(self, index):
        matches = index.search([1.0, 0.0], VERSION, k=10)

        assert all(0.0 <= m.score <= 1.0 for m in matches)
        assert matches[-1].score == pytest.approx(0.0, abs=1e-6)

    def test_filter_applied_before_k(self, index):
        """The filter narrows candidates first, so k filtered results come back."""
        matches = index.search([1.0, 0.0], VERSION, k=2, search_filter=SearchFilter(category="billing"))

        assert [m.item_id for m in matches] == ["kb_b", "kb_c"]

    def test_tag_and_language_filters(self, index):
        matches = index.search([1.0, 0.0], VERSION, k=5, search_filter=SearchFilter(tags=("refund",), language="fr"))

        assert [m.item_id for m in matches] == ["kb_c"]

    def test_filter_without_hits(self, index):
        assert index.search([1.0, 0.0], VERSION, k=5, search_filter=SearchFilter(category="legal")) == []

    def test_empty_version_raises(self, index):
        with pytest.raises(IndexEmptyError):
            index.search([1.0, 0.0], "other:v2", k=3)

    def test_invalid_k(self, index):
        with pytest.raises(ValidationError):
            index.search([1.0, 0.0], VERSION, k=0)

    def test_dimension_mismatch(self, index):
        with pytest.raises(ValidationError):
            index.upsert("kb_e", [1.0, 0.0, 0.0], VERSION)
        with pytest.raises(ValidationError):
            index.search([1.0, 0.0, 0.0], VERSION, k=1)

    def test_versions_are_isolated(self, index):
        index.upsert("kb_a", [0.0, 0.0, 1.0], "fake:v2")

        assert index.count(VERSION) == 4
        assert index.count("fake:v2") == 1
        assert [m.item_id for m in index.search([0.0, 0.0, 1.0], "fake:v2", k=5)] == ["kb_a"]

    def test_remove_and_purge(self, index):
        index.upsert("kb_a", [0.0, 1.0], "fake:v2")

        assert index.remove("kb_a") == 2
        assert index.get_record("kb_a", VERSION) is None

        index.upsert("kb_b", [0.0, 1.0], "fake:v2")
        removed = index.purge_versions(keep="fake:v2")
        assert removed == 3
        assert index.versions() == ["fake:v2"]

    def test_update_attributes_keeps_vector(self, index):
        before = index.get_record("kb_d", VERSION)
        index.update_attributes("kb_d", {"category": "returns"})
        after = index.get_record("kb_d", VERSION)

        assert after.attributes == {"category": "returns"}
        assert np.array_equal(before.vector, after.vector)

    def test_persistence(self, tmp_path):
        """Test that flushed vectors survive a reload from disk."""
        index = VectorIndex(tmp_path)
        index.upsert("kb_a", [3.0, 4.0], VERSION, {"category": "account"}, content_hash="abc")

        assert index.dirty
        assert VectorIndex(tmp_path).get_record("kb_a", VERSION) is None

        assert index.flush() is True
        assert not index.dirty
        assert index.flush() is False

        reloaded = VectorIndex(tmp_path)
        record = reloaded.get_record("kb_a", VERSION)

        assert record is not None
        assert record.content_hash == "abc"
        assert list(record.vector) == pytest.approx([0.6, 0.8], abs=1e-6)

    def test_upserts_do_not_write_to_disk(self, tmp_path, monkeypatch):
        """Test that a batch of upserts is written once, by the flush."""
        dumps = []
        real_dump = pickle.dump
        monkeypatch.setattr(pickle, "dump", lambda obj, f: dumps.append(len(obj[VERSION])) or real_dump(obj, f))
        index = VectorIndex(tmp_path)

        for i in range(20):
            index.upsert(f"kb_{i}", [1.0, float(i)], VERSION)
        assert dumps == []

        asyncio.run(index.flush_async())
        assert dumps == [20]

    def test_normalize_rejects_bad_vectors(self):
        for bad in ([], [0.0, 0.0], [float("nan"), 1.0]):
            with pytest.raises(ValidationError):
                normalize(bad)
