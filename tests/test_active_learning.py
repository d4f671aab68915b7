"""
Tests for active learning from human corrections.
"""

import pytest

from reply_engine.errors import ValidationError
from reply_engine.kb.knowledge_store import KnowledgeStore
from reply_engine.learning import ActiveLearningEngine, LearningStore
from reply_engine.learning.active_learning import normalize_segment, split_segments


class TestActiveLearning:
    """Test learning point extraction and background proposals."""

    @pytest.fixture
    def store(self, tmp_path):
        return LearningStore(tmp_path / "learning")

    @pytest.fixture
    def engine(self, store):
        return ActiveLearningEngine({"reword_threshold": 60}, store)

    @pytest.mark.asyncio
    async def test_identical_replies_teach_nothing(self, engine):
        """Test that whitespace and case differences are not learning points."""
        sample = await engine.learn(
            "Please restart the app. It should work now.",
            "please  restart the app.\nIt should work now!",
            "App keeps crashing",
        )

        assert sample.learning_points == ()
        assert sample.confidence == 0.0
        await engine.drain()
        assert engine.learning_store.proposals == []

    @pytest.mark.asyncio
    async def test_punctuation_edits_teach_nothing(self, engine, store):
        """Test that commas, dashes and apostrophes inside a sentence are not learning points."""
        sample = await engine.learn(
            "Hello, please restart the app. Don't re-install it.",
            "Hello please restart the app! Dont reinstall it",
            "App keeps crashing",
        )
        await engine.drain()

        assert sample.learning_points == ()
        assert sample.confidence == 0.0
        assert store.proposals == []

    @pytest.mark.asyncio
    async def test_reworded_segment(self, engine):
        sample = await engine.learn(
            "Restart the app. Then log in again.",
            "Restart the app. Then sign in again with your email.",
            "I can't log in",
        )

        assert [p.kind for p in sample.learning_points] == ["reworded"]
        point = sample.learning_points[0]
        assert point.before == "Then log in again."
        assert point.after == "Then sign in again with your email."
        assert point.context == "Restart the app."
        assert 0.6 <= point.similarity <= 1.0
        assert 0.1 <= sample.confidence < 1.0

    @pytest.mark.asyncio
    async def test_added_and_removed_segments(self, engine):
        added = await engine.learn(
            "Refunds take 5 days.",
            "Refunds take 5 days. You will get an email when it is done.",
            "Refund status?",
        )
        removed = await engine.learn(
            "Refunds take 5 days. Contact your bank. We are sorry.",
            "Refunds take 5 days. We are sorry.",
            "Refund status?",
        )

        assert [(p.kind, p.after) for p in added.learning_points] == [
            ("added", "You will get an email when it is done.")
        ]
        assert [(p.kind, p.before) for p in removed.learning_points] == [("removed", "Contact your bank.")]

    @pytest.mark.asyncio
    async def test_unrelated_replacement_is_remove_plus_add(self, engine):
        sample = await engine.learn(
            "Our store opens at nine.",
            "Shipping to Canada is free over fifty dollars.",
            "Hours?",
        )

        assert sorted(p.kind for p in sample.learning_points) == ["added", "removed"]

    @pytest.mark.asyncio
    async def test_background_proposal(self, engine, store):
        sample = await engine.learn(
            "Restart the app.",
            "Restart the app. Clear the cache first if it still fails.",
            "App crash",
            source_ids=["kb_123"],
        )
        await engine.drain()

        assert len(store.proposals) == 1
        proposal = store.proposals[0]
        assert proposal["sample_id"] == sample.id
        assert proposal["item_ids"] == ["kb_123"]
        assert engine.get_stats()["pending_updates"] == 0

    @pytest.mark.asyncio
    async def test_saves_correction_as_knowledge(self, store):
        knowledge = KnowledgeStore()
        engine = ActiveLearningEngine({"save_as_knowledge": True}, store, knowledge)

        await engine.learn("Wait a day.", "Wait a day. Then call support.", "Order late")
        await engine.drain()

        items = knowledge.search_items(category="active_learning")
        assert len(items) == 1
        assert items[0].content == "Wait a day. Then call support."
        assert store.proposals[0]["created_item_id"] == items[0].id

    @pytest.mark.asyncio
    async def test_samples_persist_and_stats(self, engine, store, tmp_path):
        await engine.learn("Hi.", "Hi. How can I help?", "hello")
        await engine.learn("Same.", "Same.", "hello")
        await engine.drain()

        reloaded = LearningStore(tmp_path / "learning")
        stats = reloaded.get_stats()

        assert stats["total_samples"] == 2
        assert stats["samples_with_learning_points"] == 1
        assert stats["learning_point_kinds"] == {"added": 1}
        assert stats["proposals"] == 1
        assert reloaded.samples[0].learning_points[0].kind == "added"

    @pytest.mark.asyncio
    async def test_validation(self, engine):
        with pytest.raises(ValidationError):
            await engine.learn("", "fixed", "q")
        with pytest.raises(ValidationError):
            await engine.learn("reply", "fixed", " ")

    def test_segments(self):
        assert split_segments("One. Two!\nThree?") == ["One.", "Two!", "Three?"]
        assert split_segments("請稍候。我們會處理。") == ["請稍候。", "我們會處理。"]
        assert normalize_segment("  Hello,   World! ") == "hello world"
        assert normalize_segment("Don't re-send it.") == "dont resend it"
        assert normalize_segment("請稍候。") == "請稍候"
