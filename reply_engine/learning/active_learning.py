"""
Active learning from human-corrected replies.
"""

import asyncio
import difflib
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from rapidfuzz import fuzz

from ..errors import ValidationError
from .learning_store import LearningStore
from .models import KnowledgeUpdateProposal, LearningPoint, LearningSample

logger = logging.getLogger(__name__)

SEGMENT_SPLIT = re.compile(r"(?<=[.!?。！？])\s+|\n+|(?<=[。！？])")


def split_segments(text: str) -> List[str]:
    """Split a reply into sentence-level segments."""
    return [segment.strip() for segment in SEGMENT_SPLIT.split(text or "") if segment and segment.strip()]


def normalize_segment(segment: str) -> str:
    """Comparison key for a segment: lowercase, no punctuation, single spaces."""
    without_punctuation = re.sub(r"[^\w\s]|_", "", segment.lower())
    return re.sub(r"\s+", " ", without_punctuation).strip()


class ActiveLearningEngine:
    """Derives learning points from the segment-level diff of two replies."""

    def __init__(
        self,
        config: Dict[str, Any],
        learning_store: LearningStore,
        knowledge_store=None,
        regenerator=None,
    ):
        self.config = config
        self.learning_store = learning_store
        self.knowledge_store = knowledge_store
        self.regenerator = regenerator

        self.reword_threshold = config.get("reword_threshold", 60)
        self.propose_updates = config.get("propose_updates", True)
        self.save_as_knowledge = config.get("save_as_knowledge", False)
        self._background: Set[asyncio.Task] = set()

    async def learn(
        self,
        original_reply: str,
        human_reply: str,
        query: str,
        source_ids: Sequence[str] = (),
    ) -> LearningSample:
        """
        Record a human correction and extract what changed.

        Identical replies (after normalization) produce no learning points and a
        confidence of 0. The knowledge update proposal runs in the background.

        Args:
            original_reply: Reply the engine generated
            human_reply: Reply as corrected by a person
            query: Customer query that prompted the reply
            source_ids: Knowledge items the original reply cited

        Returns:
            The stored LearningSample
        """
        if not (original_reply or "").strip() or not (human_reply or "").strip():
            raise ValidationError("both replies are required")
        if not (query or "").strip():
            raise ValidationError("query is required")

        points, ratio = self.diff(original_reply, human_reply)
        confidence = round(max(0.1, 1.0 - ratio), 4) if points else 0.0

        sample = LearningSample(
            id=f"ls_{uuid.uuid4().hex[:12]}",
            query=query,
            original_reply=original_reply,
            improved_reply=human_reply,
            learning_points=tuple(points),
            confidence=confidence,
            source_ids=tuple(source_ids),
        )
        self.learning_store.add_sample(sample)
        logger.info(f"Learning sample {sample.id}: {len(points)} learning point(s), confidence {confidence:.2f}")

        if points and self.propose_updates:
            task = asyncio.create_task(self._propose_update(sample))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return sample

    def diff(self, original_reply: str, human_reply: str) -> Tuple[List[LearningPoint], float]:
        """
        Segment-level diff.

        Returns:
            Learning points and the similarity ratio of the normalized segment sequences
        """
        original = split_segments(original_reply)
        improved = split_segments(human_reply)
        original_norm = [normalize_segment(s) for s in original]
        improved_norm = [normalize_segment(s) for s in improved]

        matcher = difflib.SequenceMatcher(None, original_norm, improved_norm, autojunk=False)
        points: List[LearningPoint] = []
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "equal":
                continue
            context = original[i1 - 1] if i1 > 0 else ""
            if tag == "delete":
                points.extend(LearningPoint("removed", original[i], "", context) for i in range(i1, i2))
            elif tag == "insert":
                points.extend(LearningPoint("added", "", improved[j], context) for j in range(j1, j2))
            else:
                points.extend(self._pair_replacements(
                    original[i1:i2], original_norm[i1:i2], improved[j1:j2], improved_norm[j1:j2], context
                ))
        return points, matcher.ratio()

    def _pair_replacements(
        self,
        before: List[str],
        before_norm: List[str],
        after: List[str],
        after_norm: List[str],
        context: str,
    ) -> List[LearningPoint]:
        """Pair replaced segments that are close enough to count as rewordings."""
        points = []
        unused = list(range(len(after)))
        for i, segment in enumerate(before):
            best, best_score = None, 0.0
            for j in unused:
                score = fuzz.token_set_ratio(before_norm[i], after_norm[j])
                if score > best_score:
                    best, best_score = j, score
            if best is not None and best_score >= self.reword_threshold:
                unused.remove(best)
                points.append(LearningPoint("reworded", segment, after[best], context, round(best_score / 100.0, 4)))
            else:
                points.append(LearningPoint("removed", segment, "", context))
        points.extend(LearningPoint("added", "", after[j], context) for j in unused)
        return points

    async def _propose_update(self, sample: LearningSample):
        try:
            created_item_id: Optional[str] = None
            if self.save_as_knowledge and self.knowledge_store is not None:
                item = self.knowledge_store.create_item(
                    title=f"Corrected reply: {sample.query[:80]}",
                    content=sample.improved_reply,
                    category="active_learning",
                    tags=["active_learning"],
                    source=f"learning:{sample.id}",
                )
                created_item_id = item.id
                if self.regenerator is not None:
                    await self.regenerator.embed_item(item)

            kinds = sorted({point.kind for point in sample.learning_points})
            proposal = KnowledgeUpdateProposal(
                id=f"kp_{uuid.uuid4().hex[:12]}",
                sample_id=sample.id,
                item_ids=sample.source_ids,
                reason=f"Human correction ({', '.join(kinds)}) of a reply to: {sample.query[:120]}",
                suggested_content=sample.improved_reply,
                created_item_id=created_item_id,
            )
            self.learning_store.add_proposal(proposal)
            logger.info(f"Filed knowledge update proposal {proposal.id} for {len(sample.source_ids)} source(s)")
        except Exception as e:
            logger.error(f"Knowledge update proposal for {sample.id} failed: {e}")

    async def drain(self):
        """Wait for background proposals to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.learning_store.get_stats()
        stats["pending_updates"] = len(self._background)
        return stats
