"""
Data models for reply composition.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import PartialResultWarning
from ..index.models import RetrievalMatch


class PipelineStage(Enum):
    """Stages of one reply request, in the only order they may occur."""
    STARTED = "started"
    LANGUAGE_DETECTED = "language_detected"
    SIGNALS_GATHERED = "signals_gathered"
    KNOWLEDGE_RETRIEVED = "knowledge_retrieved"
    DRAFT_COMPOSED = "draft_composed"
    TONE_ADJUSTED = "tone_adjusted"
    TRANSLATED = "translated"
    FINALIZED = "finalized"


STAGE_ORDER = list(PipelineStage)


class PipelineRun:
    """Per-request stage tracker. Stages only move forward, one step at a time."""

    def __init__(self):
        self.stage = PipelineStage.STARTED
        self._started = time.monotonic()
        self.timings: Dict[str, float] = {PipelineStage.STARTED.value: 0.0}

    def advance(self, stage: PipelineStage):
        expected = STAGE_ORDER.index(self.stage) + 1
        if expected >= len(STAGE_ORDER) or STAGE_ORDER[expected] is not stage:
            raise RuntimeError(f"Illegal pipeline transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.timings[stage.value] = round(time.monotonic() - self._started, 4)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started


@dataclass(frozen=True)
class ReplyDraft:
    """
    A reply split into independent slots.

    Sentiment adjustments only write ``opening`` and intent adjustments only
    write ``closing``, so the two can be applied in either order.
    """
    body: str
    opening: str = ""
    closing: str = ""

    def with_opening(self, opening: str) -> "ReplyDraft":
        return replace(self, opening=opening)

    def with_closing(self, closing: str) -> "ReplyDraft":
        return replace(self, closing=closing)

    def render(self) -> str:
        return "\n\n".join(part.strip() for part in (self.opening, self.body, self.closing) if part and part.strip())


@dataclass(frozen=True)
class ReplyResult:
    """Final result of one reply request. Never mutated after return."""
    reply: str
    confidence: float
    sources: Tuple[RetrievalMatch, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    warnings: Tuple[PartialResultWarning, ...] = ()

    def source_dicts(self, content_chars: Optional[int] = None) -> List[Dict[str, Any]]:
        citations = []
        for match in self.sources:
            item = match.item
            content = getattr(item, "content", "")
            if content_chars is not None:
                content = content[:content_chars]
            citations.append({
                "id": match.item_id,
                "title": getattr(item, "title", ""),
                "content": content,
                "relevance": round(match.score, 4),
            })
        return citations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "confidence": self.confidence,
            "sources": self.source_dicts(),
            "metadata": self.metadata,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


@dataclass(frozen=True)
class ConversationSummary:
    """Summary of a customer's recent conversation."""
    summary: str
    key_points: Tuple[str, ...] = ()
    customer_needs: Tuple[str, ...] = ()
    action_items: Tuple[str, ...] = ()
    message_count: int = 0
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "key_points": list(self.key_points),
            "customer_needs": list(self.customer_needs),
            "action_items": list(self.action_items),
            "message_count": self.message_count,
            "degraded": self.degraded,
        }
