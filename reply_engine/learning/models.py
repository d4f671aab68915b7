"""
Data models for active learning.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..kb.models import now_iso


@dataclass(frozen=True)
class LearningPoint:
    """One material change between a generated reply and its human correction."""
    kind: str  # removed, added, reworded
    before: str
    after: str
    context: str
    similarity: float = 0.0

    @property
    def description(self) -> str:
        if self.kind == "removed":
            text = f'Removed "{self.before}"'
        elif self.kind == "added":
            text = f'Added "{self.after}"'
        else:
            text = f'Reworded "{self.before}" as "{self.after}"'
        return f"{text} (after: {self.context})" if self.context else text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "before": self.before,
            "after": self.after,
            "context": self.context,
            "similarity": self.similarity,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningPoint":
        return cls(
            kind=data["kind"],
            before=data.get("before", ""),
            after=data.get("after", ""),
            context=data.get("context", ""),
            similarity=data.get("similarity", 0.0),
        )


@dataclass(frozen=True)
class LearningSample:
    """Write-once record of a human correction and what it teaches."""
    id: str
    query: str
    original_reply: str
    improved_reply: str
    learning_points: Tuple[LearningPoint, ...] = ()
    confidence: float = 0.0
    source_ids: Tuple[str, ...] = ()
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "original_reply": self.original_reply,
            "improved_reply": self.improved_reply,
            "learning_points": [point.to_dict() for point in self.learning_points],
            "confidence": self.confidence,
            "source_ids": list(self.source_ids),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningSample":
        return cls(
            id=data["id"],
            query=data.get("query", ""),
            original_reply=data.get("original_reply", ""),
            improved_reply=data.get("improved_reply", ""),
            learning_points=tuple(LearningPoint.from_dict(p) for p in data.get("learning_points", [])),
            confidence=data.get("confidence", 0.0),
            source_ids=tuple(data.get("source_ids", [])),
            created_at=data.get("created_at") or now_iso(),
        )


@dataclass(frozen=True)
class KnowledgeUpdateProposal:
    """Suggestion that retrieved knowledge may be stale, raised from a correction."""
    id: str
    sample_id: str
    item_ids: Tuple[str, ...]
    reason: str
    suggested_content: str
    created_item_id: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sample_id": self.sample_id,
            "item_ids": list(self.item_ids),
            "reason": self.reason,
            "suggested_content": self.suggested_content,
            "created_item_id": self.created_item_id,
            "created_at": self.created_at,
        }
