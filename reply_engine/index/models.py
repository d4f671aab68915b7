"""
Data models for the vector index.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import numpy as np


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Any) -> float:
    """Best-effort conversion of a datetime, ISO string or number to epoch seconds."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, str):
        try:
            return to_timestamp(datetime.fromisoformat(value))
        except ValueError:
            return 0.0
    return 0.0


@dataclass(frozen=True)
class EmbeddingRecord:
    """
    A stored vector for one knowledge item under one model version.

    Records are immutable; an upsert swaps in a new record, so readers see
    either the old or the new vector, never a mix.
    """
    item_id: str
    vector: np.ndarray
    model_version: str
    generated_at: datetime = field(default_factory=utc_now)
    content_hash: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @property
    def updated_at(self) -> float:
        return to_timestamp(self.attributes.get("updated_at"))


@dataclass(frozen=True)
class SearchFilter:
    """Pre-ranking filter on item attributes. Unset fields match anything."""
    category: Optional[str] = None
    tags: Sequence[str] = ()
    source: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SearchFilter"]:
        if not data:
            return None
        tags = data.get("tags") or ()
        if isinstance(tags, str):
            tags = (tags,)
        return cls(
            category=data.get("category"),
            tags=tuple(tags),
            source=data.get("source"),
            language=data.get("language"),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.category or self.tags or self.source or self.language)

    def matches(self, attributes: Dict[str, Any]) -> bool:
        if self.category and attributes.get("category") != self.category:
            return False
        if self.source and attributes.get("source") != self.source:
            return False
        if self.language and attributes.get("language") != self.language:
            return False
        if self.tags:
            item_tags = set(attributes.get("tags") or ())
            if not item_tags.intersection(self.tags):
                return False
        return True


@dataclass(frozen=True)
class RetrievalMatch:
    """A ranked search hit. ``item`` is attached by the retriever."""
    item_id: str
    score: float
    rank: int
    model_version: str
    updated_at: float = 0.0
    calibrated: bool = False
    item: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "item_id": self.item_id,
            "score": round(self.score, 6),
            "rank": self.rank,
            "model_version": self.model_version,
            "calibrated": self.calibrated,
        }
        if self.item is not None:
            data["title"] = getattr(self.item, "title", "")
        return data
