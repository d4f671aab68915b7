"""
Data models for the knowledge base module.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class KnowledgeItem:
    """A unit of reference content eligible for retrieval."""
    id: str
    title: str
    content: str
    category: str = "general"
    tags: List[str] = field(default_factory=list)
    source: str = ""
    language: str = "en"
    updated_at: str = field(default_factory=now_iso)
    embedding_model_version: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def embedding_text(self) -> str:
        """Text that is embedded for this item."""
        return f"{self.title}\n{self.content}".strip()

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.embedding_text.encode("utf-8")).hexdigest()

    def index_attributes(self) -> Dict[str, Any]:
        """Filterable attributes mirrored into the vector index."""
        return {
            "category": self.category,
            "tags": list(self.tags),
            "source": self.source,
            "language": self.language,
            "updated_at": self.updated_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeItem":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            category=data.get("category") or "general",
            tags=list(data.get("tags") or []),
            source=data.get("source", ""),
            language=data.get("language") or "en",
            updated_at=data.get("updated_at") or now_iso(),
            embedding_model_version=data.get("embedding_model_version"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ConversationMessage:
    """One message in a customer's conversation history."""
    customer_id: str
    role: str
    content: str
    timestamp: str = field(default_factory=now_iso)

    @property
    def is_customer(self) -> bool:
        return self.role == "customer"
