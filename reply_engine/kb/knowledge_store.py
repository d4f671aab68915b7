"""
Knowledge Store for managing and persisting knowledge items.
"""

import json
import logging
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from .models import KnowledgeItem, now_iso

logger = logging.getLogger(__name__)

CONTENT_FIELDS = {"title", "content"}
EDITABLE_FIELDS = {"title", "content", "category", "tags", "source", "language", "metadata"}


class KnowledgeStore:
    """
    Persistent storage for knowledge items.

    When a vector index is attached, content edits and deletions remove the
    item's vectors so no stale embedding outlives the text it was made from.
    """

    def __init__(self, storage_path: Optional[Path] = None, vector_index=None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.items_file = self.storage_path / "items.json" if self.storage_path else None
        self.vector_index = vector_index

        self.items: Dict[str, KnowledgeItem] = {}

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load_items()

    def _load_items(self):
        """Load items from persistent storage."""
        try:
            if self.items_file.exists():
                with open(self.items_file, "r", encoding="utf-8") as f:
                    items_data = json.load(f)
                self.items = {data["id"]: KnowledgeItem.from_dict(data) for data in items_data}
                logger.info(f"Loaded {len(self.items)} knowledge items from storage")
            else:
                logger.info("No existing knowledge items found, starting with empty store")
        except Exception as e:
            logger.error(f"Failed to load knowledge items: {e}")
            self.items = {}

    def _save_items(self):
        """Save items to persistent storage."""
        if not self.items_file:
            return
        try:
            with open(self.items_file, "w", encoding="utf-8") as f:
                json.dump([item.to_dict() for item in self.items.values()], f, indent=2, ensure_ascii=False)
            logger.debug(f"Saved {len(self.items)} knowledge items to storage")
        except Exception as e:
            logger.error(f"Failed to save knowledge items: {e}")

    def create_item(self, title: str, content: str, **fields) -> KnowledgeItem:
        """Create and store a new item with a generated id."""
        if not (title or "").strip() and not (content or "").strip():
            raise ValidationError("an item needs a title or content")
        item = KnowledgeItem(id=f"kb_{uuid.uuid4().hex[:12]}", title=title or "", content=content or "", **fields)
        return self.add_item(item)

    def add_item(self, item: KnowledgeItem) -> KnowledgeItem:
        """Add an item, replacing any existing item with the same id."""
        existing = self.items.get(item.id)
        if existing is not None:
            logger.warning(f"Knowledge item {item.id} already exists, updating")
            if existing.content_hash != item.content_hash:
                item.embedding_model_version = None
                self._drop_vectors(item.id)
        self.items[item.id] = item
        self._save_items()
        return item

    def get_item(self, item_id: str) -> Optional[KnowledgeItem]:
        return self.items.get(item_id)

    def require_item(self, item_id: str) -> KnowledgeItem:
        item = self.items.get(item_id)
        if item is None:
            raise ValidationError(f"Unknown knowledge item: {item_id}")
        return item

    def get_all_items(self) -> List[KnowledgeItem]:
        return list(self.items.values())

    def search_items(
        self,
        text: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
        source: Optional[str] = None,
    ) -> List[KnowledgeItem]:
        """Search items by simple criteria."""
        matching = []
        for item in self.items.values():
            if text and text.lower() not in item.embedding_text.lower():
                continue
            if category and item.category != category:
                continue
            if tag and tag not in item.tags:
                continue
            if source and item.source != source:
                continue
            matching.append(item)
        return matching

    def update_item(self, item_id: str, **changes) -> KnowledgeItem:
        """
        Update an item by id.

        Title or content changes invalidate the embedding; other fields only
        refresh the attributes mirrored into the index.
        """
        item = self.require_item(item_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        old_hash = item.content_hash
        for key, value in changes.items():
            setattr(item, key, list(value) if key == "tags" else value)

        if CONTENT_FIELDS.intersection(changes) and item.content_hash != old_hash:
            item.updated_at = now_iso()
            item.embedding_model_version = None
            self._drop_vectors(item_id)
            logger.info(f"Content of {item_id} changed, embedding invalidated")
        elif self.vector_index is not None:
            self.vector_index.update_attributes(item_id, item.index_attributes())

        self._save_items()
        return item

    def mark_embedded(self, item_id: str, model_version: str, save: bool = True):
        """Record which model version the item's current vector came from."""
        item = self.require_item(item_id)
        item.embedding_model_version = model_version
        if save:
            self._save_items()

    def save(self):
        self._save_items()

    def delete_item(self, item_id: str) -> bool:
        if item_id not in self.items:
            return False
        del self.items[item_id]
        self._drop_vectors(item_id)
        self._save_items()
        return True

    def _drop_vectors(self, item_id: str):
        if self.vector_index is not None:
            self.vector_index.remove(item_id)

    def list_categories(self) -> Dict[str, int]:
        return dict(Counter(item.category for item in self.items.values()))

    def list_tags(self) -> Dict[str, int]:
        return dict(Counter(tag for item in self.items.values() for tag in item.tags))

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the knowledge store."""
        total = len(self.items)
        embedded = sum(1 for item in self.items.values() if item.embedding_model_version)
        return {
            "total_items": total,
            "embedded_items": embedded,
            "categories": self.list_categories(),
            "languages": dict(Counter(item.language for item in self.items.values())),
        }

    def __len__(self) -> int:
        return len(self.items)
