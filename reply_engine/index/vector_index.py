"""
Vector index for knowledge item embeddings, scoped by embedding model version.
"""

import asyncio
import logging
import pickle
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from ..errors import IndexEmptyError, ValidationError
from .models import EmbeddingRecord, RetrievalMatch, SearchFilter, utc_now

logger = logging.getLogger(__name__)


def normalize(vector: Any) -> np.ndarray:
    """Return a float32 L2-normalized copy of a vector."""
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.size == 0:
        raise ValidationError("vector must not be empty")
    if not np.all(np.isfinite(array)):
        raise ValidationError("vector contains non-finite values")
    norm = float(np.linalg.norm(array))
    if norm == 0.0:
        raise ValidationError("vector must not be all zeros")
    return array / norm


class VectorIndex:
    """
    Shared store of normalized embeddings with cosine-similarity search.

    Vectors are grouped by model version and never compared across versions.
    Writes replace whole immutable records under a lock, so concurrent readers
    always see a complete vector.
    """

    def __init__(self, storage_path: Optional[Path] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.embeddings_file = self.storage_path / "embeddings.pkl" if self.storage_path else None

        # model_version -> item_id -> record
        self._records: Dict[str, Dict[str, EmbeddingRecord]] = {}
        self._lock = threading.RLock()
        self._dirty = False
        self._write_lock = threading.Lock()

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load()

    def _load(self):
        """Load records from persistent storage."""
        if not self.embeddings_file.exists():
            logger.info("No existing embeddings found")
            return
        try:
            with open(self.embeddings_file, "rb") as f:
                self._records = pickle.load(f)
            logger.info(f"Loaded {self.count()} embeddings across {len(self._records)} model version(s)")
        except Exception as e:
            logger.error(f"Failed to load embeddings: {e}")
            self._records = {}

    def flush(self) -> bool:
        """
        Write pending changes to storage.

        Mutations only mark the index dirty; callers flush once per operation
        or per batch. Records are snapshotted under the index lock and pickled
        outside it, so upserts are not held up by the dump.

        Returns:
            True when a snapshot was written
        """
        if not self.embeddings_file:
            return False
        with self._write_lock:
            with self._lock:
                if not self._dirty:
                    return False
                snapshot = dict(self._records)
                self._dirty = False
            try:
                tmp_file = self.embeddings_file.with_suffix(".tmp")
                with open(tmp_file, "wb") as f:
                    pickle.dump(snapshot, f)
                tmp_file.replace(self.embeddings_file)
            except Exception as e:
                with self._lock:
                    self._dirty = True
                logger.error(f"Failed to save embeddings: {e}")
                return False
        logger.debug(f"Saved {sum(len(r) for r in snapshot.values())} embeddings to storage")
        return True

    async def flush_async(self) -> bool:
        """Flush from a worker thread so the event loop keeps serving requests."""
        return await asyncio.to_thread(self.flush)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def upsert(
        self,
        item_id: str,
        vector: Any,
        model_version: str,
        attributes: Optional[Dict[str, Any]] = None,
        content_hash: Optional[str] = None,
    ) -> EmbeddingRecord:
        """
        Insert or replace the vector for an item under a model version.

        Args:
            item_id: Owning knowledge item
            vector: Raw embedding (normalized here, once)
            model_version: Embedding model version tag
            attributes: Filterable item attributes (category, tags, source, language, updated_at)
            content_hash: Hash of the text the vector was computed from

        Returns:
            The stored record
        """
        if not item_id:
            raise ValidationError("item_id is required")
        if not model_version:
            raise ValidationError("model_version is required")

        record = EmbeddingRecord(
            item_id=item_id,
            vector=normalize(vector),
            model_version=model_version,
            generated_at=utc_now(),
            content_hash=content_hash,
            attributes=dict(attributes or {}),
        )

        with self._lock:
            version_records = self._records.get(model_version, {})
            expected = self._dimension_of(version_records, exclude=item_id)
            if expected is not None and expected != record.dimension:
                raise ValidationError(
                    f"vector dimension {record.dimension} does not match {expected} for version {model_version}"
                )
            updated = dict(version_records)
            updated[item_id] = record
            self._records[model_version] = updated
            self._dirty = True

        logger.debug(f"Upserted vector for {item_id} ({model_version}, dim={record.dimension})")
        return record

    @staticmethod
    def _dimension_of(records: Dict[str, EmbeddingRecord], exclude: Optional[str] = None) -> Optional[int]:
        for item_id, record in records.items():
            if item_id != exclude:
                return record.dimension
        return None

    def remove(self, item_id: str, model_version: Optional[str] = None) -> int:
        """Remove an item's vectors (all versions unless one is given). Returns the number removed."""
        removed = 0
        with self._lock:
            versions = [model_version] if model_version else list(self._records)
            for version in versions:
                version_records = self._records.get(version)
                if version_records and item_id in version_records:
                    updated = dict(version_records)
                    del updated[item_id]
                    if updated:
                        self._records[version] = updated
                    else:
                        del self._records[version]
                    removed += 1
            if removed:
                self._dirty = True
        return removed

    def update_attributes(self, item_id: str, attributes: Dict[str, Any]):
        """Refresh filterable attributes without touching vectors."""
        with self._lock:
            changed = False
            for version, version_records in list(self._records.items()):
                record = version_records.get(item_id)
                if record is None:
                    continue
                updated = dict(version_records)
                updated[item_id] = replace(record, attributes=dict(attributes))
                self._records[version] = updated
                changed = True
            if changed:
                self._dirty = True

    def search(
        self,
        query_vector: Any,
        model_version: str,
        k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[RetrievalMatch]:
        """
        Rank indexed vectors of one model version by similarity to the query.

        The filter is applied before ranking, so up to ``k`` filtered results
        are returned. Scores are cosine similarity mapped to [0, 1].

        Raises:
            IndexEmptyError: If no vectors exist for the model version
        """
        if k < 1:
            raise ValidationError("k must be at least 1")

        version_records = self._records.get(model_version)
        if not version_records:
            raise IndexEmptyError(model_version)

        candidates = [
            record for record in version_records.values()
            if search_filter is None or search_filter.matches(record.attributes)
        ]
        if not candidates:
            return []

        query = normalize(query_vector)
        if query.shape[0] != candidates[0].dimension:
            raise ValidationError(
                f"query dimension {query.shape[0]} does not match {candidates[0].dimension} for version {model_version}"
            )

        matrix = np.stack([record.vector for record in candidates])
        cosine = matrix @ query
        scores = np.clip((cosine + 1.0) / 2.0, 0.0, 1.0)

        order = sorted(
            range(len(candidates)),
            key=lambda i: (-float(scores[i]), -candidates[i].updated_at),
        )[:k]

        return [
            RetrievalMatch(
                item_id=candidates[i].item_id,
                score=float(scores[i]),
                rank=rank,
                model_version=model_version,
                updated_at=candidates[i].updated_at,
            )
            for rank, i in enumerate(order, start=1)
        ]

    def get_record(self, item_id: str, model_version: str) -> Optional[EmbeddingRecord]:
        return self._records.get(model_version, {}).get(item_id)

    def records(self, model_version: str) -> List[EmbeddingRecord]:
        """Snapshot of every record under a model version."""
        return list(self._records.get(model_version, {}).values())

    def versions(self) -> List[str]:
        return list(self._records)

    def has_version(self, model_version: str) -> bool:
        return bool(self._records.get(model_version))

    def count(self, model_version: Optional[str] = None) -> int:
        if model_version:
            return len(self._records.get(model_version, {}))
        return sum(len(records) for records in self._records.values())

    def purge_versions(self, keep: str) -> int:
        """Drop every model version except ``keep``. Returns the number of records removed."""
        with self._lock:
            stale = [version for version in self._records if version != keep]
            removed = sum(len(self._records[version]) for version in stale)
            for version in stale:
                del self._records[version]
            if stale:
                self._dirty = True
                logger.info(f"Purged {removed} vectors from superseded versions: {', '.join(stale)}")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the index."""
        return {
            "total_vectors": self.count(),
            "versions": {
                version: {
                    "vectors": len(records),
                    "dimension": self._dimension_of(records),
                }
                for version, records in self._records.items()
            },
        }

    def clear(self):
        """Clear all vectors from the index."""
        with self._lock:
            self._records = {}
            self._dirty = True
        logger.info("Cleared all vectors from index")
