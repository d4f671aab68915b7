"""
Item embedding and batch regeneration after an embedding model upgrade.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.resilience import Deadline
from .embedding_cache import EmbeddingCache
from .embedder import EmbedderRegistry
from .models import EmbeddingRecord
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class RegenerationJob:
    """Handle for a running or finished regeneration pass."""
    job_id: str
    model_version: str
    status: str = "pending"  # pending, running, completed, failed, cancelled
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    purged: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @property
    def done(self) -> bool:
        return self.status in ("completed", "failed", "cancelled")

    async def wait(self) -> "RegenerationJob":
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "model_version": self.model_version,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "purged": self.purged,
            "errors": self.errors[:20],
        }


class EmbeddingRegenerator:
    """Writes item embeddings into the index, one item at a time."""

    def __init__(
        self,
        config: Dict[str, Any],
        knowledge_store,
        vector_index: VectorIndex,
        cache: EmbeddingCache,
        registry: EmbedderRegistry,
    ):
        self.config = config
        self.knowledge_store = knowledge_store
        self.vector_index = vector_index
        self.cache = cache
        self.registry = registry
        self.max_concurrent = max(1, int(config.get("max_concurrent", 4)))
        self.purge_superseded = config.get("purge_superseded", True)
        self._active: Optional[RegenerationJob] = None

    def is_current(self, item, model_version: str) -> bool:
        """True when the item's stored vector matches its content and the version."""
        record = self.vector_index.get_record(item.id, model_version)
        return (
            record is not None
            and record.content_hash == item.content_hash
            and item.embedding_model_version == model_version
        )

    async def embed_item(
        self,
        item,
        model_version: Optional[str] = None,
        deadline: Optional[Deadline] = None,
        persist: bool = True,
    ) -> EmbeddingRecord:
        """
        Embed one item and upsert it into the index.

        Args:
            item: KnowledgeItem to embed
            model_version: Target version (current when omitted)
            deadline: Optional deadline
            persist: Flush the index afterwards (batch passes flush once at the end)

        Returns:
            The stored embedding record
        """
        model_version = model_version or self.registry.current_version
        content_hash = item.content_hash
        vector = await self.cache.get_or_compute(item.embedding_text, model_version, deadline)

        current = self.knowledge_store.get_item(item.id)
        if current is None or current.content_hash != content_hash:
            # Edited or deleted while the embedding was computed; the stale vector is discarded
            raise RuntimeError(f"Item {item.id} changed during embedding")

        record = self.vector_index.upsert(
            item.id,
            vector,
            model_version,
            attributes=current.index_attributes(),
            content_hash=content_hash,
        )
        self.knowledge_store.mark_embedded(item.id, model_version, save=persist)
        if persist:
            await self.vector_index.flush_async()
        return record

    def start(self, model_version: Optional[str] = None) -> RegenerationJob:
        """Start a regeneration pass in the background and return its handle."""
        if self._active is not None and not self._active.done:
            logger.info(f"Regeneration {self._active.job_id} already running")
            return self._active

        job = RegenerationJob(job_id=f"regen_{uuid.uuid4().hex[:8]}", model_version=model_version or self.registry.current_version)
        job._task = asyncio.ensure_future(self.run(job))
        self._active = job
        return job

    async def run(self, job: RegenerationJob) -> RegenerationJob:
        """
        Re-embed every item whose vector is missing, stale or from another version.

        Already migrated items are skipped, so re-running after an interruption
        only processes what is left. Superseded versions are purged only after
        a pass in which nothing failed.
        """
        items = self.knowledge_store.get_all_items()
        job.total = len(items)
        job.status = "running"
        job.started_at = time.time()
        logger.info(f"Regeneration {job.job_id}: {job.total} items to {job.model_version} (max {self.max_concurrent} concurrent)")

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def process_item(item):
            async with semaphore:
                if self.is_current(item, job.model_version):
                    job.skipped += 1
                    return
                try:
                    await self.embed_item(item, job.model_version, persist=False)
                    job.succeeded += 1
                except Exception as e:
                    job.failed += 1
                    job.errors.append(f"{item.id}: {e}")
                    logger.error(f"Failed to regenerate embedding for {item.id}: {e}")

        try:
            await asyncio.gather(*(process_item(item) for item in items))
        except asyncio.CancelledError:
            job.status = "cancelled"
            job.finished_at = time.time()
            logger.warning(f"Regeneration {job.job_id} cancelled after {job.processed}/{job.total} items")
            # Keep what was migrated so the next pass resumes from here
            self.knowledge_store.save()
            self.vector_index.flush()
            raise

        if job.failed == 0:
            if self.purge_superseded:
                job.purged = self.vector_index.purge_versions(keep=job.model_version)
            job.status = "completed"
        else:
            job.status = "failed"

        self.knowledge_store.save()
        await self.vector_index.flush_async()

        job.finished_at = time.time()
        logger.info(
            f"Regeneration {job.job_id} {job.status}: {job.succeeded} embedded, "
            f"{job.skipped} skipped, {job.failed} failed in {job.finished_at - job.started_at:.2f}s"
        )
        return job

    @property
    def active_job(self) -> Optional[RegenerationJob]:
        return self._active
