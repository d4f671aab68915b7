"""
Memoized text embeddings with single-flight computation per key.
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

import numpy as np

from ..errors import PipelineTimeoutError, ValidationError
from ..models.resilience import Deadline, RetryPolicy, call_with_retry
from .embedder import EmbedderRegistry

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    LRU cache of text embeddings keyed by (text, model version).

    Concurrent callers for the same key share one in-flight computation.
    Failures reach every waiter and are not cached. Eviction only touches
    completed entries.
    """

    def __init__(self, config: Dict[str, Any], registry: EmbedderRegistry, retry_policy: Optional[RetryPolicy] = None):
        self.config = config
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.capacity = max(1, int(config.get("capacity", 1024)))

        self._entries: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Task] = {}

        self.hits = 0
        self.misses = 0
        self.shared = 0
        self.computations = 0

    @staticmethod
    def make_key(text: str, model_version: str) -> str:
        digest = hashlib.sha256()
        digest.update(model_version.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(text.encode("utf-8"))
        return digest.hexdigest()

    async def get_or_compute(
        self,
        text: str,
        model_version: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> np.ndarray:
        """
        Return the embedding for a text, computing it at most once per key.

        Args:
            text: Text to embed
            model_version: Embedding model version (current version when omitted)
            deadline: Request deadline; bounds how long this caller waits

        Returns:
            Read-only float32 vector
        """
        if text is None or not str(text).strip():
            raise ValidationError("text must not be empty")

        model_version = model_version or self.registry.current_version
        embedder = self.registry.get(model_version)
        if embedder is None:
            raise ValidationError(f"Unknown embedding model version: {model_version}")

        key = self.make_key(text, model_version)

        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            self.hits += 1
            return cached

        task = self._inflight.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(self._compute(key, text, embedder))
            task.add_done_callback(self._consume_exception)
            self._inflight[key] = task
        else:
            self.shared += 1
            logger.debug(f"Joining in-flight embedding for key {key[:12]}")

        # Shield so one caller's cancellation or timeout never cancels the shared work
        waiter = asyncio.shield(task)
        remaining = deadline.remaining() if deadline else None
        if remaining is None:
            return await waiter
        try:
            return await asyncio.wait_for(waiter, timeout=remaining)
        except asyncio.TimeoutError:
            raise PipelineTimeoutError(deadline.seconds, "embed_query")

    async def _compute(self, key: str, text: str, embedder) -> np.ndarray:
        self.computations += 1
        try:
            vector = await call_with_retry(
                lambda: embedder.embed(text),
                "embed_text",
                self.retry_policy,
            )
            vector = np.asarray(vector, dtype=np.float32)
            vector.setflags(write=False)
            self._store(key, vector)
            return vector
        finally:
            self._inflight.pop(key, None)

    def _store(self, key: str, vector: np.ndarray):
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted embedding {evicted[:12]}")

    @staticmethod
    def _consume_exception(task: asyncio.Task):
        # Marks the failure as retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    def invalidate(self, text: str, model_version: str) -> bool:
        return self._entries.pop(self.make_key(text, model_version), None) is not None

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "capacity": self.capacity,
            "in_flight": len(self._inflight),
            "hits": self.hits,
            "misses": self.misses,
            "shared": self.shared,
            "computations": self.computations,
        }
