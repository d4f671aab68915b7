"""
Knowledge retrieval: embed the query, search the index, filter and rank.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..analysis.models import LanguageCode
from ..errors import IndexEmptyError, ValidationError
from ..index.embedder import EmbedderRegistry
from ..index.embedding_cache import EmbeddingCache
from ..index.models import RetrievalMatch, SearchFilter
from ..index.vector_index import VectorIndex
from ..kb.knowledge_store import KnowledgeStore
from ..models.resilience import Deadline

logger = logging.getLogger(__name__)


class KnowledgeRetriever:
    """Finds the knowledge items most relevant to a query."""

    def __init__(
        self,
        config: Dict[str, Any],
        vector_index: VectorIndex,
        cache: EmbeddingCache,
        registry: EmbedderRegistry,
        knowledge_store: KnowledgeStore,
    ):
        self.config = config
        self.vector_index = vector_index
        self.cache = cache
        self.registry = registry
        self.knowledge_store = knowledge_store

        self.min_score = config.get("min_score", 0.5)
        self.k = config.get("k", 5)
        self.allow_version_fallback = config.get("allow_version_fallback", True)
        self.fallback_discount = config.get("fallback_discount", 0.9)

    async def retrieve(
        self,
        query: str,
        language: Optional[LanguageCode] = None,
        filters: Optional[SearchFilter] = None,
        min_score: Optional[float] = None,
        k: Optional[int] = None,
        deadline: Optional[Deadline] = None,
        query_vector: Optional[np.ndarray] = None,
    ) -> List[RetrievalMatch]:
        """
        Retrieve ranked knowledge for a query.

        Items that already have a current-version vector are searched with the
        current model. While a regeneration pass is incomplete, items that only
        have an older vector are searched with that older model and their scores
        calibrated before the two result lists are merged.

        Args:
            query: Query text
            language: Detected query language, used as a filter hint
            filters: Optional category/tag/source filter
            min_score: Minimum similarity score (configured default when omitted)
            k: Maximum number of matches
            deadline: Request deadline
            query_vector: Precomputed query embedding for the current model version

        Returns:
            Matches sorted by descending score; empty when nothing qualifies
        """
        if query is None or not str(query).strip():
            raise ValidationError("query must not be empty")
        min_score = self.min_score if min_score is None else min_score
        k = self.k if k is None else k
        if k < 1:
            raise ValidationError("k must be at least 1")
        if not 0.0 <= min_score <= 1.0:
            raise ValidationError("min_score must be within [0, 1]")

        version = self.registry.current_version
        searches = []
        if self.vector_index.has_version(version):
            if query_vector is None:
                query_vector = await self.cache.get_or_compute(query, version, deadline)
            searches.append(self._current_search(query_vector, version, k))
        searches.extend(await self._previous_version_searches(query, deadline))

        def search(search_filter: Optional[SearchFilter]) -> List[RetrievalMatch]:
            merged = [match for run in searches for match in run(search_filter)]
            return sorted(merged, key=lambda m: (-m.score, -m.updated_at))

        matches = self._search_with_language_hint(search, filters, language, min_score)
        results = self._attach_items(matches)[:k]
        logger.info(f"Retrieved {len(results)} knowledge items (version {version}, min_score {min_score})")
        return results

    def _current_search(self, query_vector: np.ndarray, version: str, k: int) -> Callable:
        def run(search_filter: Optional[SearchFilter]) -> List[RetrievalMatch]:
            try:
                return self.vector_index.search(query_vector, version, k, search_filter)
            except IndexEmptyError:
                return []
        return run

    def _search_with_language_hint(
        self,
        search: Callable[[Optional[SearchFilter]], List[RetrievalMatch]],
        filters: Optional[SearchFilter],
        language: Optional[LanguageCode],
        min_score: float,
    ) -> List[RetrievalMatch]:
        """Prefer qualifying matches in the query language, else search every language."""
        base = filters or SearchFilter()
        if language is not None and language.is_known and base.language is None:
            hinted = [m for m in search(replace(base, language=language.value)) if m.score >= min_score]
            if hinted:
                return hinted
            logger.debug(f"No {language.value} knowledge above {min_score}, retrying without language filter")
        relaxed = None if base.is_empty else base
        return [m for m in search(relaxed) if m.score >= min_score]

    async def _previous_version_searches(self, query: str, deadline: Optional[Deadline]) -> List[Callable]:
        """
        Searches over older model versions for items with no current vector.

        Each item is searched under the newest version that holds it. Raw
        scores from another model are not comparable with the current model's,
        so they are calibrated within their version before merging.
        """
        current = self.registry.current_version
        covered = {record.item_id for record in self.vector_index.records(current)}
        older = [
            version for version in reversed(self.registry.versions())
            if version != current and self.vector_index.has_version(version)
        ]
        if not older:
            if not covered:
                logger.info("No indexed vectors in any model version")
            return []
        if not self.allow_version_fallback:
            if not covered:
                logger.info(f"Index empty for {current}, no version fallback")
            return []

        searches = []
        for version in older:
            pending = {r.item_id for r in self.vector_index.records(version)} - covered
            if not pending:
                continue
            logger.warning(f"{len(pending)} items have no {current} vector yet, searching them under {version}")
            query_vector = await self.cache.get_or_compute(query, version, deadline)
            searches.append(self._previous_search(query_vector, version, frozenset(pending)))
            covered |= pending
        return searches

    def _previous_search(self, query_vector: np.ndarray, version: str, pending: frozenset) -> Callable:
        def run(search_filter: Optional[SearchFilter]) -> List[RetrievalMatch]:
            try:
                population = self.vector_index.count(version)
                candidates = self.vector_index.search(query_vector, version, population, search_filter)
            except IndexEmptyError:
                return []
            return self._calibrate([m for m in candidates if m.item_id in pending])
        return run

    def _calibrate(self, matches: List[RetrievalMatch]) -> List[RetrievalMatch]:
        """Min-max rescale within one version, never above the raw score, then discount."""
        if not matches:
            return []
        scores = [match.score for match in matches]
        low, high = min(scores), max(scores)
        spread = high - low
        calibrated = []
        for match in matches:
            scaled = (match.score - low) / spread if spread > 1e-9 else match.score
            score = min(scaled, match.score) * self.fallback_discount
            calibrated.append(replace(match, score=score, calibrated=True))
        return calibrated

    def _attach_items(self, matches: List[RetrievalMatch]) -> List[RetrievalMatch]:
        attached = []
        for match in matches:
            item = self.knowledge_store.get_item(match.item_id)
            if item is None:
                logger.debug(f"Dropping match for missing item {match.item_id}")
                continue
            attached.append(replace(match, item=item, rank=len(attached) + 1))
        return attached
