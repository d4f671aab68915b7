"""
Knowledge organization: suggested categories, tags and relations for items,
and taxonomy changes for the whole knowledge base.
"""

import asyncio
import json
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from ..analysis.models import clamp_confidence
from ..errors import IndexEmptyError, UpstreamAnalysisError
from ..index.embedder import EmbedderRegistry
from ..index.models import RetrievalMatch
from ..index.vector_index import VectorIndex
from ..kb.knowledge_store import KnowledgeStore
from ..kb.models import KnowledgeItem
from ..models.llm_manager import LLMManager, parse_json_response
from ..models.resilience import RetryPolicy, call_with_retry
from .models import OptimizationSuggestions, OrganizationResult, RelationSuggestion, StructureReport, Suggestion

logger = logging.getLogger(__name__)

MAX_APPLIED_TAGS = 5
MAX_APPLIED_RELATIONS = 10


class KnowledgeOrganizer:
    """Suggests and applies organization for knowledge items."""

    def __init__(
        self,
        config: Dict[str, Any],
        llm_manager: LLMManager,
        knowledge_store: KnowledgeStore,
        vector_index: VectorIndex,
        registry: EmbedderRegistry,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.llm_manager = llm_manager
        self.knowledge_store = knowledge_store
        self.vector_index = vector_index
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()

        self.neighbor_count = config.get("neighbor_count", 8)
        self.max_concurrent = max(1, int(config.get("max_concurrent", 3)))

    def _neighbors(self, item: KnowledgeItem) -> List[RetrievalMatch]:
        version = self.registry.current_version
        record = self.vector_index.get_record(item.id, version)
        if record is None:
            return []
        try:
            matches = self.vector_index.search(record.vector, version, self.neighbor_count + 1)
        except IndexEmptyError:
            return []
        return [m for m in matches if m.item_id != item.id and self.knowledge_store.get_item(m.item_id)][:self.neighbor_count]

    async def organize_item(self, item_id: str) -> OrganizationResult:
        """
        Suggest categories, tags and relations for one item.

        The model sees the existing taxonomy and the item's nearest neighbours;
        relation suggestions are limited to those neighbours. When the model is
        unavailable the suggestions are derived from the neighbours alone.
        """
        item = self.knowledge_store.require_item(item_id)
        neighbors = self._neighbors(item)
        by_id = {m.item_id: m for m in neighbors}

        categories = sorted(self.knowledge_store.list_categories())
        tags = sorted(self.knowledge_store.list_tags())
        neighbor_lines = [
            f'- id={m.item_id} similarity={m.score:.2f} title="{self.knowledge_store.get_item(m.item_id).title}"'
            for m in neighbors
        ]

        prompt = f"""Organize this knowledge base item.

Title: {item.title}
Content: {item.content[:2000]}
Current category: {item.category}
Current tags: {json.dumps(item.tags, ensure_ascii=False)}

Existing categories: {json.dumps(categories, ensure_ascii=False)}
Existing tags: {json.dumps(tags[:100], ensure_ascii=False)}

Similar items:
{chr(10).join(neighbor_lines) or "(none)"}

Prefer existing categories and tags when they fit. Only relate the item to the similar items listed.
Respond ONLY with a JSON object:
{{"categories": [{{"name": "...", "confidence": 0.0}}],
  "tags": [{{"name": "...", "confidence": 0.0}}],
  "relations": [{{"item_id": "...", "relation": "related|prerequisite|follow_up|duplicate", "confidence": 0.0}}]}}"""

        async def attempt():
            parsed = parse_json_response(await self.llm_manager.generate(prompt))
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
            return parsed

        try:
            payload = await call_with_retry(attempt, "organize_item", self.retry_policy)
        except UpstreamAnalysisError as e:
            logger.warning(f"Organization of {item_id} degraded to neighbour statistics: {e}")
            return self._organize_from_neighbors(item, neighbors)

        relations = []
        for raw in payload.get("relations") or []:
            if not isinstance(raw, dict) or raw.get("item_id") not in by_id:
                continue
            related = self.knowledge_store.get_item(raw["item_id"])
            relations.append(RelationSuggestion(
                item_id=related.id,
                title=related.title,
                relation=str(raw.get("relation") or "related"),
                confidence=clamp_confidence(raw.get("confidence"), default=by_id[related.id].score),
            ))

        return OrganizationResult(
            item_id=item.id,
            suggested_categories=self._suggestions(payload.get("categories")),
            suggested_tags=self._suggestions(payload.get("tags")),
            suggested_relations=sorted(relations, key=lambda r: -r.confidence),
        )

    @staticmethod
    def _suggestions(raw_list: Any) -> List[Suggestion]:
        suggestions = {}
        for raw in raw_list or []:
            if isinstance(raw, str):
                name, confidence = raw, 0.5
            elif isinstance(raw, dict) and raw.get("name"):
                name, confidence = raw["name"], clamp_confidence(raw.get("confidence"))
            else:
                continue
            name = str(name).strip()
            if name and confidence > suggestions.get(name, -1.0):
                suggestions[name] = confidence
        return [Suggestion(name, conf) for name, conf in sorted(suggestions.items(), key=lambda x: -x[1])]

    async def suggest_optimizations(self, report: StructureReport) -> OptimizationSuggestions:
        """
        Ask the model for taxonomy changes: new categories and tags, and merges of overlapping ones.

        Returns empty suggestions marked degraded when the model is unavailable.
        """
        total_items = sum(report.category_distribution.values())
        distribution_lines = [
            f"- {category}: {count} items ({count / total_items:.1%})"
            for category, count in report.category_distribution.items()
        ]
        tags = sorted(self.knowledge_store.list_tags())

        prompt = f"""Review the structure of a customer support knowledge base.

Total items: {total_items}

Category distribution:
{chr(10).join(distribution_lines) or "(none)"}

Tags: {json.dumps(tags[:200], ensure_ascii=False)}

Suggest 2-3 important missing categories, 3-5 important missing tags, and merges for overlapping categories or tags.
Respond ONLY with a JSON object:
{{"new_categories": [{{"name": "...", "description": "..."}}],
  "category_merges": [{{"categories": ["...", "..."], "new_category": "...", "reason": "..."}}],
  "new_tags": [{{"name": "...", "description": "..."}}],
  "tag_merges": [{{"tags": ["...", "..."], "new_tag": "...", "reason": "..."}}]}}"""

        async def attempt():
            parsed = parse_json_response(await self.llm_manager.generate(prompt))
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
            return parsed

        try:
            payload = await call_with_retry(attempt, "suggest_optimizations", self.retry_policy)
        except UpstreamAnalysisError as e:
            logger.warning(f"Optimization suggestions unavailable: {e}")
            return OptimizationSuggestions(degraded=True)

        return OptimizationSuggestions(
            new_categories=self._named_entries(payload.get("new_categories")),
            category_merges=self._merges(payload.get("category_merges"), "categories", "new_category"),
            new_tags=self._named_entries(payload.get("new_tags")),
            tag_merges=self._merges(payload.get("tag_merges"), "tags", "new_tag"),
        )

    @staticmethod
    def _named_entries(raw_list: Any) -> List[Dict[str, str]]:
        entries = []
        for raw in raw_list or []:
            if isinstance(raw, str):
                raw = {"name": raw}
            if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
                continue
            entries.append({"name": str(raw["name"]).strip(), "description": str(raw.get("description") or "")})
        return entries

    @staticmethod
    def _merges(raw_list: Any, members_key: str, target_key: str) -> List[Dict[str, Any]]:
        merges = []
        for raw in raw_list or []:
            if not isinstance(raw, dict) or not raw.get(target_key):
                continue
            members = [str(m) for m in raw.get(members_key) or [] if str(m).strip()]
            if len(members) < 2:
                continue
            merges.append({members_key: members, target_key: str(raw[target_key]), "reason": str(raw.get("reason") or "")})
        return merges

    def _organize_from_neighbors(self, item: KnowledgeItem, neighbors: List[RetrievalMatch]) -> OrganizationResult:
        category_votes: Counter = Counter()
        tag_votes: Counter = Counter()
        relations = []
        for match in neighbors:
            related = self.knowledge_store.get_item(match.item_id)
            category_votes[related.category] += match.score
            for tag in related.tags:
                tag_votes[tag] += match.score
            relations.append(RelationSuggestion(related.id, related.title, "related", round(match.score, 4)))

        total = sum(m.score for m in neighbors) or 1.0
        return OrganizationResult(
            item_id=item.id,
            suggested_categories=[Suggestion(c, round(v / total, 4)) for c, v in category_votes.most_common(3)],
            suggested_tags=[Suggestion(t, round(min(1.0, v / total), 4)) for t, v in tag_votes.most_common(10)],
            suggested_relations=relations,
            degraded=True,
        )

    def apply_organization_result(
        self,
        result: OrganizationResult,
        apply_categories: bool = True,
        apply_tags: bool = True,
        apply_relations: bool = True,
    ) -> KnowledgeItem:
        """
        Apply suggestions: the best category, the top tags and the top relations.

        These are metadata edits, so the item's embedding stays valid.
        """
        item = self.knowledge_store.require_item(result.item_id)
        changes: Dict[str, Any] = {}

        if apply_categories and result.suggested_categories:
            best = max(result.suggested_categories, key=lambda s: s.confidence)
            changes["category"] = best.name

        if apply_tags and result.suggested_tags:
            top = [s.name for s in sorted(result.suggested_tags, key=lambda s: -s.confidence)[:MAX_APPLIED_TAGS]]
            changes["tags"] = list(dict.fromkeys(list(item.tags) + top))

        if apply_relations and result.suggested_relations:
            top = sorted(result.suggested_relations, key=lambda r: -r.confidence)[:MAX_APPLIED_RELATIONS]
            metadata = dict(item.metadata)
            metadata["relations"] = [
                {"item_id": r.item_id, "relation": r.relation, "confidence": r.confidence} for r in top
            ]
            changes["metadata"] = metadata

        if not changes:
            return item
        logger.info(f"Applying organization to {item.id}: {', '.join(changes)}")
        return self.knowledge_store.update_item(item.id, **changes)

    async def batch_organize_items(self, item_ids: Sequence[str], auto_apply: bool = False) -> Dict[str, Any]:
        """
        Organize many items with bounded concurrency.

        Per-item failures are logged and counted; they never stop the batch.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)
        summary = {"processed": 0, "organized": 0, "applied": 0, "failed": 0, "results": [], "errors": []}

        async def process_item(item_id: str):
            async with semaphore:
                try:
                    result = await self.organize_item(item_id)
                    summary["organized"] += 1
                    summary["results"].append(result)
                    if auto_apply:
                        self.apply_organization_result(result)
                        summary["applied"] += 1
                except Exception as e:
                    summary["failed"] += 1
                    summary["errors"].append(f"{item_id}: {e}")
                    logger.error(f"Failed to organize {item_id}: {e}")
                finally:
                    summary["processed"] += 1

        await asyncio.gather(*(process_item(item_id) for item_id in item_ids))
        if summary["applied"]:
            await self.vector_index.flush_async()
        logger.info(
            f"Batch organization: {summary['organized']}/{summary['processed']} organized, "
            f"{summary['applied']} applied, {summary['failed']} failed"
        )
        return summary
