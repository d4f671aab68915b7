"""
Knowledge graph construction and structure analysis.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

import networkx as nx
import numpy as np

from ..errors import ValidationError
from ..index.embedder import EmbedderRegistry
from ..index.vector_index import VectorIndex
from ..kb.knowledge_store import KnowledgeStore
from .models import GraphNode, KnowledgeGraph, StructureReport

logger = logging.getLogger(__name__)


class KnowledgeGraphBuilder:
    """Builds a similarity graph from indexed vectors and analyzes its structure."""

    def __init__(
        self,
        config: Dict[str, Any],
        vector_index: VectorIndex,
        knowledge_store: KnowledgeStore,
        registry: EmbedderRegistry,
    ):
        self.config = config
        self.vector_index = vector_index
        self.knowledge_store = knowledge_store
        self.registry = registry

        self.min_similarity = config.get("min_similarity", 0.75)
        self.duplicate_threshold = config.get("duplicate_threshold", 0.95)
        self.block_size = max(1, int(config.get("block_size", 512)))
        self.gap_ratio = config.get("gap_ratio", 0.5)
        self.top_n = config.get("top_n", 10)

    def build_graph(self, min_similarity: Optional[float] = None, model_version: Optional[str] = None) -> KnowledgeGraph:
        """
        Build the graph from stored vectors; nothing is re-embedded.

        Similarity uses the same [0, 1] scale as search scores. All pairs are
        compared exactly, one block of rows at a time.

        Args:
            min_similarity: Edge threshold (configured default when omitted)
            model_version: Vector version to use (current when omitted)

        Returns:
            KnowledgeGraph over every embedded item
        """
        min_similarity = self.min_similarity if min_similarity is None else min_similarity
        if not 0.0 <= min_similarity <= 1.0:
            raise ValidationError("min_similarity must be within [0, 1]")
        model_version = model_version or self.registry.current_version

        records = [
            record for record in self.vector_index.records(model_version)
            if self.knowledge_store.get_item(record.item_id) is not None
        ]
        nodes = []
        for record in records:
            item = self.knowledge_store.get_item(record.item_id)
            nodes.append(GraphNode(item.id, item.title, item.category, tuple(item.tags)))

        edges = []
        if len(records) > 1:
            matrix = np.stack([record.vector for record in records])
            n = matrix.shape[0]
            for start in range(0, n, self.block_size):
                end = min(start + self.block_size, n)
                scores = (matrix[start:end] @ matrix.T + 1.0) / 2.0
                rows, cols = np.nonzero(scores >= min_similarity)
                for row, col in zip(rows.tolist(), cols.tolist()):
                    i = start + row
                    if col > i:
                        edges.append((i, col, float(min(1.0, scores[row, col]))))

        missing = len(self.knowledge_store) - len(nodes)
        if missing > 0:
            logger.info(f"{missing} items have no {model_version} vector and are not in the graph")
        logger.info(f"Built knowledge graph: {len(nodes)} nodes, {len(edges)} edges (min_similarity {min_similarity})")
        return KnowledgeGraph(model_version=model_version, min_similarity=min_similarity, nodes=nodes, edges=edges)

    def analyze_structure(
        self,
        graph: KnowledgeGraph,
        query_log: Optional[Mapping[str, int]] = None,
    ) -> StructureReport:
        """
        Analyze a graph for near-duplicates, isolated items and coverage gaps.

        Args:
            graph: Graph from build_graph
            query_log: Query volume per category; gap analysis is skipped without it

        Returns:
            StructureReport
        """
        duplicates = nx.Graph()
        for source, target, weight in graph.edges:
            if weight >= self.duplicate_threshold:
                duplicates.add_edge(graph.nodes[source].item_id, graph.nodes[target].item_id)
        duplicate_clusters = sorted(
            (sorted(component) for component in nx.connected_components(duplicates)),
            key=lambda cluster: (-len(cluster), cluster[0]),
        )

        degrees = graph.degrees()
        isolated = [node.item_id for node, degree in zip(graph.nodes, degrees) if degree == 0]

        items = self.knowledge_store.get_all_items()
        category_distribution = dict(Counter(item.category for item in items).most_common())
        tag_counts = Counter(tag for item in items for tag in item.tags)
        relation_types = Counter(
            str(relation.get("relation") or "related")
            for item in items
            for relation in item.metadata.get("relations") or []
            if isinstance(relation, dict)
        )

        connected = sorted(
            ((node, degree) for node, degree in zip(graph.nodes, degrees) if degree > 0),
            key=lambda x: -x[1],
        )[:self.top_n]

        return StructureReport(
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
            duplicate_clusters=duplicate_clusters,
            isolated_items=isolated,
            gap_categories=self._gap_categories(category_distribution, query_log) if query_log else None,
            category_distribution=category_distribution,
            top_tags=tag_counts.most_common(self.top_n),
            singleton_tags=sorted(tag for tag, count in tag_counts.items() if count == 1),
            most_connected_items=[
                {"id": node.item_id, "title": node.title, "connections": degree} for node, degree in connected
            ],
            total_relations=sum(relation_types.values()),
            relation_types=dict(relation_types.most_common()),
        )

    def _gap_categories(self, category_distribution: Dict[str, int], query_log: Mapping[str, int]) -> List[Dict[str, Any]]:
        """Categories whose item count is low relative to the queries they receive."""
        total_items = sum(category_distribution.values())
        total_queries = sum(count for count in query_log.values() if count > 0)
        if total_items == 0 or total_queries == 0:
            return []

        overall = total_items / total_queries
        gaps = []
        for category, queries in query_log.items():
            if queries <= 0:
                continue
            items = category_distribution.get(category, 0)
            ratio = items / queries
            if ratio < self.gap_ratio * overall:
                gaps.append({"category": category, "items": items, "queries": queries, "ratio": round(ratio, 4)})
        return sorted(gaps, key=lambda gap: gap["ratio"])
