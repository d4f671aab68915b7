"""
Data models for the knowledge graph module.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class GraphNode:
    """A knowledge item in the graph."""
    item_id: str
    title: str
    category: str
    tags: Tuple[str, ...] = ()


@dataclass
class KnowledgeGraph:
    """
    Similarity graph over knowledge items.

    Nodes live in an arena list; edges are ``(source_index, target_index, weight)``
    tuples with ``source_index < target_index``. The graph is a disposable view
    derived from the vector index.
    """
    model_version: str
    min_similarity: float
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[Tuple[int, int, float]] = field(default_factory=list)

    def __post_init__(self):
        self._node_index = {node.item_id: i for i, node in enumerate(self.nodes)}
        self._degrees: Optional[List[int]] = None

    def index_of(self, item_id: str) -> Optional[int]:
        return self._node_index.get(item_id)

    def degrees(self) -> List[int]:
        if self._degrees is None:
            degrees = [0] * len(self.nodes)
            for source, target, _ in self.edges:
                degrees[source] += 1
                degrees[target] += 1
            self._degrees = degrees
        return self._degrees

    def neighbors(self, item_id: str) -> List[Tuple[str, float]]:
        index = self.index_of(item_id)
        if index is None:
            return []
        found = []
        for source, target, weight in self.edges:
            if source == index:
                found.append((self.nodes[target].item_id, weight))
            elif target == index:
                found.append((self.nodes[source].item_id, weight))
        return sorted(found, key=lambda x: -x[1])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_version": self.model_version,
            "min_similarity": self.min_similarity,
            "nodes": [
                {"id": n.item_id, "title": n.title, "category": n.category, "tags": list(n.tags)}
                for n in self.nodes
            ],
            "edges": [
                {"source": self.nodes[s].item_id, "target": self.nodes[t].item_id, "weight": round(w, 4)}
                for s, t, w in self.edges
            ],
        }


@dataclass
class OptimizationSuggestions:
    """Taxonomy changes proposed for the whole knowledge base."""
    new_categories: List[Dict[str, str]] = field(default_factory=list)
    category_merges: List[Dict[str, Any]] = field(default_factory=list)
    new_tags: List[Dict[str, str]] = field(default_factory=list)
    tag_merges: List[Dict[str, Any]] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_categories": self.new_categories,
            "category_merges": self.category_merges,
            "new_tags": self.new_tags,
            "tag_merges": self.tag_merges,
            "degraded": self.degraded,
        }


@dataclass
class StructureReport:
    """Structure analysis of a knowledge graph."""
    node_count: int
    edge_count: int
    duplicate_clusters: List[List[str]]
    isolated_items: List[str]
    gap_categories: Optional[List[Dict[str, Any]]] = None
    category_distribution: Dict[str, int] = field(default_factory=dict)
    top_tags: List[Tuple[str, int]] = field(default_factory=list)
    singleton_tags: List[str] = field(default_factory=list)
    most_connected_items: List[Dict[str, Any]] = field(default_factory=list)
    total_relations: int = 0
    relation_types: Dict[str, int] = field(default_factory=dict)
    optimization: Optional[OptimizationSuggestions] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "duplicate_clusters": self.duplicate_clusters,
            "isolated_items": self.isolated_items,
            "category_distribution": self.category_distribution,
            "top_tags": [{"tag": tag, "count": count} for tag, count in self.top_tags],
            "singleton_tags": self.singleton_tags,
            "most_connected_items": self.most_connected_items,
            "relations": {"total": self.total_relations, "types": self.relation_types},
        }
        if self.gap_categories is not None:
            data["gap_categories"] = self.gap_categories
        if self.optimization is not None:
            data["optimization"] = self.optimization.to_dict()
        return data


@dataclass
class Suggestion:
    name: str
    confidence: float


@dataclass
class RelationSuggestion:
    item_id: str
    title: str
    relation: str
    confidence: float


@dataclass
class OrganizationResult:
    """Suggested categories, tags and relations for one knowledge item."""
    item_id: str
    suggested_categories: List[Suggestion] = field(default_factory=list)
    suggested_tags: List[Suggestion] = field(default_factory=list)
    suggested_relations: List[RelationSuggestion] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "suggested_categories": [vars(s) for s in self.suggested_categories],
            "suggested_tags": [vars(s) for s in self.suggested_tags],
            "suggested_relations": [vars(r) for r in self.suggested_relations],
            "degraded": self.degraded,
        }
