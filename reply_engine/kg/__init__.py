"""
Knowledge graph construction, structure analysis and organization.
"""

from .models import (
    GraphNode,
    KnowledgeGraph,
    OptimizationSuggestions,
    OrganizationResult,
    RelationSuggestion,
    StructureReport,
    Suggestion,
)
from .graph_builder import KnowledgeGraphBuilder
from .organizer import KnowledgeOrganizer

__all__ = [
    "GraphNode", "KnowledgeGraph", "OptimizationSuggestions", "OrganizationResult", "RelationSuggestion",
    "StructureReport", "Suggestion", "KnowledgeGraphBuilder", "KnowledgeOrganizer",
]
