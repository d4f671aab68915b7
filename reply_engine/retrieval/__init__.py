"""
Knowledge retrieval.
"""

from .knowledge_retriever import KnowledgeRetriever

__all__ = ["KnowledgeRetriever"]
