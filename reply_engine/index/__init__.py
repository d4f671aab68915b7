"""
Vector index, embedding cache, embedders and regeneration.
"""

from .models import EmbeddingRecord, RetrievalMatch, SearchFilter
from .vector_index import VectorIndex, normalize
from .embedder import Embedder, EmbedderRegistry, LLMEmbedder, SentenceTransformerEmbedder
from .embedding_cache import EmbeddingCache
from .regeneration import EmbeddingRegenerator, RegenerationJob

__all__ = [
    "EmbeddingRecord", "RetrievalMatch", "SearchFilter",
    "VectorIndex", "normalize",
    "Embedder", "EmbedderRegistry", "LLMEmbedder", "SentenceTransformerEmbedder",
    "EmbeddingCache", "EmbeddingRegenerator", "RegenerationJob",
]
