"""
Embedding model adapters and the registry that tracks model versions.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np

from ..models.llm_manager import LLMManager

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Text to vector capability tagged with the producing model version."""

    model_version: str

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        pass


class SentenceTransformerEmbedder(Embedder):
    """Local sentence-transformers model, encoded in a worker thread."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", model_version: Optional[str] = None):
        self.model_name = model_name
        self.model_version = model_version or f"st:{model_name}"
        self._model = None
        self._load_lock = asyncio.Lock()

    async def _get_model(self):
        async with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model {self.model_name}")
                self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
        return self._model

    async def embed(self, text: str) -> np.ndarray:
        model = await self._get_model()
        vector = await asyncio.to_thread(lambda: model.encode([text])[0])
        return np.asarray(vector, dtype=np.float32)


class LLMEmbedder(Embedder):
    """Embeddings from a hosted provider through the LLM manager."""

    def __init__(self, llm_manager: LLMManager, model_version: str, provider: Optional[str] = None):
        self.llm_manager = llm_manager
        self.model_version = model_version
        self.provider = provider

    async def embed(self, text: str) -> np.ndarray:
        vector = await self.llm_manager.embed(text, provider=self.provider)
        return np.asarray(vector, dtype=np.float32)


class EmbedderRegistry:
    """Maps model versions to embedders and knows which version is current."""

    def __init__(self):
        self._embedders: Dict[str, Embedder] = {}
        self._current: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], llm_manager: Optional[LLMManager] = None) -> "EmbedderRegistry":
        """
        Build the registry from the ``embedding`` config section.

        Example section::

            current: st:all-MiniLM-L6-v2
            models:
              - version: st:all-MiniLM-L6-v2
                type: sentence_transformers
                model: sentence-transformers/all-MiniLM-L6-v2
              - version: openai:text-embedding-3-small
                type: llm
                provider: openai
        """
        registry = cls()
        models: List[Dict[str, Any]] = config.get("models") or [
            {"type": "sentence_transformers", "model": "sentence-transformers/all-MiniLM-L6-v2"}
        ]
        for model_config in models:
            kind = model_config.get("type", "sentence_transformers")
            if kind == "sentence_transformers":
                embedder = SentenceTransformerEmbedder(
                    model_config.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
                    model_config.get("version"),
                )
            elif kind == "llm":
                if llm_manager is None:
                    logger.warning(f"Skipping LLM embedder {model_config.get('version')}: no LLM manager")
                    continue
                provider = model_config.get("provider")
                embedder = LLMEmbedder(
                    llm_manager,
                    model_config.get("version") or f"{provider or 'llm'}:embedding",
                    provider,
                )
            else:
                logger.warning(f"Unknown embedder type: {kind}")
                continue
            registry.register(embedder)

        current = config.get("current")
        if current:
            registry.set_current(current)
        return registry

    def register(self, embedder: Embedder, current: bool = False):
        """Register an embedder; the first registered one becomes current by default."""
        self._embedders[embedder.model_version] = embedder
        if current or self._current is None:
            self._current = embedder.model_version

    def set_current(self, model_version: str):
        if model_version not in self._embedders:
            raise KeyError(f"Unknown embedding model version: {model_version}")
        self._current = model_version

    @property
    def current_version(self) -> str:
        if self._current is None:
            raise RuntimeError("No embedders registered")
        return self._current

    @property
    def current(self) -> Embedder:
        return self._embedders[self.current_version]

    def get(self, model_version: str) -> Optional[Embedder]:
        return self._embedders.get(model_version)

    def versions(self) -> List[str]:
        """Registered versions in registration order (oldest first)."""
        return list(self._embedders)
