"""
Reply Engine service: every component wired once, every operation in one place.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .analysis import (
    IntentRecognizer,
    IntentResult,
    LanguageCode,
    LanguageDetector,
    LanguageResult,
    SentimentAnalyzer,
    SentimentResult,
    Translator,
)
from .errors import UpstreamAnalysisError, ValidationError
from .index import (
    EmbedderRegistry,
    EmbeddingCache,
    EmbeddingRecord,
    EmbeddingRegenerator,
    RegenerationJob,
    RetrievalMatch,
    SearchFilter,
    VectorIndex,
)
from .kb import ConversationHistory, InMemoryConversationHistory, KnowledgeItem, KnowledgeStore
from .kg import KnowledgeGraph, KnowledgeGraphBuilder, KnowledgeOrganizer, OrganizationResult, StructureReport
from .learning import ActiveLearningEngine, LearningSample, LearningStore
from .models import LLMManager, RetryPolicy
from .reply import (
    ConversationSummarizer,
    ConversationSummary,
    ReplyComposer,
    ReplyResult,
    adjust_reply_by_intent,
    adjust_reply_by_sentiment,
)
from .retrieval import KnowledgeRetriever

logger = logging.getLogger(__name__)


def _storage_path(section: Dict[str, Any]) -> Optional[Path]:
    path = section.get("storage_path")
    return Path(path) if path else None


class ReplyEngine:
    """
    Explicit service object for the reply engine.

    The vector index and embedding cache are the only shared mutable state;
    they are created here and handed to every component that needs them.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        llm_manager: Optional[LLMManager] = None,
        registry: Optional[EmbedderRegistry] = None,
        history: Optional[ConversationHistory] = None,
    ):
        self.config = config
        self.debug_mode = config.get("debug", {}).get("enabled", False)

        self.llm_manager = llm_manager or LLMManager(config)
        self.retry_policy = RetryPolicy.from_config(config.get("resilience", {}))
        self.registry = registry or EmbedderRegistry.from_config(config.get("embedding", {}), self.llm_manager)
        self.history = history or InMemoryConversationHistory()

        self.vector_index = VectorIndex(_storage_path(config.get("index", {})))
        self.knowledge_store = KnowledgeStore(_storage_path(config.get("kb", {})), self.vector_index)
        self.cache = EmbeddingCache(config.get("cache", {}), self.registry, self.retry_policy)

        analysis_config = config.get("analysis", {})
        self.language_detector = LanguageDetector(analysis_config, self.llm_manager, self.retry_policy)
        self.sentiment_analyzer = SentimentAnalyzer(analysis_config, self.llm_manager, self.retry_policy)
        self.intent_recognizer = IntentRecognizer(analysis_config, self.llm_manager, self.retry_policy)
        self.translator = Translator(config.get("translation", {}), self.llm_manager, self.retry_policy)

        self.retriever = KnowledgeRetriever(
            config.get("retrieval", {}), self.vector_index, self.cache, self.registry, self.knowledge_store
        )
        self.composer = ReplyComposer(
            config.get("composer", {}),
            self.llm_manager,
            self.language_detector,
            self.sentiment_analyzer,
            self.intent_recognizer,
            self.retriever,
            self.translator,
            self.cache,
            self.registry,
            history=self.history,
            retry_policy=self.retry_policy,
        )
        self.summarizer = ConversationSummarizer(
            config.get("composer", {}), self.llm_manager, self.history, self.retry_policy
        )

        self.regenerator = EmbeddingRegenerator(
            config.get("regeneration", {}), self.knowledge_store, self.vector_index, self.cache, self.registry
        )
        learning_config = config.get("learning", {})
        self.learning_store = LearningStore(_storage_path(learning_config))
        self.learning = ActiveLearningEngine(learning_config, self.learning_store, self.knowledge_store, self.regenerator)

        self.graph_builder = KnowledgeGraphBuilder(
            config.get("graph", {}), self.vector_index, self.knowledge_store, self.registry
        )
        self.organizer = KnowledgeOrganizer(
            config.get("organization", {}),
            self.llm_manager,
            self.knowledge_store,
            self.vector_index,
            self.registry,
            self.retry_policy,
        )
        logger.info(f"Reply engine ready (embedding model {self.registry.current_version})")

    # Signal analysis and translation

    async def detect_language(self, text: str) -> LanguageResult:
        return await self.language_detector.analyze(text)

    async def translate_text(self, text: str, target_language: Any, source_language: Any = None) -> str:
        return await self.translator.translate(text, target_language, source_language)

    async def analyze_sentiment(self, text: str, language: Any = None) -> SentimentResult:
        return await self.sentiment_analyzer.analyze(text, LanguageCode.parse(language))

    async def recognize_intent(self, text: str, language: Any = None) -> IntentResult:
        return await self.intent_recognizer.analyze(text, LanguageCode.parse(language))

    async def generate_conversation_summary(self, customer_id: str, limit: int = 20) -> ConversationSummary:
        return await self.summarizer.summarize(customer_id, limit)

    # Reply composition

    def adjust_reply_by_sentiment(self, reply: str, sentiment: Any) -> str:
        if not (reply or "").strip():
            raise ValidationError("reply must not be empty")
        return adjust_reply_by_sentiment(reply, sentiment)

    def adjust_reply_by_intent(self, reply: str, intent: Any) -> str:
        if not (reply or "").strip():
            raise ValidationError("reply must not be empty")
        return adjust_reply_by_intent(reply, intent)

    async def generate_multilingual_reply(self, reply: str, target_language: Any) -> str:
        """
        Translate a finished reply into the target language.

        A reply already in the target language is returned unchanged, as is the
        original reply when translation fails.
        """
        if not (reply or "").strip():
            raise ValidationError("reply must not be empty")
        target = self.translator.validate_target(target_language)

        try:
            detected = await self.language_detector.analyze(reply)
            source = self.language_detector.effective_language(detected)
        except UpstreamAnalysisError as e:
            logger.warning(f"Could not detect reply language, translating without a source hint: {e}")
            source = LanguageCode.UNSPECIFIED
        if source is target:
            return reply

        try:
            return await self.translator.translate(reply, target, source)
        except UpstreamAnalysisError as e:
            logger.warning(f"Multilingual reply to {target.value} failed, returning original: {e}")
            return reply

    async def generate_enhanced_reply(
        self,
        query: str,
        customer_id: str,
        target_language: Any = None,
        debug: bool = False,
    ) -> ReplyResult:
        return await self.composer.generate_enhanced_reply(
            query, customer_id, target_language=target_language, debug=debug or self.debug_mode
        )

    # Active learning

    async def active_learning(
        self,
        original_reply: str,
        human_reply: str,
        query: str,
        source_ids: Sequence[str] = (),
    ) -> LearningSample:
        return await self.learning.learn(original_reply, human_reply, query, source_ids)

    def learning_stats(self) -> Dict[str, Any]:
        return self.learning.get_stats()

    # Knowledge items and embeddings

    async def add_knowledge_item(self, title: str, content: str, embed: bool = True, **fields) -> KnowledgeItem:
        """Create a knowledge item and, by default, index it right away."""
        item = self.knowledge_store.create_item(title, content, **fields)
        if embed:
            await self.regenerator.embed_item(item)
        return item

    async def generate_embedding_for_item(self, item_id: str) -> EmbeddingRecord:
        item = self.knowledge_store.require_item(item_id)
        return await self.regenerator.embed_item(item)

    async def generate_embedding_for_text(self, text: str, persist_as: Optional[str] = None) -> np.ndarray:
        """
        Embed arbitrary text with the current model.

        The vector is transient unless ``persist_as`` is given, in which case
        the text is stored as a knowledge item with that title and indexed.
        """
        vector = await self.cache.get_or_compute(text, self.registry.current_version)
        if persist_as:
            item = self.knowledge_store.create_item(persist_as, text, source="text")
            await self.regenerator.embed_item(item)
        return vector

    async def search_similar_items(
        self,
        query: str,
        k: int = 5,
        filters: Optional[Mapping[str, Any]] = None,
        min_score: Optional[float] = None,
    ) -> List[RetrievalMatch]:
        search_filter = filters if isinstance(filters, SearchFilter) else SearchFilter.from_dict(filters)
        return await self.retriever.retrieve(query, filters=search_filter, min_score=min_score, k=k)

    def batch_regenerate_embeddings(self, model_version: Optional[str] = None) -> RegenerationJob:
        """Start re-embedding every item; returns immediately with a job handle."""
        return self.regenerator.start(model_version)

    def embedding_stats(self) -> Dict[str, Any]:
        index_stats = self.vector_index.get_stats()
        store_stats = self.knowledge_store.get_stats()
        current = self.registry.current_version
        up_to_date = sum(1 for item in self.knowledge_store.get_all_items() if self.regenerator.is_current(item, current))
        job = self.regenerator.active_job
        return {
            "current_model_version": current,
            "total_items": store_stats["total_items"],
            "items_up_to_date": up_to_date,
            "items_pending": store_stats["total_items"] - up_to_date,
            "index": index_stats,
            "cache": self.cache.get_stats(),
            "last_regeneration": job.to_dict() if job else None,
        }

    # Knowledge structure

    async def organize_item(self, item_id: str) -> OrganizationResult:
        return await self.organizer.organize_item(item_id)

    def apply_organization_result(
        self,
        result: OrganizationResult,
        apply_categories: bool = True,
        apply_tags: bool = True,
        apply_relations: bool = True,
    ) -> KnowledgeItem:
        item = self.organizer.apply_organization_result(result, apply_categories, apply_tags, apply_relations)
        self.vector_index.flush()
        return item

    async def batch_organize_items(self, item_ids: Sequence[str], auto_apply: bool = False) -> Dict[str, Any]:
        return await self.organizer.batch_organize_items(item_ids, auto_apply)

    def generate_knowledge_graph(self, min_similarity: Optional[float] = None) -> KnowledgeGraph:
        return self.graph_builder.build_graph(min_similarity)

    async def analyze_knowledge_structure(
        self,
        query_log: Optional[Mapping[str, int]] = None,
        min_similarity: Optional[float] = None,
        suggest: bool = True,
    ) -> StructureReport:
        """Graph statistics for the knowledge base, with model-suggested taxonomy changes unless ``suggest`` is off."""
        graph = self.graph_builder.build_graph(min_similarity)
        report = self.graph_builder.analyze_structure(graph, query_log)
        if suggest:
            report.optimization = await self.organizer.suggest_optimizations(report)
        return report

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for every component."""
        return {
            "knowledge": self.knowledge_store.get_stats(),
            "embeddings": self.embedding_stats(),
            "learning": self.learning_stats(),
            "providers": self.llm_manager.get_available_providers(),
            "llm_requests": self.llm_manager.get_usage(),
        }

    async def close(self):
        """Let background learning updates finish and write pending index changes."""
        await self.learning.drain()
        await self.vector_index.flush_async()
