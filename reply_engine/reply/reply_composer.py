"""
Reply Composer: the end-to-end enhanced reply pipeline.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..analysis.intent_recognizer import IntentRecognizer
from ..analysis.language_detector import LanguageDetector
from ..analysis.models import (
    IntentResult,
    IntentType,
    LanguageCode,
    LanguageResult,
    SentimentResult,
    SentimentType,
)
from ..analysis.sentiment_analyzer import SentimentAnalyzer
from ..analysis.translator import LANGUAGE_NAMES, Translator
from ..errors import (
    IndexEmptyError,
    PartialResultWarning,
    PipelineTimeoutError,
    UpstreamAnalysisError,
    ValidationError,
)
from ..index.embedder import EmbedderRegistry
from ..index.embedding_cache import EmbeddingCache
from ..index.models import RetrievalMatch
from ..kb.history import ConversationHistory
from ..models.llm_manager import LLMManager
from ..models.resilience import Deadline, RetryPolicy, call_with_retry
from ..retrieval.knowledge_retriever import KnowledgeRetriever
from .adjustments import adjust_draft
from .confidence import ConfidenceModel
from .models import PipelineRun, PipelineStage, ReplyDraft, ReplyResult

logger = logging.getLogger(__name__)

NO_KNOWLEDGE_REPLY = (
    "Thank you for your message. I couldn't find specific information about this in our "
    "knowledge base, so I've passed your question to our support team and someone will "
    "get back to you shortly."
)


class ReplyComposer:
    """Turns a customer query into a grounded, tone-adjusted, localized reply."""

    def __init__(
        self,
        config: Dict[str, Any],
        llm_manager: LLMManager,
        language_detector: LanguageDetector,
        sentiment_analyzer: SentimentAnalyzer,
        intent_recognizer: IntentRecognizer,
        retriever: KnowledgeRetriever,
        translator: Translator,
        cache: EmbeddingCache,
        registry: EmbedderRegistry,
        history: Optional[ConversationHistory] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.llm_manager = llm_manager
        self.language_detector = language_detector
        self.sentiment_analyzer = sentiment_analyzer
        self.intent_recognizer = intent_recognizer
        self.retriever = retriever
        self.translator = translator
        self.cache = cache
        self.registry = registry
        self.history = history
        self.retry_policy = retry_policy or RetryPolicy()

        self.deadline_seconds = config.get("deadline_seconds", 60)
        self.history_messages = config.get("history_messages", 5)
        self.source_chars = config.get("source_chars", 1500)
        self.confidence_model = ConfidenceModel(config)

    async def generate_enhanced_reply(
        self,
        query: str,
        customer_id: str,
        target_language: Optional[Any] = None,
        debug: bool = False,
    ) -> ReplyResult:
        """
        Generate an enhanced reply for a customer query.

        Args:
            query: The customer's message
            customer_id: Opaque customer identity
            target_language: Reply language override; the detected language otherwise
            debug: Log per-stage detail

        Returns:
            ReplyResult with cited sources and pipeline metadata

        Raises:
            ValidationError: Empty query or customer id
            InvalidTargetLanguageError: Unsupported explicit target language
            PipelineTimeoutError: The request deadline expired
        """
        if query is None or not str(query).strip():
            raise ValidationError("query must not be empty")
        if not customer_id:
            raise ValidationError("customer_id is required")
        explicit_target = self.translator.validate_target(target_language) if target_language is not None else None

        logger.info(f"Generating enhanced reply for customer {customer_id}")
        run = PipelineRun()
        deadline = Deadline(self.deadline_seconds)
        try:
            return await asyncio.wait_for(
                self._run(query, customer_id, explicit_target, run, deadline, debug),
                timeout=self.deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Reply for customer {customer_id} timed out at stage {run.stage.value}")
            raise PipelineTimeoutError(self.deadline_seconds, run.stage.value)
        except PipelineTimeoutError:
            logger.error(f"Reply for customer {customer_id} ran out of time at stage {run.stage.value}")
            raise

    async def _run(
        self,
        query: str,
        customer_id: str,
        explicit_target: Optional[LanguageCode],
        run: PipelineRun,
        deadline: Deadline,
        debug: bool,
    ) -> ReplyResult:
        warnings: List[PartialResultWarning] = []
        working_language = self.translator.knowledge_base_language

        # The query embedding only needs the text, so it overlaps with detection
        embed_task = asyncio.ensure_future(
            self.cache.get_or_compute(query, self.registry.current_version, deadline)
        )
        history_task = asyncio.ensure_future(self._load_history(customer_id))
        signal_tasks: List[asyncio.Future] = []
        try:
            language_result = await self._detect_language(query, deadline, warnings)
            detected = self.language_detector.effective_language(language_result)
            customer_language = detected if detected.is_known else self.language_detector.fallback_language
            if customer_language not in self.translator.supported_targets:
                logger.info(f"{customer_language.value} is not an enabled reply language, using {working_language.value}")
                customer_language = working_language
            run.advance(PipelineStage.LANGUAGE_DETECTED)
            if debug:
                logger.info(f"Language: {language_result.to_dict()} -> replying in {customer_language.value}")

            signal_tasks = [
                asyncio.ensure_future(self._analyze_sentiment(query, detected, deadline, warnings)),
                asyncio.ensure_future(self._recognize_intent(query, detected, deadline, warnings)),
                asyncio.ensure_future(self._retrieve(query, detected, embed_task, deadline, warnings)),
            ]
            sentiment_result, intent_result, matches = await asyncio.gather(*signal_tasks)
            run.advance(PipelineStage.SIGNALS_GATHERED)
            run.advance(PipelineStage.KNOWLEDGE_RETRIEVED)
            if debug:
                logger.info(f"Sentiment: {sentiment_result.to_dict()}")
                logger.info(f"Intent: {intent_result.to_dict()}")
                logger.info(f"Retrieved: {[m.to_dict() for m in matches]}")

            history = await history_task
        finally:
            for task in (embed_task, history_task, *signal_tasks):
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    task.exception()

        body = await self._compose_draft(query, matches, history, working_language, deadline, warnings)
        run.advance(PipelineStage.DRAFT_COMPOSED)

        draft = adjust_draft(ReplyDraft(body=body), sentiment_result, intent_result)
        reply_text = draft.render()
        run.advance(PipelineStage.TONE_ADJUSTED)

        reply_language = explicit_target or customer_language
        translated = False
        translation_fell_back = False
        if reply_language is not working_language:
            try:
                reply_text = await self.translator.translate(reply_text, reply_language, working_language, deadline)
                translated = True
            except UpstreamAnalysisError as e:
                translation_fell_back = True
                warnings.append(PartialResultWarning("translate", str(e)))
                logger.warning(f"Translation to {reply_language.value} failed, replying untranslated: {e}")
        run.advance(PipelineStage.TRANSLATED)

        degraded_signals = sum(
            1 for w in warnings if w.stage in ("detect_language", "analyze_sentiment", "recognize_intent", "retrieve")
        )
        confidence = self.confidence_model.score(
            matches,
            self.retriever.min_score,
            translation_fell_back=translation_fell_back,
            degraded_signals=degraded_signals,
        )
        run.advance(PipelineStage.FINALIZED)

        metadata = {
            "customer_id": customer_id,
            "language": language_result.language.value,
            "language_confidence": language_result.confidence,
            "language_uncertain": not detected.is_known,
            "working_language": working_language.value,
            "reply_language": (working_language if translation_fell_back else reply_language).value,
            "sentiment": sentiment_result.to_dict(),
            "intent": intent_result.to_dict(),
            "translated": translated,
            "translation_fallback": translation_fell_back,
            "source_count": len(matches),
            "model_version": self.registry.current_version,
            "stages": dict(run.timings),
            "elapsed_seconds": round(run.elapsed, 4),
        }
        if warnings:
            logger.warning(f"Reply for customer {customer_id} completed with {len(warnings)} degraded step(s)")
        logger.info(f"Reply ready for customer {customer_id}: confidence {confidence:.2f}, {len(matches)} source(s)")

        return ReplyResult(
            reply=reply_text,
            confidence=confidence,
            sources=tuple(matches),
            metadata=metadata,
            warnings=tuple(warnings),
        )

    async def _detect_language(self, query: str, deadline: Deadline, warnings: List[PartialResultWarning]) -> LanguageResult:
        try:
            result = await self.language_detector.analyze(query, deadline=deadline)
        except UpstreamAnalysisError as e:
            warnings.append(PartialResultWarning("detect_language", str(e)))
            logger.warning(f"Language detection failed, using fallback language: {e}")
            return LanguageResult(language=LanguageCode.UNSPECIFIED, confidence=0.0, degraded=True)
        if result.degraded:
            warnings.append(PartialResultWarning("detect_language", "rule-based fallback used"))
        return result

    async def _analyze_sentiment(
        self, query: str, language: LanguageCode, deadline: Deadline, warnings: List[PartialResultWarning]
    ) -> SentimentResult:
        try:
            result = await self.sentiment_analyzer.analyze(query, language, deadline)
        except UpstreamAnalysisError as e:
            warnings.append(PartialResultWarning("analyze_sentiment", str(e)))
            logger.warning(f"Sentiment analysis failed, assuming neutral: {e}")
            return SentimentResult(SentimentType.NEUTRAL, 0.0, "Sentiment unavailable", degraded=True)
        if result.degraded:
            warnings.append(PartialResultWarning("analyze_sentiment", "rule-based fallback used"))
        return result

    async def _recognize_intent(
        self, query: str, language: LanguageCode, deadline: Deadline, warnings: List[PartialResultWarning]
    ) -> IntentResult:
        try:
            result = await self.intent_recognizer.analyze(query, language, deadline)
        except UpstreamAnalysisError as e:
            warnings.append(PartialResultWarning("recognize_intent", str(e)))
            logger.warning(f"Intent recognition failed, assuming other: {e}")
            return IntentResult(IntentType.OTHER, 0.0, degraded=True)
        if result.degraded:
            warnings.append(PartialResultWarning("recognize_intent", "rule-based fallback used"))
        return result

    async def _retrieve(
        self,
        query: str,
        language: LanguageCode,
        embed_task: "asyncio.Future",
        deadline: Deadline,
        warnings: List[PartialResultWarning],
    ) -> List[RetrievalMatch]:
        try:
            query_vector = await embed_task
            return await self.retriever.retrieve(query, language, deadline=deadline, query_vector=query_vector)
        except (UpstreamAnalysisError, IndexEmptyError) as e:
            warnings.append(PartialResultWarning("retrieve", str(e)))
            logger.warning(f"Knowledge retrieval failed, continuing without sources: {e}")
            return []

    async def _load_history(self, customer_id: str) -> List[Any]:
        if self.history is None or self.history_messages < 1:
            return []
        try:
            return await self.history.recent_messages(customer_id, self.history_messages)
        except Exception as e:
            logger.warning(f"Could not load conversation history for {customer_id}: {e}")
            return []

    async def _compose_draft(
        self,
        query: str,
        matches: List[RetrievalMatch],
        history: List[Any],
        working_language: LanguageCode,
        deadline: Deadline,
        warnings: List[PartialResultWarning],
    ) -> str:
        """Draft a reply grounded in the sources, falling back to an extract of the best one."""
        if not matches:
            return NO_KNOWLEDGE_REPLY

        prompt = self._build_draft_prompt(query, matches, history, working_language)

        async def attempt():
            text = (await self.llm_manager.generate(prompt, temperature=0.3)).strip()
            if not text:
                raise ValueError("empty draft")
            return text

        try:
            return await call_with_retry(attempt, "compose_draft", self.retry_policy, deadline)
        except UpstreamAnalysisError as e:
            warnings.append(PartialResultWarning("compose_draft", str(e)))
            logger.warning(f"Draft generation failed, using extractive reply: {e}")
            return self._extractive_draft(matches)

    def _build_draft_prompt(
        self,
        query: str,
        matches: List[RetrievalMatch],
        history: List[Any],
        working_language: LanguageCode,
    ) -> str:
        sources = []
        for match in matches:
            item = match.item
            sources.append(f"[{match.rank}] {item.title}\n{item.content[:self.source_chars]}")
        sources_text = "\n\n".join(sources)

        history_text = ""
        if history:
            lines = [f"{m.role}: {m.content}" for m in history]
            history_text = "Recent conversation:\n" + "\n".join(lines) + "\n\n"

        return f"""You are a customer support agent. Answer the customer's question using ONLY the knowledge below.
If the knowledge does not fully answer the question, say what you can and offer to follow up.
Write in {LANGUAGE_NAMES[working_language]}. Do not add greetings or sign-offs.

Knowledge:
{sources_text}

{history_text}Customer question: {query}

Answer:"""

    def _extractive_draft(self, matches: List[RetrievalMatch]) -> str:
        item = matches[0].item
        content = item.content.strip()
        if len(content) > self.source_chars:
            content = content[:self.source_chars].rsplit(" ", 1)[0] + "..."
        return f"Here's what I found in our help center about \"{item.title}\":\n\n{content}"
