"""
Intent recognition and entity extraction for customer queries.
"""

import logging
from typing import Optional

from ..errors import UpstreamAnalysisError
from ..models.resilience import Deadline
from .base import LLMBackedAnalyzer
from .models import IntentResult, IntentType, LanguageCode, clamp_confidence, validate_entities
from .rules import PatternIntentClassifier

logger = logging.getLogger(__name__)


class IntentRecognizer(LLMBackedAnalyzer):
    """Recognizes what the customer wants and which entities they mention."""

    operation = "recognize_intent"

    def __init__(self, config, llm_manager, retry_policy=None):
        super().__init__(config, llm_manager, retry_policy)
        self.rules = PatternIntentClassifier()

    async def analyze(
        self,
        text: str,
        hint_language: Optional[LanguageCode] = None,
        deadline: Optional[Deadline] = None,
    ) -> IntentResult:
        """
        Recognize intent and entities.

        Entity spans are character offsets into ``text``; spans outside the text
        are dropped rather than returned.
        """
        text = self._require_text(text)
        language_line = f"Text language: {hint_language.value}\n" if hint_language and hint_language.is_known else ""
        intents = ", ".join(i.value for i in IntentType)

        prompt = f"""Identify the intent of this customer message and extract entities
(order numbers, product names, dates, prices, emails, ...).
{language_line}Message: \"\"\"{text}\"\"\"

Respond ONLY with a JSON object:
{{"intent": "<one of: {intents}>",
  "confidence": <0.0-1.0>,
  "entities": [{{"type": "<type>", "value": "<exact substring>", "position": [<start>, <end>]}}]}}

Positions are 0-based character offsets into the message, end exclusive."""

        try:
            payload = await self._ask_json(prompt, deadline)
        except UpstreamAnalysisError as e:
            if not self.rule_fallback:
                raise
            intent, confidence = self.rules.classify(text)
            logger.warning(f"Intent recognition degraded to pattern rules ({intent.value}): {e}")
            return IntentResult(
                intent=intent,
                confidence=confidence,
                entities=self.rules.extract_entities(text),
                degraded=True,
            )

        raw_entities = payload.get("entities") or []
        entities = validate_entities(text, raw_entities if isinstance(raw_entities, list) else [])
        dropped = len(raw_entities) - len(entities) if isinstance(raw_entities, list) else 0
        if dropped:
            logger.debug(f"Dropped {dropped} entities with invalid spans")

        return IntentResult(
            intent=IntentType.parse(payload.get("intent")),
            confidence=clamp_confidence(payload.get("confidence")),
            entities=entities,
        )
