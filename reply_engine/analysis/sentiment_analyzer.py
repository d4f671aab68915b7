"""
Sentiment analysis for customer queries.
"""

import logging
from typing import Optional

from ..errors import UpstreamAnalysisError
from ..models.resilience import Deadline
from .base import LLMBackedAnalyzer
from .models import LanguageCode, SentimentResult, SentimentType, clamp_confidence
from .rules import LexiconSentimentClassifier

logger = logging.getLogger(__name__)


class SentimentAnalyzer(LLMBackedAnalyzer):
    """Classifies text into positive, neutral, negative or very negative."""

    operation = "analyze_sentiment"

    def __init__(self, config, llm_manager, retry_policy=None):
        super().__init__(config, llm_manager, retry_policy)
        self.rules = LexiconSentimentClassifier()

    async def analyze(
        self,
        text: str,
        hint_language: Optional[LanguageCode] = None,
        deadline: Optional[Deadline] = None,
    ) -> SentimentResult:
        text = self._require_text(text)
        language_line = f"Text language: {hint_language.value}\n" if hint_language and hint_language.is_known else ""
        categories = ", ".join(s.value for s in SentimentType)

        prompt = f"""Analyze the sentiment of this customer message.
{language_line}Message: \"\"\"{text}\"\"\"

Respond ONLY with a JSON object:
{{"sentiment": "<one of: {categories}>", "score": <confidence 0.0-1.0>, "explanation": "<one short sentence>"}}"""

        try:
            payload = await self._ask_json(prompt, deadline)
        except UpstreamAnalysisError as e:
            if not self.rule_fallback:
                raise
            sentiment, score, explanation = self.rules.classify(text)
            logger.warning(f"Sentiment analysis degraded to lexicon rules ({sentiment.value}): {e}")
            return SentimentResult(sentiment=sentiment, score=score, explanation=explanation, degraded=True)

        explanation = str(payload.get("explanation") or "").strip() or "No explanation given"
        return SentimentResult(
            sentiment=SentimentType.parse(payload.get("sentiment")),
            score=clamp_confidence(payload.get("score")),
            explanation=explanation,
        )
