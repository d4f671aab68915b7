"""
Language detection for customer queries and replies.
"""

import logging
from typing import Any, Dict, Optional

from ..errors import UpstreamAnalysisError
from ..models.llm_manager import LLMManager
from ..models.resilience import Deadline, RetryPolicy
from .base import LLMBackedAnalyzer
from .models import LanguageCode, LanguageResult, clamp_confidence
from .rules import ScriptLanguageDetector

logger = logging.getLogger(__name__)


class LanguageDetector(LLMBackedAnalyzer):
    """Detects the language of a text and reports how sure it is."""

    operation = "detect_language"

    def __init__(self, config: Dict[str, Any], llm_manager: LLMManager, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(config, llm_manager, retry_policy)
        self.confidence_threshold = config.get("language_confidence_threshold", 0.6)
        self.fallback_language = LanguageCode.parse(config.get("fallback_language", "en"))
        if not self.fallback_language.is_known:
            self.fallback_language = LanguageCode.EN
        self.rules = ScriptLanguageDetector()

    async def analyze(
        self,
        text: str,
        hint_language: Optional[LanguageCode] = None,
        deadline: Optional[Deadline] = None,
    ) -> LanguageResult:
        """
        Detect the language of a text.

        Args:
            text: Text to inspect (must be non-empty)
            hint_language: Optional prior, passed to the model as a hint
            deadline: Request deadline

        Returns:
            LanguageResult with a closed language code and confidence
        """
        text = self._require_text(text)
        supported = ", ".join(code.value for code in LanguageCode if code.is_known)
        hint = f"\nThe sender usually writes in: {hint_language.value}" if hint_language and hint_language.is_known else ""

        prompt = f"""Identify the language of the text below.{hint}

Text: \"\"\"{text}\"\"\"

Respond ONLY with a JSON object:
{{"language": "<one of: {supported}, or unspecified>", "confidence": <0.0-1.0>}}

Use zh-TW for Traditional Chinese and zh-CN for Simplified Chinese."""

        try:
            payload = await self._ask_json(prompt, deadline)
        except UpstreamAnalysisError as e:
            if not self.rule_fallback:
                raise
            language, confidence = self.rules.detect(text)
            logger.warning(f"Language detection degraded to script rules ({language.value}): {e}")
            return LanguageResult(language=language, confidence=confidence, degraded=True)

        language = LanguageCode.parse(payload.get("language"))
        confidence = clamp_confidence(payload.get("confidence"), default=0.5)
        if not language.is_known:
            confidence = 0.0
        return LanguageResult(language=language, confidence=confidence)

    def is_confident(self, result: LanguageResult) -> bool:
        return result.language.is_known and result.confidence >= self.confidence_threshold

    def effective_language(self, result: LanguageResult) -> LanguageCode:
        """The detected language, or UNSPECIFIED when confidence is below threshold."""
        return result.language if self.is_confident(result) else LanguageCode.UNSPECIFIED
