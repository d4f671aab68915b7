"""
Text translation through the LLM manager.
"""

import logging
from typing import Any, Dict, Optional, Set

from ..errors import InvalidTargetLanguageError, ValidationError
from ..models.llm_manager import LLMManager
from ..models.resilience import Deadline, RetryPolicy, call_with_retry
from .models import LanguageCode

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    LanguageCode.ZH_TW: "Traditional Chinese",
    LanguageCode.ZH_CN: "Simplified Chinese",
    LanguageCode.EN: "English",
    LanguageCode.JA: "Japanese",
    LanguageCode.KO: "Korean",
    LanguageCode.TH: "Thai",
    LanguageCode.VI: "Vietnamese",
    LanguageCode.FR: "French",
    LanguageCode.ES: "Spanish",
    LanguageCode.DE: "German",
}


class Translator:
    """Translates replies between supported languages."""

    operation = "translate_text"

    def __init__(self, config: Dict[str, Any], llm_manager: LLMManager, retry_policy: Optional[RetryPolicy] = None):
        self.config = config
        self.llm_manager = llm_manager
        self.retry_policy = retry_policy or RetryPolicy()
        self.knowledge_base_language = LanguageCode.parse(config.get("knowledge_base_language", "en"))
        if not self.knowledge_base_language.is_known:
            self.knowledge_base_language = LanguageCode.EN

        targets = config.get("supported_targets") or [code.value for code in LANGUAGE_NAMES]
        self.supported_targets: Set[LanguageCode] = {
            code for code in (LanguageCode.parse(t) for t in targets) if code.is_known
        }

    def validate_target(self, target_language: Any) -> LanguageCode:
        """
        Parse and check a translation target.

        Raises:
            ValidationError: If no target was given
            InvalidTargetLanguageError: If the target is unknown or not enabled
        """
        if target_language is None or (isinstance(target_language, str) and not target_language.strip()):
            raise ValidationError("target language is required")

        target = LanguageCode.parse(target_language)
        if target not in self.supported_targets:
            raw = target_language.value if isinstance(target_language, LanguageCode) else target_language
            raise InvalidTargetLanguageError(raw)
        return target

    async def translate(
        self,
        text: str,
        target_language: Any,
        source_language: Any = None,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """
        Translate text into the target language.

        Args:
            text: Text to translate (must be non-empty)
            target_language: LanguageCode or code string
            source_language: Optional source language; skips translation when equal to target
            deadline: Request deadline

        Returns:
            Translated text

        Raises:
            ValidationError, InvalidTargetLanguageError, UpstreamAnalysisError
        """
        if text is None or not str(text).strip():
            raise ValidationError("text must not be empty")
        target = self.validate_target(target_language)
        source = LanguageCode.parse(source_language)

        if source is target:
            return text

        source_line = f" from {LANGUAGE_NAMES[source]}" if source.is_known else ""
        prompt = f"""Translate the following text{source_line} into {LANGUAGE_NAMES[target]}.
Preserve meaning, tone, formatting, numbers, names and line breaks.
Return only the translation, without quotes or commentary.

Text:
{text}"""

        async def attempt():
            translated = (await self.llm_manager.generate(prompt, temperature=0.0)).strip()
            if not translated:
                raise ValueError("empty translation")
            return translated

        logger.debug(f"Translating {len(text)} chars to {target.value}")
        return await call_with_retry(attempt, self.operation, self.retry_policy, deadline)
