"""
Shared plumbing for analyzers backed by the LLM manager.
"""

import logging
from typing import Any, Dict, Optional

from ..errors import ValidationError
from ..models.llm_manager import LLMManager, parse_json_response
from ..models.resilience import Deadline, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class LLMBackedAnalyzer:
    """Base for analyzers that ask the LLM for a JSON verdict."""

    operation = "analysis"

    def __init__(self, config: Dict[str, Any], llm_manager: LLMManager, retry_policy: Optional[RetryPolicy] = None):
        self.config = config
        self.llm_manager = llm_manager
        self.retry_policy = retry_policy or RetryPolicy()
        self.rule_fallback = config.get("rule_fallback", True)

    @staticmethod
    def _require_text(text: str) -> str:
        if text is None or not str(text).strip():
            raise ValidationError("text must not be empty")
        return str(text)

    async def _ask_json(self, prompt: str, deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        """Generate and parse a JSON object, retrying transport and parse failures alike."""

        async def attempt():
            response = await self.llm_manager.generate(prompt, temperature=0.0)
            parsed = parse_json_response(response)
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
            return parsed

        return await call_with_retry(attempt, self.operation, self.retry_policy, deadline)
