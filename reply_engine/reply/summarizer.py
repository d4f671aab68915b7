"""
Conversation summaries for a customer's recent messages.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import UpstreamAnalysisError, ValidationError
from ..kb.history import ConversationHistory
from ..models.llm_manager import LLMManager, parse_json_response
from ..models.resilience import RetryPolicy, call_with_retry
from .models import ConversationSummary

logger = logging.getLogger(__name__)


def _string_list(value: Any) -> tuple:
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if str(v).strip())


class ConversationSummarizer:
    """Summarizes recent conversation with a customer."""

    def __init__(
        self,
        config: Dict[str, Any],
        llm_manager: LLMManager,
        history: Optional[ConversationHistory],
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.llm_manager = llm_manager
        self.history = history
        self.retry_policy = retry_policy or RetryPolicy()

    async def summarize(self, customer_id: str, limit: int = 20) -> ConversationSummary:
        """
        Summarize the most recent messages for a customer.

        Args:
            customer_id: Customer whose history is read
            limit: Maximum number of messages to include

        Returns:
            ConversationSummary; degraded to an extract when the LLM is unavailable
        """
        if not customer_id:
            raise ValidationError("customer_id is required")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        messages = await self.history.recent_messages(customer_id, limit) if self.history else []
        if not messages:
            return ConversationSummary(summary="No conversation history")

        transcript = "\n".join(f"{m.role}: {m.content}" for m in messages)
        prompt = f"""Summarize this customer support conversation.

{transcript}

Respond ONLY with a JSON object:
{{"summary": "<2-3 sentences>",
  "key_points": ["..."],
  "customer_needs": ["..."],
  "action_items": ["..."]}}"""

        async def attempt():
            parsed = parse_json_response(await self.llm_manager.generate(prompt))
            if not isinstance(parsed, dict) or not parsed.get("summary"):
                raise ValueError("summary missing from response")
            return parsed

        try:
            payload = await call_with_retry(attempt, "summarize_conversation", self.retry_policy)
        except UpstreamAnalysisError as e:
            logger.warning(f"Conversation summary for {customer_id} degraded to extract: {e}")
            return self._extractive_summary(messages)

        return ConversationSummary(
            summary=str(payload["summary"]).strip(),
            key_points=_string_list(payload.get("key_points")),
            customer_needs=_string_list(payload.get("customer_needs")),
            action_items=_string_list(payload.get("action_items")),
            message_count=len(messages),
        )

    @staticmethod
    def _extractive_summary(messages: List[Any]) -> ConversationSummary:
        customer_lines = [m.content.strip() for m in messages if m.is_customer and m.content.strip()]
        key_points = tuple(line[:200] for line in customer_lines[-3:])
        return ConversationSummary(
            summary=f"{len(messages)} recent messages, {len(customer_lines)} from the customer.",
            key_points=key_points,
            message_count=len(messages),
            degraded=True,
        )
