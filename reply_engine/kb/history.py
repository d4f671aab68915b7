"""
Conversation history collaborator.

Message storage lives outside the reply engine; this is the narrow interface
the engine reads recent messages through, plus an in-memory implementation.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List

from .models import ConversationMessage

logger = logging.getLogger(__name__)


class ConversationHistory(ABC):
    """Read access to a customer's recent messages."""

    @abstractmethod
    async def recent_messages(self, customer_id: str, limit: int = 20) -> List[ConversationMessage]:
        """Return up to ``limit`` most recent messages, oldest first."""
        pass


class InMemoryConversationHistory(ConversationHistory):

    def __init__(self):
        self._messages: Dict[str, List[ConversationMessage]] = defaultdict(list)

    def add_message(self, customer_id: str, role: str, content: str) -> ConversationMessage:
        message = ConversationMessage(customer_id=customer_id, role=role, content=content)
        self._messages[customer_id].append(message)
        return message

    async def recent_messages(self, customer_id: str, limit: int = 20) -> List[ConversationMessage]:
        if limit < 1:
            return []
        return list(self._messages.get(customer_id, [])[-limit:])
