"""
Knowledge items, their durable store, and conversation history.
"""

from .models import KnowledgeItem, ConversationMessage
from .knowledge_store import KnowledgeStore
from .history import ConversationHistory, InMemoryConversationHistory

__all__ = [
    "KnowledgeItem", "ConversationMessage", "KnowledgeStore",
    "ConversationHistory", "InMemoryConversationHistory",
]
