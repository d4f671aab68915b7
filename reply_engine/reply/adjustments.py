"""
Sentiment-driven tone and intent-driven structure adjustments.

Templates are written in the knowledge base language; the composer translates
the finished reply afterwards.
"""

import logging
from typing import Optional, Union

from ..analysis.models import IntentResult, IntentType, SentimentResult, SentimentType
from .models import ReplyDraft

logger = logging.getLogger(__name__)

SENTIMENT_OPENINGS = {
    SentimentType.VERY_NEGATIVE: (
        "I'm truly sorry for the trouble this has caused. I understand how frustrating "
        "this must be, and I want to get it resolved for you as quickly as possible."
    ),
    SentimentType.NEGATIVE: "I'm sorry to hear you've run into this. Let me help.",
    SentimentType.POSITIVE: "Thanks for reaching out, it's great to hear from you!",
    SentimentType.NEUTRAL: "",
}

INTENT_CLOSINGS = {
    IntentType.HOW_TO: (
        "Next steps:\n"
        "1. Follow the steps above in order.\n"
        "2. If something on your screen looks different, reply with the exact message you see.\n"
        "3. Let us know once you're done so we can confirm everything works."
    ),
    IntentType.COMPLAINT: "I've recorded your feedback, and a member of our team will follow up with you personally.",
    IntentType.RETURN: "To start the return, reply with {order} and the item(s) you'd like to send back.",
    IntentType.EXCHANGE: "To arrange the exchange, reply with {order} and the item you'd like instead.",
    IntentType.SHIPPING: "Share {order} and we'll check the latest tracking status for you.",
    IntentType.PURCHASE: "If you'd like, I can help you complete your order or check availability.",
    IntentType.PRICE_INFO: "Prices can change with promotions, so let us know if you'd like a current quote.",
    IntentType.PRODUCT_INFO: "Let me know if you'd like more details about this product.",
    IntentType.GREETING: "How can I help you today?",
    IntentType.THANKS: "You're welcome! Happy to help anytime.",
    IntentType.FAREWELL: "Thanks for contacting us, have a great day!",
    IntentType.QUESTION: "Is there anything else I can help you with?",
    IntentType.OTHER: "",
}

SentimentLike = Union[SentimentResult, SentimentType, str]
IntentLike = Union[IntentResult, IntentType, str]


def _as_draft(reply: Union[str, ReplyDraft]) -> ReplyDraft:
    return reply if isinstance(reply, ReplyDraft) else ReplyDraft(body=reply)


def _order_reference(intent: IntentLike) -> str:
    if isinstance(intent, IntentResult):
        for entity in intent.entities:
            if entity.type == "order_number":
                return f"order {entity.value}"
    return "your order number"


def apply_sentiment(draft: Union[str, ReplyDraft], sentiment: SentimentLike) -> ReplyDraft:
    """Set the opening of a draft from the customer's sentiment."""
    sentiment_type = sentiment.sentiment if isinstance(sentiment, SentimentResult) else SentimentType.parse(
        sentiment.value if isinstance(sentiment, SentimentType) else sentiment
    )
    return _as_draft(draft).with_opening(SENTIMENT_OPENINGS.get(sentiment_type, ""))


def apply_intent(draft: Union[str, ReplyDraft], intent: IntentLike) -> ReplyDraft:
    """Set the closing of a draft from the customer's intent."""
    intent_type = intent.intent if isinstance(intent, IntentResult) else IntentType.parse(
        intent.value if isinstance(intent, IntentType) else intent
    )
    template = INTENT_CLOSINGS.get(intent_type, "")
    return _as_draft(draft).with_closing(template.format(order=_order_reference(intent)))


def adjust_reply_by_sentiment(reply: str, sentiment: SentimentLike) -> str:
    """Prefix a plain reply with a tone-matched opening."""
    opening = apply_sentiment(ReplyDraft(body=reply), sentiment).opening
    return ReplyDraft(body=reply, opening=opening).render()


def adjust_reply_by_intent(reply: str, intent: IntentLike) -> str:
    """Append intent-specific next steps to a plain reply."""
    closing = apply_intent(ReplyDraft(body=reply), intent).closing
    return ReplyDraft(body=reply, closing=closing).render()


def adjust_draft(draft: ReplyDraft, sentiment: Optional[SentimentLike], intent: Optional[IntentLike]) -> ReplyDraft:
    if sentiment is not None:
        draft = apply_sentiment(draft, sentiment)
    if intent is not None:
        draft = apply_intent(draft, intent)
    return draft
