"""
Reply composition: pipeline, adjustments, confidence and summaries.
"""

from .models import ConversationSummary, PipelineRun, PipelineStage, ReplyDraft, ReplyResult
from .adjustments import adjust_reply_by_intent, adjust_reply_by_sentiment
from .confidence import ConfidenceModel
from .reply_composer import ReplyComposer
from .summarizer import ConversationSummarizer

__all__ = [
    "ConversationSummary", "PipelineRun", "PipelineStage", "ReplyDraft", "ReplyResult",
    "adjust_reply_by_intent", "adjust_reply_by_sentiment",
    "ConfidenceModel", "ReplyComposer", "ConversationSummarizer",
]
