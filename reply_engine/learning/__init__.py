"""
Active learning from human-corrected replies.
"""

from .models import KnowledgeUpdateProposal, LearningPoint, LearningSample
from .learning_store import LearningStore
from .active_learning import ActiveLearningEngine, normalize_segment, split_segments

__all__ = [
    "KnowledgeUpdateProposal", "LearningPoint", "LearningSample", "LearningStore",
    "ActiveLearningEngine", "normalize_segment", "split_segments",
]
