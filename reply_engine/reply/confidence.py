"""
Reply confidence model.
"""

from typing import Any, Dict, Sequence

from ..index.models import RetrievalMatch


class ConfidenceModel:
    """
    Aggregates retrieval quality and pipeline health into one [0, 1] score.

    With sources the score is ``top * (0.75 + 0.25 * support)`` where support
    grows with every additional source, weighted by its score relative to the
    top one, and saturates at ``source_saturation`` sources' worth.
    """

    def __init__(self, config: Dict[str, Any]):
        self.translation_penalty = config.get("translation_penalty", 0.8)
        self.signal_failure_penalty = config.get("signal_failure_penalty", 0.95)
        self.source_saturation = max(1, int(config.get("source_saturation", 3)))
        self.no_knowledge_confidence = config.get("no_knowledge_confidence", 0.2)

    def support(self, matches: Sequence[RetrievalMatch]) -> float:
        if not matches:
            return 0.0
        top = max(match.score for match in matches)
        if top <= 0.0:
            return 0.0
        weighted = sum(match.score for match in matches) / top
        return min(weighted, self.source_saturation) / self.source_saturation

    def score(
        self,
        matches: Sequence[RetrievalMatch],
        min_score: float,
        translation_fell_back: bool = False,
        degraded_signals: int = 0,
    ) -> float:
        """
        Args:
            matches: Sources used in the reply
            min_score: Retrieval threshold in effect
            translation_fell_back: The reply went out untranslated after a failure
            degraded_signals: Number of signals that failed or used rule fallbacks

        Returns:
            Confidence in [0, 1]
        """
        if matches:
            top = max(match.score for match in matches)
            confidence = top * (0.75 + 0.25 * self.support(matches))
        else:
            # Always below any reply grounded in a source that cleared min_score
            confidence = min(self.no_knowledge_confidence, 0.5 * min_score)

        if translation_fell_back:
            confidence *= self.translation_penalty
        confidence *= self.signal_failure_penalty ** max(0, degraded_signals)
        return round(max(0.0, min(1.0, confidence)), 4)
