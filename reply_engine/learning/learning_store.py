"""
Append-only persistence for learning samples and update proposals.
"""

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import KnowledgeUpdateProposal, LearningSample

logger = logging.getLogger(__name__)


class LearningStore:
    """JSON-lines store; records are only ever appended."""

    def __init__(self, storage_path: Optional[Path] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self.samples: List[LearningSample] = []
        self.proposals: List[Dict[str, Any]] = []

        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self.samples_file = self.storage_path / "samples.jsonl"
            self.proposals_file = self.storage_path / "proposals.jsonl"
            self._load()

    def _load(self):
        try:
            if self.samples_file.exists():
                with open(self.samples_file, "r", encoding="utf-8") as f:
                    self.samples = [LearningSample.from_dict(json.loads(line)) for line in f if line.strip()]
            if self.proposals_file.exists():
                with open(self.proposals_file, "r", encoding="utf-8") as f:
                    self.proposals = [json.loads(line) for line in f if line.strip()]
            logger.info(f"Loaded {len(self.samples)} learning samples and {len(self.proposals)} proposals")
        except Exception as e:
            logger.error(f"Failed to load learning records: {e}")
            self.samples, self.proposals = [], []

    def _append(self, path: Path, record: Dict[str, Any]):
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def add_sample(self, sample: LearningSample):
        self.samples.append(sample)
        if self.storage_path:
            self._append(self.samples_file, sample.to_dict())

    def add_proposal(self, proposal: KnowledgeUpdateProposal):
        record = proposal.to_dict()
        self.proposals.append(record)
        if self.storage_path:
            self._append(self.proposals_file, record)

    def get_sample(self, sample_id: str) -> Optional[LearningSample]:
        for sample in self.samples:
            if sample.id == sample_id:
                return sample
        return None

    def get_stats(self) -> Dict[str, Any]:
        """Summary statistics over every recorded sample."""
        total = len(self.samples)
        with_points = [s for s in self.samples if s.learning_points]
        kinds = Counter(point.kind for s in self.samples for point in s.learning_points)
        average = sum(s.confidence for s in with_points) / len(with_points) if with_points else 0.0
        return {
            "total_samples": total,
            "samples_with_learning_points": len(with_points),
            "total_learning_points": sum(kinds.values()),
            "average_confidence": round(average, 4),
            "proposals": len(self.proposals),
            "learning_point_kinds": dict(kinds.most_common()),
        }
