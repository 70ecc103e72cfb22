"""Aggregate statistics reported to administrators."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class EngineStatistics:
    """
    Snapshot of the score store, the queue and the feedback loop.

    Attributes:
        total_scores: Cached score rows
        stale_scores: Rows awaiting recomputation (including other engine versions)
        average_score: Mean composite score
        min_score: Lowest composite score
        max_score: Highest composite score
        average_computation_ms: Mean time spent computing a score
        queue_pending: Entries waiting to be claimed
        queue_processing: Entries currently claimed
        queue_processed: Entries done
        queue_dead_letter: Entries that exhausted their retries
        feedback_count: Match ratings recorded
        average_rating: Mean match rating
    """

    total_scores: int = 0
    stale_scores: int = 0
    average_score: Optional[float] = None
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    average_computation_ms: Optional[float] = None
    queue_pending: int = 0
    queue_processing: int = 0
    queue_processed: int = 0
    queue_dead_letter: int = 0
    feedback_count: int = 0
    average_rating: Optional[float] = None

    @property
    def stale_ratio(self) -> float:
        return self.stale_scores / self.total_scores if self.total_scores else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stale_ratio"] = round(self.stale_ratio, 4)
        return data
