"""Recomputation queue worker and staleness sweep."""

from .models import EntryOutcome, EntryStatus, SweepResult, WorkerRunResult
from .worker import RecomputeWorker

__all__ = [
    "RecomputeWorker",
    "WorkerRunResult",
    "SweepResult",
    "EntryOutcome",
    "EntryStatus",
]
