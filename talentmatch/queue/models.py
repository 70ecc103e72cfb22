"""Data models for worker run tracking and reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class EntryStatus(str, Enum):
    """What happened to one claimed queue entry during a worker run."""

    WRITTEN = "written"
    REJECTED = "rejected"
    DROPPED = "dropped"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"
    CLAIM_LOST = "claim_lost"


@dataclass
class EntryOutcome:
    """
    Result of processing a single claimed entry.

    Attributes:
        entry_id: Queue entry id
        student_id: Student side of the pair
        listing_id: Listing side of the pair
        status: Outcome of the attempt
        attempts: Attempts recorded for the entry, this one included
        composite_score: Score computed, when the computation succeeded
        duration_seconds: Time spent on the entry
        error: Error message for dropped, retried and dead-lettered entries
    """

    entry_id: int
    student_id: str
    listing_id: str
    status: EntryStatus
    attempts: int = 0
    composite_score: Optional[int] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None


@dataclass
class WorkerRunResult:
    """
    Aggregate results from one queue drain.

    Attributes:
        worker_id: Identity recorded on claimed entries
        run_started_at: UTC timestamp when the run began
        run_finished_at: UTC timestamp when the run completed
        total_duration_seconds: Total time for the run
        claimed: Entries claimed in this run
        written: Scores written
        rejected: Computations discarded because newer data had arrived
        dropped: Entries whose student or listing no longer exists
        retried: Failed entries returned to pending with a backoff
        dead_lettered: Entries that reached the attempt ceiling
        claim_lost: Entries whose expired claim went to another worker first
        outcomes: Per-entry results
        had_errors: Whether any entry failed
        skipped: Whether the run was skipped (previous drain still running)
    """

    worker_id: str
    run_started_at: datetime
    run_finished_at: datetime
    total_duration_seconds: float = 0.0
    claimed: int = 0
    written: int = 0
    rejected: int = 0
    dropped: int = 0
    retried: int = 0
    dead_lettered: int = 0
    claim_lost: int = 0
    outcomes: List[EntryOutcome] = field(default_factory=list)
    had_errors: bool = False
    skipped: bool = False

    def __post_init__(self):
        """Compute aggregates from per-entry outcomes if not already set."""
        if self.outcomes and self.claimed == 0:
            self.claimed = len(self.outcomes)
            self.written = self._count(EntryStatus.WRITTEN)
            self.rejected = self._count(EntryStatus.REJECTED)
            self.dropped = self._count(EntryStatus.DROPPED)
            self.retried = self._count(EntryStatus.RETRY)
            self.dead_lettered = self._count(EntryStatus.DEAD_LETTER)
            self.claim_lost = self._count(EntryStatus.CLAIM_LOST)
            self.had_errors = (self.retried + self.dead_lettered) > 0

        if self.total_duration_seconds == 0.0:
            delta = self.run_finished_at - self.run_started_at
            self.total_duration_seconds = delta.total_seconds()

    def _count(self, status: EntryStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def processed(self) -> int:
        """Entries that left the queue for good in this run."""
        return self.written + self.rejected + self.dropped


@dataclass
class SweepResult:
    """
    Results from one staleness sweep.

    Attributes:
        run_started_at: UTC timestamp when the sweep began
        run_finished_at: UTC timestamp when the sweep completed
        released_claims: Processing entries returned to pending after their claim expired
        stale_found: Stale score rows examined
        enqueued: New queue entries created (already-pending pairs are merged)
        backlog: Pending entries after the sweep
    """

    run_started_at: datetime
    run_finished_at: datetime
    released_claims: int = 0
    stale_found: int = 0
    enqueued: int = 0
    backlog: int = 0

    @property
    def duration_seconds(self) -> float:
        return (self.run_finished_at - self.run_started_at).total_seconds()
