"""Exceptions raised by the match engine."""

from typing import Optional


class MatchEngineError(Exception):
    """Base exception for all match engine errors.

    Catching this exception catches every engine-specific failure. Only
    InvalidReference is meant to reach API callers.
    """

    pass


class InvalidReference(MatchEngineError):
    """A student or listing id does not exist.

    Surfaces to the caller as a client error.
    """

    def __init__(self, kind: str, identifier: str) -> None:
        """Initialize with the kind of entity and the unknown id.

        Args:
            kind: "student" or "listing"
            identifier: The id that was not found
        """
        super().__init__(f"Unknown {kind}: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ComputationTimeout(MatchEngineError):
    """A synchronous recomputation exceeded its time budget.

    Absorbed by the recommendation service, which serves the cached score
    with a degraded flag instead.
    """

    def __init__(self, student_id: str, listing_id: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Recomputation of {student_id}/{listing_id} exceeded {timeout_seconds}s"
        )
        self.student_id = student_id
        self.listing_id = listing_id
        self.timeout_seconds = timeout_seconds


class QueueClaimConflict(MatchEngineError):
    """Another worker won the claim on a queue entry.

    A normal retry signal: the losing worker moves on to the next entry.
    """

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Queue entry {entry_id} was claimed by another worker")
        self.entry_id = entry_id


class QueueOverflow(MatchEngineError):
    """The pending backlog exceeds the operational threshold.

    Reads switch to serving cached scores without inline recomputation.
    """

    def __init__(self, backlog: int, threshold: int) -> None:
        super().__init__(f"Recomputation backlog {backlog} exceeds threshold {threshold}")
        self.backlog = backlog
        self.threshold = threshold


class PersistentComputeFailure(MatchEngineError):
    """A queue entry exhausted its retries and was moved to the dead letter state."""

    def __init__(
        self,
        entry_id: int,
        student_id: str,
        listing_id: str,
        attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Queue entry {entry_id} ({student_id}/{listing_id}) dead-lettered "
            f"after {attempts} attempts: {last_error}"
        )
        self.entry_id = entry_id
        self.student_id = student_id
        self.listing_id = listing_id
        self.attempts = attempts
        self.last_error = last_error
