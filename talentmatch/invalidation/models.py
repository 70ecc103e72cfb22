"""Result model for invalidation hooks."""

from dataclasses import dataclass

from talentmatch.domain.models import RecomputeReason


@dataclass
class InvalidationResult:
    """
    What an invalidation hook did.

    Attributes:
        reason: Change that triggered the invalidation
        marked_stale: Score rows marked stale
        enqueued: New queue entries created
        merged: Pairs that already had a pending entry (priority/version raised)
    """

    reason: RecomputeReason
    marked_stale: int = 0
    enqueued: int = 0
    merged: int = 0

    @property
    def affected_pairs(self) -> int:
        return self.enqueued + self.merged
