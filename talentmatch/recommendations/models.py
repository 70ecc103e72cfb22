"""Result models returned by the recommendation service."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from talentmatch.domain.models import Listing, MatchScore, ScoreBreakdown, StudentProfile


class RefreshMode(str, Enum):
    """How a read handles stale cached scores.

    ASYNC serves the stale value and enqueues a background recompute (browse
    views). SYNC recomputes stale rows inline before answering.
    """

    ASYNC = "async"
    SYNC = "sync"


@dataclass
class ListingRecommendation:
    """
    One ranked listing for a student.

    Attributes:
        listing: Listing snapshot
        composite_score: Weighted match score (0-100)
        breakdown: Per-factor scores
        matched_skills: Required skills the student has
        missing_skills: Required skills the student lacks
        transfer_skills: Required skills credited through athletic transfer
        is_stale: Whether the served score awaits recomputation
        degraded: Whether a stale score was served instead of a fresh one
        computed_at: When the served score was computed
    """

    listing: Listing
    composite_score: int
    breakdown: ScoreBreakdown
    matched_skills: List[str] = field(default_factory=list)
    missing_skills: List[str] = field(default_factory=list)
    transfer_skills: List[str] = field(default_factory=list)
    is_stale: bool = False
    degraded: bool = False
    computed_at: Optional[datetime] = None

    @classmethod
    def from_score(
        cls, listing: Listing, score: MatchScore, degraded: bool = False
    ) -> "ListingRecommendation":
        return cls(
            listing=listing,
            composite_score=score.composite_score,
            breakdown=score.breakdown,
            matched_skills=list(score.matched_skills),
            missing_skills=list(score.missing_skills),
            transfer_skills=list(score.transfer_skills),
            is_stale=score.is_stale,
            degraded=degraded,
            computed_at=score.computed_at,
        )


@dataclass
class StudentRecommendation:
    """
    One ranked student for a listing (skill match only).

    Attributes:
        student: Student snapshot
        composite_score: Skill-match score (0-100)
        matched_skills: Required skills the student has
        missing_skills: Required skills the student lacks
        transfer_skills: Required skills credited through athletic transfer
    """

    student: StudentProfile
    composite_score: int
    matched_skills: List[str] = field(default_factory=list)
    missing_skills: List[str] = field(default_factory=list)
    transfer_skills: List[str] = field(default_factory=list)


@dataclass
class MatchDetail:
    """
    Single-pair "why did we match" view.

    ``score`` is None only when no score has ever been computed for the pair
    and the synchronous computation timed out.
    """

    student_id: str
    listing_id: str
    score: Optional[MatchScore] = None
    degraded: bool = False

    @property
    def composite_score(self) -> Optional[int]:
        return self.score.composite_score if self.score is not None else None

    @property
    def is_stale(self) -> bool:
        return self.score is None or self.score.is_stale
