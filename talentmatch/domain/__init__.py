"""Domain models for the match engine."""

from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_LISTING_HOURS,
    DEFAULT_STUDENT_HOURS,
    ApplicationOutcome,
    ApplicationStatus,
    AthleticSkillMapping,
    CorporateInvite,
    InviteStatus,
    Listing,
    ListingStatus,
    MatchFeedback,
    MatchScore,
    MatchScoreHistory,
    QueueStatus,
    RecomputationQueueEntry,
    RecomputeReason,
    ScoreBreakdown,
    StudentProfile,
)

__all__ = [
    "StudentProfile",
    "Listing",
    "ApplicationOutcome",
    "CorporateInvite",
    "MatchFeedback",
    "AthleticSkillMapping",
    "ScoreBreakdown",
    "MatchScore",
    "MatchScoreHistory",
    "RecomputationQueueEntry",
    "ListingStatus",
    "ApplicationStatus",
    "InviteStatus",
    "QueueStatus",
    "RecomputeReason",
    "DEFAULT_CATEGORY",
    "DEFAULT_LISTING_HOURS",
    "DEFAULT_STUDENT_HOURS",
]
