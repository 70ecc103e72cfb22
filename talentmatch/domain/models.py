"""Core domain models for match scoring.

This module defines the data structures shared by every layer:
- StudentProfile, Listing: read-only snapshots of the two sides of a match
- ApplicationOutcome, CorporateInvite, MatchFeedback: historical signals
- AthleticSkillMapping: admin-curated sport/position -> professional skill rows
- MatchScore, ScoreBreakdown, MatchScoreHistory: the engine's cached scores
- RecomputationQueueEntry: durable recompute work items

Snapshots are validated here, at the boundary where repositories convert
database rows into domain objects.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from talentmatch.utils.skills import normalize_skill, normalize_skill_list
from talentmatch.utils.timestamps import ensure_utc

DEFAULT_STUDENT_HOURS = 20.0
DEFAULT_LISTING_HOURS = 15.0
DEFAULT_CATEGORY = "General"


class ListingStatus(str, Enum):
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"

    @property
    def is_success(self) -> bool:
        """Accepted and completed applications count as positive outcomes."""
        return self in (ApplicationStatus.ACCEPTED, ApplicationStatus.COMPLETED)


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    DEAD_LETTER = "dead_letter"


class RecomputeReason(str, Enum):
    """Why a pair was enqueued. Each reason carries a default priority (1-10)."""

    MANUAL = "manual"
    STALE_READ = "stale_read"
    PROFILE_CHANGED = "profile_changed"
    OUTCOME_CHANGED = "outcome_changed"
    FEEDBACK_RECORDED = "feedback_recorded"
    LISTING_CHANGED = "listing_changed"
    SKILL_MAPPING_CHANGED = "skill_mapping_changed"
    SWEEP = "sweep"

    @property
    def default_priority(self) -> int:
        return _REASON_PRIORITIES[self]


_REASON_PRIORITIES = {
    RecomputeReason.MANUAL: 10,
    RecomputeReason.STALE_READ: 8,
    RecomputeReason.PROFILE_CHANGED: 5,
    RecomputeReason.OUTCOME_CHANGED: 5,
    RecomputeReason.FEEDBACK_RECORDED: 5,
    RecomputeReason.LISTING_CHANGED: 3,
    RecomputeReason.SKILL_MAPPING_CHANGED: 2,
    RecomputeReason.SWEEP: 1,
}


def _utc_or_none(v: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(v)


class StudentProfile(BaseModel):
    """Read-only snapshot of a student as the engine needs it.

    Skills are normalized on the way in, so every comparison downstream works
    on lower-cased names. ``skill_categories`` are the categories of the
    student's own skills and feed the base category-affinity term.
    """

    student_id: str = Field(..., description="Student identifier")
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    skills: Set[str] = Field(default_factory=set, description="Normalized skill names")
    skill_categories: Set[str] = Field(
        default_factory=set, description="Categories derived from the student's skills"
    )
    hours_per_week: float = Field(
        DEFAULT_STUDENT_HOURS, ge=0, description="Weekly availability in hours"
    )
    sport: Optional[str] = Field(None, description="Sport played (athletic tenants)")
    position: Optional[str] = Field(None, description="Position within the sport")

    @field_validator("student_id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("student_id cannot be empty")
        return v.strip()

    @field_validator("skills", mode="before")
    @classmethod
    def normalize_skills(cls, v):
        return set(normalize_skill_list(v))

    @field_validator("skill_categories", mode="before")
    @classmethod
    def normalize_categories(cls, v):
        return {c.strip() for c in (v or []) if isinstance(c, str) and c.strip()}

    @field_validator("hours_per_week", mode="before")
    @classmethod
    def default_hours(cls, v):
        return DEFAULT_STUDENT_HOURS if v is None or v == 0 else v

    @field_validator("sport", "position")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped if stripped else None

    model_config = {"json_schema_extra": {"example": {
        "student_id": "stu-001",
        "tenant_id": "tenant-holy-cross",
        "skills": ["python", "sql"],
        "skill_categories": ["Technology"],
        "hours_per_week": 20,
        "sport": "Football",
        "position": "Quarterback",
    }}}


class Listing(BaseModel):
    """Read-only snapshot of a project listing."""

    listing_id: str = Field(..., description="Listing identifier")
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    title: str = Field("", description="Listing title")
    category: str = Field(DEFAULT_CATEGORY, description="Listing category")
    required_skills: List[str] = Field(
        default_factory=list, description="Normalized, de-duplicated required skills"
    )
    hours_per_week: float = Field(
        DEFAULT_LISTING_HOURS, ge=0, description="Target hours per week"
    )
    published_at: Optional[datetime] = Field(None, description="Publish time (UTC)")
    status: ListingStatus = Field(ListingStatus.PUBLISHED, description="Publication status")

    @field_validator("listing_id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("listing_id cannot be empty")
        return v.strip()

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v):
        if v is None or not str(v).strip():
            return DEFAULT_CATEGORY
        return str(v).strip()

    @field_validator("required_skills", mode="before")
    @classmethod
    def normalize_required(cls, v):
        return normalize_skill_list(v)

    @field_validator("hours_per_week", mode="before")
    @classmethod
    def default_hours(cls, v):
        return DEFAULT_LISTING_HOURS if v is None or v == 0 else v

    @field_validator("published_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(v)

    @property
    def is_published(self) -> bool:
        return self.status == ListingStatus.PUBLISHED


class ApplicationOutcome(BaseModel):
    """A student's application to a listing, with the listing snapshot at apply time."""

    student_id: str
    listing_id: str
    status: ApplicationStatus
    category: str = Field(DEFAULT_CATEGORY, description="Listing category when applied")
    required_skills: List[str] = Field(
        default_factory=list, description="Listing required skills when applied"
    )

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v):
        if v is None or not str(v).strip():
            return DEFAULT_CATEGORY
        return str(v).strip()

    @field_validator("required_skills", mode="before")
    @classmethod
    def normalize_required(cls, v):
        return normalize_skill_list(v)

    @property
    def is_success(self) -> bool:
        return ApplicationStatus(self.status).is_success


class CorporateInvite(BaseModel):
    """An invitation from a corporate partner for a student to apply."""

    student_id: str
    listing_id: str
    status: InviteStatus

    @property
    def is_settled(self) -> bool:
        """Accepted or declined invites remove the listing from recommendations."""
        return self.status in (InviteStatus.ACCEPTED, InviteStatus.DECLINED)


class MatchFeedback(BaseModel):
    """Explicit rating a student gave a match.

    ``category`` is the rated listing's category, resolved when the feedback
    is read.
    """

    student_id: str
    listing_id: str
    rating: int = Field(..., ge=1, le=5)
    created_at: Optional[datetime] = None
    category: str = DEFAULT_CATEGORY

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(v)

    @field_validator("category", mode="before")
    @classmethod
    def default_category(cls, v):
        if v is None or not str(v).strip():
            return DEFAULT_CATEGORY
        return str(v).strip()


class AthleticSkillMapping(BaseModel):
    """Sport/position experience that substitutes for a professional skill.

    A mapping with no position applies to every position of the sport.
    """

    sport: str = Field(..., description="Sport name")
    position: Optional[str] = Field(None, description="Position (None = all positions)")
    professional_skill: str = Field(..., description="Professional skill this translates to")
    transfer_strength: float = Field(0.5, ge=0.0, le=1.0, description="Credit given, 0-1")
    skill_category: str = Field(DEFAULT_CATEGORY, description="Category of the skill")
    description: Optional[str] = None

    @field_validator("sport", "professional_skill")
    @classmethod
    def strip_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty or whitespace-only")
        return v.strip()

    @field_validator("position")
    @classmethod
    def blank_position(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped if stripped else None

    @property
    def skill_key(self) -> str:
        return normalize_skill(self.professional_skill)

    model_config = {"json_schema_extra": {"example": {
        "sport": "Football",
        "position": "Quarterback",
        "professional_skill": "Decision Making",
        "transfer_strength": 0.9,
        "skill_category": "Leadership",
        "description": "Reading defenses and making split-second calls under pressure",
    }}}


class ScoreBreakdown(BaseModel):
    """Per-factor scores on the 0-100 integer scale."""

    skill_match: int = Field(0, ge=0, le=100)
    category_affinity: int = Field(0, ge=0, le=100)
    availability: int = Field(0, ge=0, le=100)
    recency_boost: int = Field(0, ge=0, le=100)
    success_history: int = Field(0, ge=0, le=100)


class MatchScore(BaseModel):
    """Cached score for one (student, listing) pair.

    ``data_version`` counts invalidations of the pair and ``computed_version``
    records which of them the stored values reflect. ``is_stale`` holds
    whenever the stored values lag the data.
    """

    student_id: str
    listing_id: str
    tenant_id: Optional[str] = None
    composite_score: int = Field(..., ge=0, le=100)
    breakdown: ScoreBreakdown
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)
    transfer_skills: List[str] = Field(default_factory=list)
    is_stale: bool = False
    stale_since: Optional[datetime] = None
    computed_at: datetime
    computation_time_ms: int = Field(0, ge=0)
    data_version: int = Field(0, ge=0)
    computed_version: int = Field(0, ge=0)
    engine_version: str = "1"

    @field_validator("computed_at", "stale_since")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class MatchScoreHistory(BaseModel):
    """Audit record of a significant score change."""

    student_id: str
    listing_id: str
    old_score: Optional[int] = None
    new_score: int
    change_reason: str
    changed_at: datetime

    @field_validator("changed_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RecomputationQueueEntry(BaseModel):
    """Durable unit of recompute work for one resolved pair."""

    id: int
    student_id: str
    listing_id: str
    reason: str
    priority: int = Field(5, ge=1, le=10)
    version: int = Field(0, ge=0)
    status: QueueStatus = QueueStatus.PENDING
    enqueued_at: datetime
    stale_since: datetime
    next_attempt_at: datetime
    claimed_at: Optional[datetime] = None
    claimed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    attempts: int = Field(0, ge=0)
    last_error: Optional[str] = None

    @field_validator("enqueued_at", "stale_since", "next_attempt_at", "claimed_at", "processed_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(v)

    @property
    def pair(self) -> tuple:
        return (self.student_id, self.listing_id)
