"""Database schema definition and ORM models.

Two groups of tables live here:

- Snapshots owned by other services (students, student_skills, listings,
  applications, corporate_invites, match_feedback, athletic_skill_mappings).
  The engine only reads them; tests and operator scripts populate them.
- Engine-owned state (match_scores, match_score_history, recomputation_queue).

Each model converts to and from its domain counterpart.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from talentmatch.domain.models import (
    ApplicationOutcome,
    AthleticSkillMapping,
    CorporateInvite,
    Listing,
    MatchFeedback,
    MatchScore,
    MatchScoreHistory,
    RecomputationQueueEntry,
    ScoreBreakdown,
    StudentProfile,
)
from talentmatch.utils.skills import normalize_skill
from talentmatch.utils.timestamps import format_timestamp, parse_iso_datetime

logger = logging.getLogger(__name__)

Base = declarative_base()


class StudentModel(Base):
    """ORM model for the students snapshot table."""

    __tablename__ = "students"

    student_id = Column(String(64), primary_key=True, nullable=False)
    tenant_id = Column(String(64), nullable=True)
    hours_per_week = Column(Float, nullable=True)
    sport = Column(String(100), nullable=True)
    position = Column(String(100), nullable=True)
    updated_at = Column(String(50), nullable=True)

    skills = relationship(
        "StudentSkillModel",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="StudentSkillModel.id",
    )

    __table_args__ = (
        Index("idx_students_tenant", "tenant_id"),
        Index("idx_students_sport", "sport"),
    )

    def to_domain(self) -> StudentProfile:
        return StudentProfile(
            student_id=self.student_id,
            tenant_id=self.tenant_id,
            skills=[s.name for s in self.skills],
            skill_categories=[s.category for s in self.skills if s.category],
            hours_per_week=self.hours_per_week,
            sport=self.sport,
            position=self.position,
        )


class StudentSkillModel(Base):
    """ORM model for a student's declared skills."""

    __tablename__ = "student_skills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(
        String(64), ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "name", name="uq_student_skills_student_name"),
    )


class ListingModel(Base):
    """ORM model for the listings snapshot table.

    ``required_skills`` holds a JSON array of skill names.
    """

    __tablename__ = "listings"

    listing_id = Column(String(64), primary_key=True, nullable=False)
    tenant_id = Column(String(64), nullable=True)
    title = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=True)
    required_skills = Column(Text, nullable=False, default="[]")
    hours_per_week = Column(Float, nullable=True)
    published_at = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="published")

    __table_args__ = (
        Index("idx_listings_status_published", "status", "published_at"),
        Index("idx_listings_tenant", "tenant_id"),
    )

    def to_domain(self) -> Listing:
        return Listing(
            listing_id=self.listing_id,
            tenant_id=self.tenant_id,
            title=self.title or "",
            category=self.category,
            required_skills=_load_list(self.required_skills),
            hours_per_week=self.hours_per_week,
            published_at=parse_iso_datetime(self.published_at),
            status=self.status,
        )

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingModel":
        return cls(
            listing_id=listing.listing_id,
            tenant_id=listing.tenant_id,
            title=listing.title,
            category=listing.category,
            required_skills=_dump_list(listing.required_skills),
            hours_per_week=listing.hours_per_week,
            published_at=format_timestamp(listing.published_at),
            status=listing.status.value if hasattr(listing.status, "value") else listing.status,
        )


class ApplicationModel(Base):
    """ORM model for student applications.

    The snapshot columns capture the listing at apply time; when they are
    NULL the listing's current values are used instead.
    """

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    category_snapshot = Column(String(100), nullable=True)
    required_skills_snapshot = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=True)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "listing_id", name="uq_applications_pair"),
        Index("idx_applications_listing", "listing_id"),
    )

    def to_domain(self, listing: Optional["ListingModel"] = None) -> ApplicationOutcome:
        category = self.category_snapshot
        required = _load_list(self.required_skills_snapshot) if self.required_skills_snapshot else None
        if listing is not None:
            if category is None:
                category = listing.category
            if required is None:
                required = _load_list(listing.required_skills)
        return ApplicationOutcome(
            student_id=self.student_id,
            listing_id=self.listing_id,
            status=self.status,
            category=category,
            required_skills=required or [],
        )


class CorporateInviteModel(Base):
    """ORM model for corporate invitations to apply."""

    __tablename__ = "corporate_invites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(String(50), nullable=True)

    __table_args__ = (Index("idx_corporate_invites_student", "student_id"),)

    def to_domain(self) -> CorporateInvite:
        return CorporateInvite(
            student_id=self.student_id,
            listing_id=self.listing_id,
            status=self.status,
        )


class MatchFeedbackModel(Base):
    """ORM model for explicit match ratings."""

    __tablename__ = "match_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_match_feedback_rating"),
        Index("idx_match_feedback_student", "student_id"),
        Index("idx_match_feedback_listing", "listing_id"),
    )

    def to_domain(self, category: Optional[str] = None) -> MatchFeedback:
        return MatchFeedback(
            student_id=self.student_id,
            listing_id=self.listing_id,
            rating=self.rating,
            created_at=parse_iso_datetime(self.created_at),
            category=category,
        )


class AthleticSkillMappingModel(Base):
    """ORM model for athletic_skill_mappings.

    The ``*_key`` columns hold normalized values; uniqueness is enforced on
    them, with an empty ``position_key`` for "all positions" rows.
    """

    __tablename__ = "athletic_skill_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sport = Column(String(100), nullable=False)
    sport_key = Column(String(100), nullable=False)
    position = Column(String(100), nullable=True)
    position_key = Column(String(100), nullable=False, default="")
    professional_skill = Column(String(255), nullable=False)
    skill_key = Column(String(255), nullable=False)
    transfer_strength = Column(Float, nullable=False, default=0.5)
    skill_category = Column(String(100), nullable=False, default="General")
    description = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "sport_key", "position_key", "skill_key", name="uq_athletic_skill_mappings_key"
        ),
        CheckConstraint(
            "transfer_strength >= 0 AND transfer_strength <= 1",
            name="ck_athletic_skill_mappings_strength",
        ),
        Index("idx_athletic_skill_mappings_sport", "sport_key", "position_key"),
    )

    def to_domain(self) -> AthleticSkillMapping:
        return AthleticSkillMapping(
            sport=self.sport,
            position=self.position,
            professional_skill=self.professional_skill,
            transfer_strength=self.transfer_strength,
            skill_category=self.skill_category,
            description=self.description,
        )

    def apply_domain(self, mapping: AthleticSkillMapping, now: datetime) -> None:
        """Copy mutable fields from a domain mapping onto this row."""
        self.sport = mapping.sport
        self.position = mapping.position
        self.professional_skill = mapping.professional_skill
        self.transfer_strength = mapping.transfer_strength
        self.skill_category = mapping.skill_category
        self.description = mapping.description
        self.updated_at = format_timestamp(now)

    @classmethod
    def from_domain(cls, mapping: AthleticSkillMapping, now: datetime) -> "AthleticSkillMappingModel":
        sport_key, position_key, skill_key = mapping_keys(
            mapping.sport, mapping.position, mapping.professional_skill
        )
        row = cls(
            sport_key=sport_key,
            position_key=position_key,
            skill_key=skill_key,
            created_at=format_timestamp(now),
        )
        row.apply_domain(mapping, now)
        return row


class MatchScoreModel(Base):
    """ORM model for match_scores, one live row per (student, listing)."""

    __tablename__ = "match_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    tenant_id = Column(String(64), nullable=True)

    composite_score = Column(Integer, nullable=False)
    skill_match = Column(Integer, nullable=False)
    category_affinity = Column(Integer, nullable=False)
    availability = Column(Integer, nullable=False)
    recency_boost = Column(Integer, nullable=False)
    success_history = Column(Integer, nullable=False)

    # JSON arrays
    matched_skills = Column(Text, nullable=False, default="[]")
    missing_skills = Column(Text, nullable=False, default="[]")
    transfer_skills = Column(Text, nullable=False, default="[]")

    is_stale = Column(Boolean, nullable=False, default=False)
    stale_since = Column(String(50), nullable=True)
    data_version = Column(Integer, nullable=False, default=0)
    computed_version = Column(Integer, nullable=False, default=0)
    engine_version = Column(String(20), nullable=False)

    computed_at = Column(String(50), nullable=False)
    computation_time_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("student_id", "listing_id", name="uq_match_scores_pair"),
        Index("idx_match_scores_listing", "listing_id"),
        Index("idx_match_scores_stale", "is_stale"),
        CheckConstraint(
            "composite_score BETWEEN 0 AND 100", name="ck_match_scores_composite"
        ),
    )

    def to_domain(self, current_engine_version: Optional[str] = None) -> MatchScore:
        """Convert to a domain score.

        A row computed by a different engine version is reported stale.
        """
        stale = bool(self.is_stale)
        if current_engine_version is not None and self.engine_version != current_engine_version:
            stale = True
        return MatchScore(
            student_id=self.student_id,
            listing_id=self.listing_id,
            tenant_id=self.tenant_id,
            composite_score=self.composite_score,
            breakdown=ScoreBreakdown(
                skill_match=self.skill_match,
                category_affinity=self.category_affinity,
                availability=self.availability,
                recency_boost=self.recency_boost,
                success_history=self.success_history,
            ),
            matched_skills=_load_list(self.matched_skills),
            missing_skills=_load_list(self.missing_skills),
            transfer_skills=_load_list(self.transfer_skills),
            is_stale=stale,
            stale_since=parse_iso_datetime(self.stale_since),
            computed_at=parse_iso_datetime(self.computed_at),
            computation_time_ms=self.computation_time_ms or 0,
            data_version=self.data_version,
            computed_version=self.computed_version,
            engine_version=self.engine_version,
        )

    def apply_score(self, score: MatchScore) -> None:
        """Copy computed values from a domain score onto this row."""
        for column, value in score_columns(score).items():
            setattr(self, column, value)


class MatchScoreHistoryModel(Base):
    """ORM model for the score change audit trail."""

    __tablename__ = "match_score_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    old_score = Column(Integer, nullable=True)
    new_score = Column(Integer, nullable=False)
    change_reason = Column(String(50), nullable=False)
    changed_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_match_score_history_pair", "student_id", "listing_id"),
        Index("idx_match_score_history_changed_at", "changed_at"),
    )

    def to_domain(self) -> MatchScoreHistory:
        return MatchScoreHistory(
            student_id=self.student_id,
            listing_id=self.listing_id,
            old_score=self.old_score,
            new_score=self.new_score,
            change_reason=self.change_reason,
            changed_at=parse_iso_datetime(self.changed_at),
        )


class RecomputationQueueModel(Base):
    """ORM model for recomputation_queue.

    ``dedup_key`` is ``"<student_id>:<listing_id>"`` while the entry is
    pending and NULL in every other state; its unique constraint allows at
    most one pending entry per pair.
    """

    __tablename__ = "recomputation_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    reason = Column(String(50), nullable=False, default="manual")
    priority = Column(Integer, nullable=False, default=5)
    version = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    dedup_key = Column(String(140), nullable=True, unique=True)

    enqueued_at = Column(String(50), nullable=False)
    stale_since = Column(String(50), nullable=False)
    next_attempt_at = Column(String(50), nullable=False)
    claimed_at = Column(String(50), nullable=True)
    claimed_by = Column(String(100), nullable=True)
    processed_at = Column(String(50), nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_recomputation_queue_priority"),
        Index("idx_recomputation_queue_claim", "status", "priority", "stale_since"),
        Index("idx_recomputation_queue_pair", "student_id", "listing_id", "status"),
    )

    def to_domain(self) -> RecomputationQueueEntry:
        return RecomputationQueueEntry(
            id=self.id,
            student_id=self.student_id,
            listing_id=self.listing_id,
            reason=self.reason,
            priority=self.priority,
            version=self.version,
            status=self.status,
            enqueued_at=parse_iso_datetime(self.enqueued_at),
            stale_since=parse_iso_datetime(self.stale_since),
            next_attempt_at=parse_iso_datetime(self.next_attempt_at),
            claimed_at=parse_iso_datetime(self.claimed_at),
            claimed_by=self.claimed_by,
            processed_at=parse_iso_datetime(self.processed_at),
            attempts=self.attempts,
            last_error=self.last_error,
        )


def score_columns(score: MatchScore) -> dict:
    """Column values holding a computed score (versions and staleness excluded)."""
    return {
        "tenant_id": score.tenant_id,
        "composite_score": score.composite_score,
        "skill_match": score.breakdown.skill_match,
        "category_affinity": score.breakdown.category_affinity,
        "availability": score.breakdown.availability,
        "recency_boost": score.breakdown.recency_boost,
        "success_history": score.breakdown.success_history,
        "matched_skills": _dump_list(score.matched_skills),
        "missing_skills": _dump_list(score.missing_skills),
        "transfer_skills": _dump_list(score.transfer_skills),
        "computed_at": format_timestamp(score.computed_at),
        "computation_time_ms": score.computation_time_ms,
        "engine_version": score.engine_version,
    }


def pair_key(student_id: str, listing_id: str) -> str:
    """Dedup key for a pending queue entry."""
    return f"{student_id}:{listing_id}"


def mapping_keys(sport: str, position: Optional[str], professional_skill: str) -> tuple:
    """Normalized (sport, position, skill) key used for mapping uniqueness and lookup."""
    return (
        normalize_skill(sport),
        normalize_skill(position),
        normalize_skill(professional_skill),
    )


def _dump_list(values: Optional[List[str]]) -> str:
    return json.dumps(list(values or []), ensure_ascii=False)


def _load_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed JSON list column: {raw!r}")
        return []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
