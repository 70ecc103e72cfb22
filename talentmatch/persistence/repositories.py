"""Data access layer (repositories) for persistence operations.

Snapshot repositories read the tables owned by other services. The score
store and the recomputation queue own their tables and implement the
versioned write and atomic claim protocols. Every repository returns domain
models rather than ORM models and only flushes; the session owner commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from talentmatch.config.models import QueueConfig
from talentmatch.domain.models import (
    ApplicationOutcome,
    ApplicationStatus,
    AthleticSkillMapping,
    InviteStatus,
    Listing,
    ListingStatus,
    MatchFeedback,
    MatchScore,
    MatchScoreHistory,
    QueueStatus,
    RecomputationQueueEntry,
    StudentProfile,
)
from talentmatch.matching.exceptions import (
    PersistentComputeFailure,
    QueueClaimConflict,
    QueueOverflow,
)
from talentmatch.utils.skills import normalize_skill
from talentmatch.utils.timestamps import format_timestamp, parse_iso_datetime, utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    ApplicationModel,
    AthleticSkillMappingModel,
    CorporateInviteModel,
    ListingModel,
    MatchFeedbackModel,
    MatchScoreHistoryModel,
    MatchScoreModel,
    RecomputationQueueModel,
    StudentModel,
    mapping_keys,
    pair_key,
    score_columns,
)

logger = logging.getLogger(__name__)

# Score changes at or below this many points are not recorded in history
HISTORY_CHANGE_THRESHOLD = 0.5


@dataclass(frozen=True)
class StaleKey:
    """A score row that was marked stale, with its new data version."""

    student_id: str
    listing_id: str
    data_version: int
    stale_since: Optional[datetime] = None


class StudentRepository:
    """Read access to student profile snapshots."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: str) -> Optional[StudentProfile]:
        """Retrieve a student profile, or None if the id is unknown.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(StudentModel, student_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving student {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve student: {e}") from e

    def list_students(
        self, limit: int, exclude: Optional[Set[str]] = None
    ) -> List[StudentProfile]:
        """List up to ``limit`` students ordered by id, skipping ``exclude``."""
        exclude = exclude or set()
        try:
            stmt = select(StudentModel).order_by(StudentModel.student_id.asc())
            if exclude:
                stmt = stmt.where(StudentModel.student_id.not_in(exclude))
            stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing students: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list students: {e}") from e

    def ids_for_sport(self, sport: str) -> List[str]:
        """Ids of students playing ``sport`` (case-insensitive)."""
        try:
            stmt = (
                select(StudentModel.student_id)
                .where(func.lower(func.trim(StudentModel.sport)) == normalize_skill(sport))
                .order_by(StudentModel.student_id.asc())
            )
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing students for sport {sport}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list students for sport: {e}") from e


class ListingRepository:
    """Read access to listing snapshots."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, listing_id: str) -> Optional[Listing]:
        """Retrieve a listing, or None if the id is unknown."""
        try:
            model = self.session.get(ListingModel, listing_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listing {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listing: {e}") from e

    def list_published(
        self, limit: int, exclude: Optional[Set[str]] = None
    ) -> List[Listing]:
        """List published listings, newest first, then by id.

        Args:
            limit: Maximum number of listings
            exclude: Listing ids to skip

        Returns:
            List of Listing domain models
        """
        exclude = exclude or set()
        try:
            stmt = select(ListingModel).where(
                ListingModel.status == ListingStatus.PUBLISHED.value
            )
            if exclude:
                stmt = stmt.where(ListingModel.listing_id.not_in(exclude))
            stmt = stmt.order_by(
                ListingModel.published_at.is_(None).asc(),
                ListingModel.published_at.desc(),
                ListingModel.listing_id.asc(),
            ).limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing published listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list listings: {e}") from e

    def get_many(self, listing_ids: Iterable[str]) -> Dict[str, Listing]:
        ids = list(set(listing_ids))
        if not ids:
            return {}
        try:
            stmt = select(ListingModel).where(ListingModel.listing_id.in_(ids))
            return {
                m.listing_id: m.to_domain()
                for m in self.session.execute(stmt).scalars().all()
            }
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listings: {e}") from e


class ApplicationRepository:
    """Read access to application outcomes."""

    def __init__(self, session: Session):
        self.session = session

    def for_student(self, student_id: str) -> List[ApplicationOutcome]:
        """All of a student's applications with their listing snapshots.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(ApplicationModel, ListingModel)
                .outerjoin(ListingModel, ListingModel.listing_id == ApplicationModel.listing_id)
                .where(ApplicationModel.student_id == student_id)
                .order_by(ApplicationModel.id.asc())
            )
            return [
                application.to_domain(listing)
                for application, listing in self.session.execute(stmt).all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving applications for {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve applications: {e}") from e

    def applied_listing_ids(self, student_id: str) -> Set[str]:
        """Listings the student applied to, ignoring withdrawn applications."""
        try:
            stmt = select(ApplicationModel.listing_id).where(
                ApplicationModel.student_id == student_id,
                ApplicationModel.status != ApplicationStatus.WITHDRAWN.value,
            )
            return set(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving applied listings for {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve applied listings: {e}") from e

    def applicant_ids(self, listing_id: str) -> Set[str]:
        """Students who applied to the listing, in any status."""
        try:
            stmt = select(ApplicationModel.student_id).where(
                ApplicationModel.listing_id == listing_id
            )
            return set(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving applicants for {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve applicants: {e}") from e


class InviteRepository:
    """Read access to corporate invitations."""

    def __init__(self, session: Session):
        self.session = session

    def settled_listing_ids(self, student_id: str) -> Set[str]:
        """Listings whose invite to this student was accepted or declined."""
        try:
            stmt = select(CorporateInviteModel.listing_id).where(
                CorporateInviteModel.student_id == student_id,
                CorporateInviteModel.status.in_(
                    [InviteStatus.ACCEPTED.value, InviteStatus.DECLINED.value]
                ),
            )
            return set(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving invites for {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve invites: {e}") from e


class FeedbackRepository:
    """Read access to match feedback."""

    def __init__(self, session: Session):
        self.session = session

    def for_student(self, student_id: str) -> List[MatchFeedback]:
        """A student's ratings, each tagged with the rated listing's current category."""
        try:
            stmt = (
                select(MatchFeedbackModel, ListingModel.category)
                .outerjoin(ListingModel, ListingModel.listing_id == MatchFeedbackModel.listing_id)
                .where(MatchFeedbackModel.student_id == student_id)
                .order_by(MatchFeedbackModel.id.asc())
            )
            return [
                feedback.to_domain(category)
                for feedback, category in self.session.execute(stmt).all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving feedback for {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve feedback: {e}") from e

    def stats(self) -> Tuple[int, Optional[float]]:
        """Return (feedback count, average rating or None)."""
        try:
            count, average = self.session.execute(
                select(func.count(MatchFeedbackModel.id), func.avg(MatchFeedbackModel.rating))
            ).one()
            return int(count or 0), (float(average) if average is not None else None)
        except SQLAlchemyError as e:
            logger.error(f"Error computing feedback stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute feedback stats: {e}") from e


class SkillMappingRepository:
    """Athletic skill mappings: read by the engine, written by administrators."""

    def __init__(self, session: Session):
        self.session = session

    def for_sport(self, sport: str) -> List[AthleticSkillMapping]:
        """Every mapping for a sport, position-specific and all-position rows alike."""
        sport_key = normalize_skill(sport)
        if not sport_key:
            return []
        try:
            stmt = (
                select(AthleticSkillMappingModel)
                .where(AthleticSkillMappingModel.sport_key == sport_key)
                .order_by(
                    AthleticSkillMappingModel.position_key.asc(),
                    AthleticSkillMappingModel.skill_key.asc(),
                )
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving skill mappings for {sport}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve skill mappings: {e}") from e

    def list_all(self, sport: Optional[str] = None) -> List[AthleticSkillMapping]:
        if sport:
            return self.for_sport(sport)
        try:
            stmt = select(AthleticSkillMappingModel).order_by(
                AthleticSkillMappingModel.sport_key.asc(),
                AthleticSkillMappingModel.position_key.asc(),
                AthleticSkillMappingModel.skill_key.asc(),
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing skill mappings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list skill mappings: {e}") from e

    def upsert(
        self, mapping: AthleticSkillMapping, now: Optional[datetime] = None
    ) -> AthleticSkillMapping:
        """Insert or update a mapping keyed by (sport, position, professional skill).

        Keys compare case-insensitively; a missing position is the
        all-positions row.

        Raises:
            DataIntegrityError: On constraint violation
            PersistenceError: If database error occurs
        """
        now = now or utc_now()
        sport_key, position_key, skill_key = mapping_keys(
            mapping.sport, mapping.position, mapping.professional_skill
        )
        try:
            stmt = select(AthleticSkillMappingModel).where(
                AthleticSkillMappingModel.sport_key == sport_key,
                AthleticSkillMappingModel.position_key == position_key,
                AthleticSkillMappingModel.skill_key == skill_key,
            )
            existing = self.session.execute(stmt).scalar_one_or_none()

            if existing:
                existing.apply_domain(mapping, now)
                self.session.flush()
                return existing.to_domain()

            model = AthleticSkillMappingModel.from_domain(mapping, now)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error upserting skill mapping {mapping}: {e}", exc_info=True)
            raise DataIntegrityError(
                f"Failed to upsert skill mapping due to constraint violation: {e}"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting skill mapping {mapping}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert skill mapping: {e}") from e


class MatchScoreRepository:
    """The score store: cached scores with staleness and versioned writes."""

    def __init__(self, session: Session, engine_version: Optional[str] = None):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
            engine_version: Running engine version; rows written by another
                version read as stale
        """
        self.session = session
        self.engine_version = engine_version

    def _pair_filter(self, student_id: str, listing_id: str):
        return and_(
            MatchScoreModel.student_id == student_id,
            MatchScoreModel.listing_id == listing_id,
        )

    def get(self, student_id: str, listing_id: str) -> Optional[MatchScore]:
        """Latest score for a pair with its staleness flag, or None.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(MatchScoreModel)
                .where(self._pair_filter(student_id, listing_id))
                .execution_options(populate_existing=True)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain(self.engine_version) if model is not None else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error retrieving score for {student_id}/{listing_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to retrieve score: {e}") from e

    def current_version(self, student_id: str, listing_id: str) -> int:
        """The pair's data version (0 when no row exists)."""
        try:
            stmt = select(MatchScoreModel.data_version).where(
                self._pair_filter(student_id, listing_id)
            )
            version = self.session.execute(stmt).scalar_one_or_none()
            return int(version or 0)
        except SQLAlchemyError as e:
            logger.error(
                f"Error retrieving version for {student_id}/{listing_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to retrieve score version: {e}") from e

    def upsert(
        self,
        score: MatchScore,
        version: int,
        reason: str = "recompute",
        now: Optional[datetime] = None,
    ) -> bool:
        """Write a computed score for the data version it was computed from.

        The update is a compare-and-set on ``computed_version``: a write
        stamped with an older version than the stored one is rejected, so a
        slow computation cannot overwrite a newer result. After the write
        the row is stale only if it was invalidated again in the meantime.

        Args:
            score: Computed score (versions on the model are ignored)
            version: Data version the computation started from
            reason: Recorded in history when the score changes
            now: Write timestamp (defaults to current UTC time)

        Returns:
            True if the write was applied, False if it was rejected

        Raises:
            PersistenceError: If database error occurs
        """
        now = now or utc_now()
        now_str = format_timestamp(now)
        try:
            current = self.session.execute(
                select(MatchScoreModel.composite_score, MatchScoreModel.computed_version).where(
                    self._pair_filter(score.student_id, score.listing_id)
                )
            ).one_or_none()

            if current is None:
                if self._insert(score, version, now_str):
                    self._record_history(score, None, "initial", now_str)
                    return True
                # Lost an insert race; fall through to the versioned update
                current = self.session.execute(
                    select(MatchScoreModel.composite_score, MatchScoreModel.computed_version).where(
                        self._pair_filter(score.student_id, score.listing_id)
                    )
                ).one()

            old_score = current.composite_score
            values = score_columns(score)
            values.update(
                computed_version=version,
                data_version=case(
                    (MatchScoreModel.data_version < version, version),
                    else_=MatchScoreModel.data_version,
                ),
                is_stale=case((MatchScoreModel.data_version > version, True), else_=False),
                stale_since=case(
                    (MatchScoreModel.data_version > version, MatchScoreModel.stale_since),
                    else_=None,
                ),
                updated_at=now_str,
            )
            stmt = (
                update(MatchScoreModel)
                .where(
                    self._pair_filter(score.student_id, score.listing_id),
                    MatchScoreModel.computed_version <= version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()

            if result.rowcount == 0:
                logger.warning(
                    "Rejected out-of-order score write",
                    extra={
                        "event": "score.write.rejected",
                        "student_id": score.student_id,
                        "listing_id": score.listing_id,
                        "write_version": version,
                        "stored_version": current.computed_version,
                    },
                )
                return False

            if abs(score.composite_score - old_score) > HISTORY_CHANGE_THRESHOLD:
                self._record_history(score, old_score, reason, now_str)
            return True

        except SQLAlchemyError as e:
            logger.error(
                f"Error writing score for {score.student_id}/{score.listing_id}: {e}",
                exc_info=True,
            )
            raise PersistenceError(f"Failed to write score: {e}") from e

    def _insert(self, score: MatchScore, version: int, now_str: str) -> bool:
        model = MatchScoreModel(
            student_id=score.student_id,
            listing_id=score.listing_id,
            is_stale=False,
            stale_since=None,
            data_version=version,
            computed_version=version,
            created_at=now_str,
            updated_at=now_str,
        )
        model.apply_score(score)
        try:
            with self.session.begin_nested():
                self.session.add(model)
        except IntegrityError:
            logger.debug(
                f"Concurrent insert for {score.student_id}/{score.listing_id}; updating instead"
            )
            return False
        return True

    def _record_history(
        self, score: MatchScore, old_score: Optional[int], reason: str, now_str: str
    ) -> None:
        self.session.add(
            MatchScoreHistoryModel(
                student_id=score.student_id,
                listing_id=score.listing_id,
                old_score=old_score,
                new_score=score.composite_score,
                change_reason=reason,
                changed_at=now_str,
            )
        )
        self.session.flush()

    def history(self, student_id: str, listing_id: str) -> List[MatchScoreHistory]:
        """Score change history for a pair, oldest first."""
        try:
            stmt = (
                select(MatchScoreHistoryModel)
                .where(
                    MatchScoreHistoryModel.student_id == student_id,
                    MatchScoreHistoryModel.listing_id == listing_id,
                )
                .order_by(MatchScoreHistoryModel.id.asc())
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving history for {student_id}/{listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve score history: {e}") from e

    def _mark_stale(self, condition, now: datetime) -> List[StaleKey]:
        now_str = format_timestamp(now)
        try:
            self.session.execute(
                update(MatchScoreModel)
                .where(condition)
                .values(
                    is_stale=True,
                    data_version=MatchScoreModel.data_version + 1,
                    stale_since=func.coalesce(MatchScoreModel.stale_since, now_str),
                    updated_at=now_str,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.flush()
            rows = self.session.execute(
                select(
                    MatchScoreModel.student_id,
                    MatchScoreModel.listing_id,
                    MatchScoreModel.data_version,
                    MatchScoreModel.stale_since,
                )
                .where(condition)
                .order_by(MatchScoreModel.student_id.asc(), MatchScoreModel.listing_id.asc())
            ).all()
            return [
                StaleKey(row.student_id, row.listing_id, row.data_version, parse_iso_datetime(row.stale_since))
                for row in rows
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error marking scores stale: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark scores stale: {e}") from e

    def mark_stale_for_student(self, student_id: str, now: Optional[datetime] = None) -> List[StaleKey]:
        """Mark every score of a student stale; rows are never deleted."""
        return self._mark_stale(MatchScoreModel.student_id == student_id, now or utc_now())

    def mark_stale_for_listing(self, listing_id: str, now: Optional[datetime] = None) -> List[StaleKey]:
        """Mark every score of a listing stale; rows are never deleted."""
        return self._mark_stale(MatchScoreModel.listing_id == listing_id, now or utc_now())

    def mark_stale_for_students(
        self, student_ids: Iterable[str], now: Optional[datetime] = None
    ) -> List[StaleKey]:
        ids = list(set(student_ids))
        if not ids:
            return []
        return self._mark_stale(MatchScoreModel.student_id.in_(ids), now or utc_now())

    def mark_stale_pair(
        self, student_id: str, listing_id: str, now: Optional[datetime] = None
    ) -> List[StaleKey]:
        return self._mark_stale(self._pair_filter(student_id, listing_id), now or utc_now())

    def list_for_student(self, student_id: str) -> List[MatchScore]:
        try:
            stmt = (
                select(MatchScoreModel)
                .where(MatchScoreModel.student_id == student_id)
                .order_by(MatchScoreModel.listing_id.asc())
                .execution_options(populate_existing=True)
            )
            return [
                m.to_domain(self.engine_version)
                for m in self.session.execute(stmt).scalars().all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error listing scores for student {student_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list scores: {e}") from e

    def list_for_listing(self, listing_id: str) -> List[MatchScore]:
        try:
            stmt = (
                select(MatchScoreModel)
                .where(MatchScoreModel.listing_id == listing_id)
                .order_by(MatchScoreModel.student_id.asc())
                .execution_options(populate_existing=True)
            )
            return [
                m.to_domain(self.engine_version)
                for m in self.session.execute(stmt).scalars().all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error listing scores for listing {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list scores: {e}") from e

    def students_with_scores_for_listing(self, listing_id: str) -> List[str]:
        try:
            stmt = (
                select(MatchScoreModel.student_id)
                .where(MatchScoreModel.listing_id == listing_id)
                .order_by(MatchScoreModel.student_id.asc())
            )
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing students for listing {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list students with scores: {e}") from e

    def stale_keys(self, limit: int) -> List[StaleKey]:
        """Stale rows (including rows from an older engine version), oldest staleness first."""
        try:
            conditions = [MatchScoreModel.is_stale.is_(True)]
            if self.engine_version is not None:
                conditions.append(MatchScoreModel.engine_version != self.engine_version)
            stmt = (
                select(
                    MatchScoreModel.student_id,
                    MatchScoreModel.listing_id,
                    MatchScoreModel.data_version,
                    MatchScoreModel.stale_since,
                    MatchScoreModel.computed_at,
                )
                .where(or_(*conditions))
                .order_by(
                    func.coalesce(MatchScoreModel.stale_since, MatchScoreModel.computed_at).asc(),
                    MatchScoreModel.id.asc(),
                )
                .limit(limit)
            )
            return [
                StaleKey(
                    row.student_id,
                    row.listing_id,
                    row.data_version,
                    parse_iso_datetime(row.stale_since or row.computed_at),
                )
                for row in self.session.execute(stmt).all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error listing stale scores: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list stale scores: {e}") from e

    def stats(self) -> Dict[str, Optional[float]]:
        """Aggregate statistics over all cached scores."""
        try:
            stale_condition = MatchScoreModel.is_stale.is_(True)
            if self.engine_version is not None:
                stale_condition = or_(
                    stale_condition, MatchScoreModel.engine_version != self.engine_version
                )
            row = self.session.execute(
                select(
                    func.count(MatchScoreModel.id),
                    func.sum(case((stale_condition, 1), else_=0)),
                    func.avg(MatchScoreModel.composite_score),
                    func.min(MatchScoreModel.composite_score),
                    func.max(MatchScoreModel.composite_score),
                    func.avg(MatchScoreModel.computation_time_ms),
                )
            ).one()
            total, stale, average, minimum, maximum, avg_ms = row
            return {
                "total": int(total or 0),
                "stale": int(stale or 0),
                "average": float(average) if average is not None else None,
                "minimum": int(minimum) if minimum is not None else None,
                "maximum": int(maximum) if maximum is not None else None,
                "average_computation_ms": float(avg_ms) if avg_ms is not None else None,
            }
        except SQLAlchemyError as e:
            logger.error(f"Error computing score stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute score stats: {e}") from e


class RecomputationQueueRepository:
    """Durable recomputation queue.

    Entries move pending -> processing -> processed, or back to pending with
    a backoff delay on failure, and finally to dead_letter once the attempt
    ceiling is reached.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, entry_id: int) -> Optional[RecomputationQueueEntry]:
        try:
            model = self.session.get(RecomputationQueueModel, entry_id, populate_existing=True)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving queue entry {entry_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve queue entry: {e}") from e

    def _get_model(self, entry_id: int) -> RecomputationQueueModel:
        model = self.session.get(RecomputationQueueModel, entry_id, populate_existing=True)
        if model is None:
            raise RecordNotFoundError(f"Queue entry {entry_id} not found")
        return model

    def pending_for_pair(self, student_id: str, listing_id: str) -> Optional[RecomputationQueueEntry]:
        model = self._pending_model(pair_key(student_id, listing_id))
        return model.to_domain() if model is not None else None

    def _pending_model(self, key: str) -> Optional[RecomputationQueueModel]:
        stmt = (
            select(RecomputationQueueModel)
            .where(RecomputationQueueModel.dedup_key == key)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _merge_into(
        model: RecomputationQueueModel, priority: int, version: int, stale_since_str: str
    ) -> None:
        model.priority = max(model.priority, priority)
        model.version = max(model.version, version)
        if stale_since_str < model.stale_since:
            model.stale_since = stale_since_str

    def enqueue(
        self,
        student_id: str,
        listing_id: str,
        reason: str,
        priority: int = 5,
        version: int = 0,
        stale_since: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Add a pair to the queue unless it is already pending.

        Enqueuing a pending pair is a no-op apart from raising the entry's
        priority and version and keeping its oldest staleness time.

        Returns:
            True if a new entry was created, False if one was already pending

        Raises:
            PersistenceError: If database error occurs
        """
        now = now or utc_now()
        now_str = format_timestamp(now)
        stale_since_str = format_timestamp(stale_since or now)
        priority = min(max(int(priority), 1), 10)
        key = pair_key(student_id, listing_id)

        try:
            existing = self._pending_model(key)
            if existing is not None:
                self._merge_into(existing, priority, version, stale_since_str)
                self.session.flush()
                return False

            model = RecomputationQueueModel(
                student_id=student_id,
                listing_id=listing_id,
                reason=reason,
                priority=priority,
                version=version,
                status=QueueStatus.PENDING.value,
                dedup_key=key,
                enqueued_at=now_str,
                stale_since=stale_since_str,
                next_attempt_at=now_str,
                attempts=0,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(model)
            except IntegrityError:
                logger.debug(
                    f"Pair {key} enqueued concurrently; merging into the pending entry"
                )
                existing = self._pending_model(key)
                if existing is None:
                    raise
                self._merge_into(existing, priority, version, stale_since_str)
                self.session.flush()
                return False

            logger.debug(
                "Queue entry created",
                extra={
                    "event": "queue.entry.enqueued",
                    "student_id": student_id,
                    "listing_id": listing_id,
                    "reason": reason,
                    "priority": priority,
                    "version": version,
                },
            )
            return True

        except IntegrityError as e:
            logger.error(f"Integrity error enqueuing {key}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to enqueue {key}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error enqueuing {key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to enqueue: {e}") from e

    def claim(
        self, entry_id: int, worker_id: str, now: Optional[datetime] = None
    ) -> RecomputationQueueEntry:
        """Atomically claim a pending entry.

        A single conditional UPDATE moves the entry to processing only if it
        is still pending and no other entry for the same pair is processing.
        Exactly one concurrent claimant can win.

        Raises:
            QueueClaimConflict: If the entry was not claimable
            PersistenceError: If database error occurs
        """
        now_str = format_timestamp(now or utc_now())
        other = aliased(RecomputationQueueModel)
        busy = (
            select(other.id)
            .where(
                other.student_id == RecomputationQueueModel.student_id,
                other.listing_id == RecomputationQueueModel.listing_id,
                other.status == QueueStatus.PROCESSING.value,
                other.id != RecomputationQueueModel.id,
            )
            .exists()
        )
        try:
            result = self.session.execute(
                update(RecomputationQueueModel)
                .where(
                    RecomputationQueueModel.id == entry_id,
                    RecomputationQueueModel.status == QueueStatus.PENDING.value,
                    ~busy,
                )
                .values(
                    status=QueueStatus.PROCESSING.value,
                    dedup_key=None,
                    claimed_at=now_str,
                    claimed_by=worker_id,
                    attempts=RecomputationQueueModel.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error claiming queue entry {entry_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim queue entry: {e}") from e

        if result.rowcount != 1:
            raise QueueClaimConflict(entry_id)

        return self._get_model(entry_id).to_domain()

    def claim_batch(
        self, worker_id: str, limit: int, now: Optional[datetime] = None
    ) -> List[RecomputationQueueEntry]:
        """Claim up to ``limit`` due entries.

        Candidates are ordered by priority, then oldest staleness, then id.
        Entries lost to another worker are skipped.
        """
        now = now or utc_now()
        now_str = format_timestamp(now)
        try:
            stmt = (
                select(RecomputationQueueModel.id)
                .where(
                    RecomputationQueueModel.status == QueueStatus.PENDING.value,
                    RecomputationQueueModel.next_attempt_at <= now_str,
                )
                .order_by(
                    RecomputationQueueModel.priority.desc(),
                    RecomputationQueueModel.stale_since.asc(),
                    RecomputationQueueModel.id.asc(),
                )
                .limit(limit * 2)
            )
            candidate_ids = list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error selecting queue candidates: {e}", exc_info=True)
            raise PersistenceError(f"Failed to select queue candidates: {e}") from e

        claimed: List[RecomputationQueueEntry] = []
        for entry_id in candidate_ids:
            if len(claimed) >= limit:
                break
            try:
                claimed.append(self.claim(entry_id, worker_id, now))
            except QueueClaimConflict:
                logger.debug(
                    "Queue entry claimed elsewhere; skipping",
                    extra={"event": "queue.entry.claim_conflict", "entry_id": entry_id},
                )
        return claimed

    def _update_claimed(
        self,
        entry_id: int,
        claimed_by: Optional[str],
        claimed_at: Optional[datetime],
        **values,
    ) -> RecomputationQueueModel:
        """Apply ``values`` to a processing entry while the caller's claim still stands.

        Raises:
            QueueClaimConflict: If the entry is no longer processing under that claim
            RecordNotFoundError: If the entry does not exist
        """
        conditions = [
            RecomputationQueueModel.id == entry_id,
            RecomputationQueueModel.status == QueueStatus.PROCESSING.value,
        ]
        if claimed_by is not None:
            conditions.append(RecomputationQueueModel.claimed_by == claimed_by)
        if claimed_at is not None:
            conditions.append(RecomputationQueueModel.claimed_at == format_timestamp(claimed_at))

        result = self.session.execute(
            update(RecomputationQueueModel)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._get_model(entry_id)
            raise QueueClaimConflict(entry_id)
        return self._get_model(entry_id)

    def mark_processed(
        self,
        entry_id: int,
        now: Optional[datetime] = None,
        note: Optional[str] = None,
        claimed_by: Optional[str] = None,
        claimed_at: Optional[datetime] = None,
    ) -> None:
        """Mark a claimed entry processed.

        Args:
            entry_id: Queue entry id
            now: Processing time
            note: Optional remark stored in last_error (e.g. why the entry was dropped)
            claimed_by: Worker that must still hold the claim
            claimed_at: Claim time that must still be recorded on the entry

        Raises:
            QueueClaimConflict: If the claim was released or taken over meanwhile
            RecordNotFoundError: If the entry does not exist
        """
        values = {
            "status": QueueStatus.PROCESSED.value,
            "processed_at": format_timestamp(now or utc_now()),
            "dedup_key": None,
        }
        if note:
            values["last_error"] = note[:2000]
        try:
            self._update_claimed(entry_id, claimed_by, claimed_at, **values)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error marking queue entry {entry_id} processed: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark queue entry processed: {e}") from e

    def mark_failed(
        self,
        entry_id: int,
        error: str,
        policy: QueueConfig,
        now: Optional[datetime] = None,
        claimed_by: Optional[str] = None,
        claimed_at: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Record a failed computation.

        Below the attempt ceiling the entry returns to pending after a
        bounded exponential backoff. If the pair has meanwhile been enqueued
        again, this entry is folded into the newer pending one.

        Returns:
            When the entry becomes eligible again, or None if it was folded
            into another pending entry

        Raises:
            PersistentComputeFailure: After moving the entry to dead_letter
            QueueClaimConflict: If the claim was released or taken over meanwhile
            RecordNotFoundError: If the entry does not exist
        """
        now = now or utc_now()
        now_str = format_timestamp(now)
        try:
            model = self._update_claimed(
                entry_id, claimed_by, claimed_at, last_error=(error or "")[:2000]
            )

            if model.attempts >= policy.max_attempts:
                model.status = QueueStatus.DEAD_LETTER.value
                model.dedup_key = None
                model.processed_at = now_str
                self.session.flush()
                raise PersistentComputeFailure(
                    entry_id, model.student_id, model.listing_id, model.attempts, model.last_error
                )

            delay = policy.retry_delay_seconds(model.attempts)
            next_attempt = now + timedelta(seconds=delay)

            if self._fold_into_pending(model, now_str):
                return None

            model.status = QueueStatus.PENDING.value
            model.dedup_key = pair_key(model.student_id, model.listing_id)
            model.next_attempt_at = format_timestamp(next_attempt)
            model.claimed_at = None
            model.claimed_by = None
            self.session.flush()
            return next_attempt

        except SQLAlchemyError as e:
            logger.error(f"Error recording failure for entry {entry_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record queue failure: {e}") from e

    def _fold_into_pending(self, model: RecomputationQueueModel, now_str: str) -> bool:
        """Close ``model`` if its pair already has a pending entry."""
        pending = self._pending_model(pair_key(model.student_id, model.listing_id))
        if pending is None or pending.id == model.id:
            return False
        self._merge_into(pending, model.priority, model.version, model.stale_since)
        model.status = QueueStatus.PROCESSED.value
        model.dedup_key = None
        model.processed_at = now_str
        self.session.flush()
        return True

    def requeue_dead_letters(
        self, entry_ids: Optional[List[int]] = None, now: Optional[datetime] = None
    ) -> int:
        """Return dead-lettered entries to pending with a fresh attempt budget.

        Args:
            entry_ids: Restrict to these entries (default: all dead letters)

        Returns:
            Number of entries re-driven
        """
        now_str = format_timestamp(now or utc_now())
        try:
            stmt = (
                select(RecomputationQueueModel)
                .where(RecomputationQueueModel.status == QueueStatus.DEAD_LETTER.value)
                .order_by(RecomputationQueueModel.id.asc())
                .execution_options(populate_existing=True)
            )
            if entry_ids:
                stmt = stmt.where(RecomputationQueueModel.id.in_(entry_ids))
            requeued = 0
            for model in self.session.execute(stmt).scalars().all():
                if self._fold_into_pending(model, now_str):
                    continue
                model.status = QueueStatus.PENDING.value
                model.dedup_key = pair_key(model.student_id, model.listing_id)
                model.attempts = 0
                model.next_attempt_at = now_str
                model.claimed_at = None
                model.claimed_by = None
                model.processed_at = None
                self.session.flush()
                requeued += 1
            return requeued
        except SQLAlchemyError as e:
            logger.error(f"Error re-driving dead letters: {e}", exc_info=True)
            raise PersistenceError(f"Failed to requeue dead letters: {e}") from e

    def release_expired_claims(self, older_than: datetime, now: Optional[datetime] = None) -> int:
        """Return entries stuck in processing since before ``older_than`` to pending.

        Covers workers that died mid-computation. The attempt stays counted.
        """
        now_str = format_timestamp(now or utc_now())
        try:
            stmt = (
                select(RecomputationQueueModel)
                .where(
                    RecomputationQueueModel.status == QueueStatus.PROCESSING.value,
                    RecomputationQueueModel.claimed_at < format_timestamp(older_than),
                )
                .order_by(RecomputationQueueModel.id.asc())
                .execution_options(populate_existing=True)
            )
            released = 0
            for model in self.session.execute(stmt).scalars().all():
                if not self._fold_into_pending(model, now_str):
                    model.status = QueueStatus.PENDING.value
                    model.dedup_key = pair_key(model.student_id, model.listing_id)
                    model.next_attempt_at = now_str
                    model.claimed_at = None
                    model.claimed_by = None
                    self.session.flush()
                released += 1
            return released
        except SQLAlchemyError as e:
            logger.error(f"Error releasing expired claims: {e}", exc_info=True)
            raise PersistenceError(f"Failed to release expired claims: {e}") from e

    def backlog(self) -> int:
        """Number of pending entries."""
        try:
            return int(
                self.session.execute(
                    select(func.count(RecomputationQueueModel.id)).where(
                        RecomputationQueueModel.status == QueueStatus.PENDING.value
                    )
                ).scalar_one()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error counting queue backlog: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count queue backlog: {e}") from e

    def check_backlog(self, threshold: int) -> int:
        """Return the backlog, raising QueueOverflow when it exceeds ``threshold``."""
        backlog = self.backlog()
        if backlog > threshold:
            raise QueueOverflow(backlog, threshold)
        return backlog

    def stats(self) -> Dict[str, int]:
        """Entry counts per status (every status present, zero-filled)."""
        try:
            rows = self.session.execute(
                select(RecomputationQueueModel.status, func.count(RecomputationQueueModel.id))
                .group_by(RecomputationQueueModel.status)
            ).all()
            counts = {status.value: 0 for status in QueueStatus}
            for status, count in rows:
                counts[status] = int(count)
            return counts
        except SQLAlchemyError as e:
            logger.error(f"Error computing queue stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute queue stats: {e}") from e
