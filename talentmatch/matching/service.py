"""Pair scoring against the database: load snapshots, compute, store.

PairScorer is the only place that wires the pure calculator to persisted
data. It is used by the queue worker (one pair per transaction) and by the
recommendation service (many listings for one student).
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from talentmatch.config.models import MatchingConfig
from talentmatch.domain.models import Listing, MatchScore, StudentProfile
from talentmatch.persistence.repositories import (
    ApplicationRepository,
    FeedbackRepository,
    ListingRepository,
    MatchScoreRepository,
    SkillMappingRepository,
    StudentRepository,
)
from talentmatch.utils.timestamps import utc_now

from .affinity import AffinityLearner
from .calculator import ENGINE_VERSION, ScoreCalculator
from .exceptions import InvalidReference
from .models import AffinitySignals, ScoreComputation
from .transfer import build_skill_mapper

logger = logging.getLogger(__name__)


@dataclass
class StudentContext:
    """Everything the calculator needs about a student besides the listing."""

    student: StudentProfile
    signals: AffinitySignals
    transfers: Dict[str, float] = field(default_factory=dict)


@dataclass
class RecomputeOutcome:
    """Result of recomputing and storing one pair."""

    score: MatchScore
    version: int
    written: bool


class PairScorer:
    """Scores pairs from the database and writes them to the score store.

    Args:
        session: SQLAlchemy session (the caller owns the transaction)
        matching_config: Marketplace settings (athletic transfer on/off)
        calculator: Optional calculator override
    """

    def __init__(
        self,
        session: Session,
        matching_config: MatchingConfig,
        calculator: Optional[ScoreCalculator] = None,
    ):
        self.session = session
        self.calculator = calculator or ScoreCalculator()
        self.learner = AffinityLearner()
        self.students = StudentRepository(session)
        self.listings = ListingRepository(session)
        self.applications = ApplicationRepository(session)
        self.feedback = FeedbackRepository(session)
        self.scores = MatchScoreRepository(session, engine_version=ENGINE_VERSION)
        self.mapper = build_skill_mapper(matching_config, SkillMappingRepository(session))

    def get_student(self, student_id: str) -> StudentProfile:
        student = self.students.get(student_id)
        if student is None:
            raise InvalidReference("student", student_id)
        return student

    def get_listing(self, listing_id: str) -> Listing:
        listing = self.listings.get(listing_id)
        if listing is None:
            raise InvalidReference("listing", listing_id)
        return listing

    def context_for(self, student: StudentProfile) -> StudentContext:
        """Learn signals and resolve transfers for a student."""
        signals = self.learner.learn(
            self.applications.for_student(student.student_id),
            self.feedback.for_student(student.student_id),
        )
        return StudentContext(
            student=student,
            signals=signals,
            transfers=self.mapper.transfers_for(student),
        )

    def compute(
        self, context: StudentContext, listing: Listing, now: Optional[datetime] = None
    ) -> MatchScore:
        """Score a pair without storing it; ``computation_time_ms`` is measured."""
        now = now or utc_now()
        started = time.perf_counter()
        computation: ScoreComputation = self.calculator.compute(
            context.student, listing, context.signals, context.transfers, now
        )
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        return computation.to_match_score(
            computed_at=now,
            computation_time_ms=elapsed_ms,
            tenant_id=listing.tenant_id or context.student.tenant_id,
        )

    def compute_and_store(
        self,
        context: StudentContext,
        listing: Listing,
        version: Optional[int] = None,
        reason: str = "recompute",
        now: Optional[datetime] = None,
    ) -> RecomputeOutcome:
        """Score a pair and write it through the store.

        Args:
            context: Student context from context_for()
            listing: Listing snapshot
            version: Data version the computation answers (default: the
                pair's current data version)
            reason: History reason recorded when the score changes
            now: Reference time

        Returns:
            RecomputeOutcome; ``written`` is False for a rejected stale write.
            A written score is returned as stored, so its version fields and
            staleness reflect any invalidation that landed during the computation.
        """
        now = now or utc_now()
        if version is None:
            version = self.scores.current_version(context.student.student_id, listing.listing_id)

        score = self.compute(context, listing, now)
        written = self.scores.upsert(score, version, reason=reason, now=now)
        if written:
            logger.debug(
                "Score stored",
                extra={
                    "event": "score.stored",
                    "student_id": score.student_id,
                    "listing_id": score.listing_id,
                    "composite_score": score.composite_score,
                    "version": version,
                    "computation_time_ms": score.computation_time_ms,
                },
            )
            score = self.scores.get(score.student_id, score.listing_id) or score
        return RecomputeOutcome(score=score, version=version, written=written)

    def recompute(
        self,
        student_id: str,
        listing_id: str,
        version: Optional[int] = None,
        reason: str = "recompute",
        now: Optional[datetime] = None,
    ) -> RecomputeOutcome:
        """Load both snapshots, score the pair and store the result.

        Raises:
            InvalidReference: If either id is unknown
        """
        student = self.get_student(student_id)
        listing = self.get_listing(listing_id)
        return self.compute_and_store(
            self.context_for(student), listing, version=version, reason=reason, now=now
        )
