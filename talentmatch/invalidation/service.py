"""Invalidation: turn upstream data changes into stale scores and queue entries.

Upstream services call these hooks after committing a change to a student,
listing, application, feedback or skill-mapping snapshot. Each hook marks
the dependent score rows stale (never deleting them) and enqueues one
recomputation per resolved pair, stamped with the row's new data version.
"""

from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from talentmatch.config.models import QueueConfig
from talentmatch.domain.models import RecomputeReason
from talentmatch.logging import get_logger
from talentmatch.matching.calculator import ENGINE_VERSION
from talentmatch.matching.exceptions import QueueOverflow
from talentmatch.persistence.repositories import (
    ApplicationRepository,
    MatchScoreRepository,
    RecomputationQueueRepository,
    StaleKey,
    StudentRepository,
)
from talentmatch.utils.timestamps import utc_now

from .models import InvalidationResult

logger = get_logger(__name__, component="invalidation")


class InvalidationService:
    """
    Marks scores stale and schedules their recomputation.

    The caller owns the session; staleness and queue entries are written in
    the caller's transaction so they commit or roll back together.
    """

    def __init__(self, session: Session, queue_config: Optional[QueueConfig] = None):
        self.session = session
        self.queue_config = queue_config or QueueConfig()
        self.scores = MatchScoreRepository(session, engine_version=ENGINE_VERSION)
        self.queue = RecomputationQueueRepository(session)

    def on_profile_changed(
        self, student_id: str, now: Optional[datetime] = None
    ) -> InvalidationResult:
        """Skill set, hours, sport or position of a student changed."""
        now = now or utc_now()
        keys = self.scores.mark_stale_for_student(student_id, now)
        return self._enqueue(
            keys, len(keys), RecomputeReason.PROFILE_CHANGED, now, student_id=student_id
        )

    def on_listing_changed(
        self, listing_id: str, now: Optional[datetime] = None
    ) -> InvalidationResult:
        """Requirements, category or hours of a listing changed.

        Fans out only to students with an interest signal: an existing
        score row or an application. Applicants without a score row get a
        queue entry at data version 0 so their first score is computed.
        """
        now = now or utc_now()
        keys = self.scores.mark_stale_for_listing(listing_id, now)

        scored: Set[str] = {k.student_id for k in keys}
        applicants = ApplicationRepository(self.session).applicant_ids(listing_id)
        extra = [
            StaleKey(student_id, listing_id, 0, now)
            for student_id in sorted(applicants - scored)
        ]
        return self._enqueue(
            keys + extra, len(keys), RecomputeReason.LISTING_CHANGED, now, listing_id=listing_id
        )

    def on_application_outcome_changed(
        self, student_id: str, listing_id: str, now: Optional[datetime] = None
    ) -> InvalidationResult:
        """An application changed status.

        Every score of the student depends on the outcome history through the
        affinity and success-history factors, so all of them go stale.
        """
        now = now or utc_now()
        keys = self.scores.mark_stale_for_student(student_id, now)
        return self._enqueue(
            keys,
            len(keys),
            RecomputeReason.OUTCOME_CHANGED,
            now,
            student_id=student_id,
            listing_id=listing_id,
        )

    def on_feedback_recorded(
        self, student_id: str, listing_id: str, now: Optional[datetime] = None
    ) -> InvalidationResult:
        """A student rated a match; feedback affinity changes for every listing."""
        now = now or utc_now()
        keys = self.scores.mark_stale_for_student(student_id, now)
        return self._enqueue(
            keys,
            len(keys),
            RecomputeReason.FEEDBACK_RECORDED,
            now,
            student_id=student_id,
            listing_id=listing_id,
        )

    def on_skill_mapping_changed(
        self, sport: str, now: Optional[datetime] = None
    ) -> InvalidationResult:
        """An athletic skill mapping for ``sport`` was added or changed."""
        now = now or utc_now()
        student_ids = StudentRepository(self.session).ids_for_sport(sport)
        keys = self.scores.mark_stale_for_students(student_ids, now)
        return self._enqueue(
            keys, len(keys), RecomputeReason.SKILL_MAPPING_CHANGED, now, sport=sport
        )

    def _enqueue(
        self,
        keys: List[StaleKey],
        marked_stale: int,
        reason: RecomputeReason,
        now: datetime,
        **context,
    ) -> InvalidationResult:
        result = InvalidationResult(reason=reason, marked_stale=marked_stale)

        for key in keys:
            created = self.queue.enqueue(
                key.student_id,
                key.listing_id,
                reason=reason.value,
                priority=reason.default_priority,
                version=key.data_version,
                stale_since=key.stale_since or now,
                now=now,
            )
            if created:
                result.enqueued += 1
            else:
                result.merged += 1

        try:
            self.queue.check_backlog(self.queue_config.backlog_threshold)
        except QueueOverflow as e:
            logger.warning(
                str(e),
                extra={
                    "event": "queue.backlog.exceeded",
                    "backlog": e.backlog,
                    "threshold": e.threshold,
                },
            )

        logger.info(
            f"Invalidated {result.marked_stale} scores ({reason.value})",
            extra={
                "event": "scores.invalidated",
                "reason": reason.value,
                "marked_stale": result.marked_stale,
                "enqueued": result.enqueued,
                "merged": result.merged,
                **context,
            },
        )
        return result
