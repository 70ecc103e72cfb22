"""Recommendation read path: ranked listings, ranked students, pair detail.

Reads always answer from the score store first. Missing pairs are scored
inline and persisted; stale pairs are either served and queued (ASYNC) or
recomputed inline (SYNC). When the queue backlog is over its threshold the
read stops recomputing and serves what the store has.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from talentmatch.config.models import AppConfig
from talentmatch.domain.models import MatchScore, RecomputeReason
from talentmatch.logging import get_logger
from talentmatch.matching.calculator import to_percent
from talentmatch.matching.exceptions import ComputationTimeout, QueueOverflow
from talentmatch.matching.service import PairScorer, StudentContext
from talentmatch.persistence.database import SessionScope, get_session
from talentmatch.persistence.repositories import (
    ApplicationRepository,
    InviteRepository,
    ListingRepository,
    RecomputationQueueRepository,
    StudentRepository,
)
from talentmatch.utils.timestamps import utc_now

from .models import ListingRecommendation, MatchDetail, RefreshMode, StudentRecommendation

logger = get_logger(__name__, component="recommendations")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def listing_rank_key(rec: ListingRecommendation) -> Tuple:
    """Score descending, then newest publish time, then listing id."""
    published = rec.listing.published_at or _EPOCH
    return (-rec.composite_score, -published.timestamp(), rec.listing.listing_id)


class RecommendationService:
    """
    Serves recommendations from the score store.

    Args:
        config: Application configuration
        session_scope: Factory for transactional session scopes
        max_sync_workers: Threads available for synchronous pair recomputes
    """

    def __init__(
        self,
        config: AppConfig,
        session_scope: SessionScope = get_session,
        max_sync_workers: int = 4,
    ):
        self.config = config
        self.settings = config.recommendations
        self.session_scope = session_scope
        self._executor = ThreadPoolExecutor(
            max_workers=max_sync_workers, thread_name_prefix="match-detail"
        )

    def close(self) -> None:
        """Stop accepting synchronous recomputes; running ones finish in the background."""
        self._executor.shutdown(wait=False)

    def get_recommended_listings(
        self,
        student_id: str,
        limit: Optional[int] = None,
        mode: RefreshMode = RefreshMode.ASYNC,
    ) -> List[ListingRecommendation]:
        """
        Rank published listings for a student.

        Listings the student applied to (withdrawn applications aside) and
        listings whose invite was already accepted or declined are excluded.

        Args:
            student_id: Student to recommend for
            limit: Maximum results (default from config)
            mode: How stale cached scores are handled

        Returns:
            Recommendations ordered by score, publish time, listing id

        Raises:
            InvalidReference: If the student does not exist
        """
        if limit is None:
            limit = self.settings.default_listing_limit
        now = utc_now()

        with self.session_scope() as session:
            scorer = PairScorer(session, self.config.matching)
            student = scorer.get_student(student_id)

            excluded = ApplicationRepository(session).applied_listing_ids(student_id)
            excluded |= InviteRepository(session).settled_listing_ids(student_id)
            candidates = ListingRepository(session).list_published(
                self.settings.candidate_pool_size, exclude=excluded
            )
            cached: Dict[str, MatchScore] = {
                s.listing_id: s for s in scorer.scores.list_for_student(student_id)
            }

            queue = RecomputationQueueRepository(session)
            overflow = self._backlog_exceeded(queue)
            context: Optional[StudentContext] = None

            recommendations: List[ListingRecommendation] = []
            computed = stale_served = 0
            for listing in candidates:
                score = cached.get(listing.listing_id)
                degraded = False

                refresh = score is not None and score.is_stale and mode == RefreshMode.SYNC
                if score is None or (refresh and not overflow):
                    context = context or scorer.context_for(student)
                    reason = RecomputeReason.STALE_READ.value if refresh else "initial"
                    score = scorer.compute_and_store(context, listing, reason=reason, now=now).score
                    computed += 1

                # Also true when the pair was invalidated again mid-computation
                if score.is_stale:
                    self._enqueue_stale_read(queue, score, now)
                    degraded = True
                    stale_served += 1

                if score.composite_score < self.settings.min_score:
                    continue
                recommendations.append(ListingRecommendation.from_score(listing, score, degraded))

        recommendations.sort(key=listing_rank_key)
        logger.debug(
            f"Ranked {len(recommendations)} listings for {student_id}",
            extra={
                "event": "recommendations.listings.served",
                "student_id": student_id,
                "candidates": len(candidates),
                "computed": computed,
                "stale_served": stale_served,
                "mode": mode.value,
            },
        )
        return recommendations[:limit]

    def get_recommended_students(
        self, listing_id: str, limit: Optional[int] = None
    ) -> List[StudentRecommendation]:
        """
        Rank students for a listing by skill match alone.

        Students who already applied are excluded. Availability, recency and
        affinity are student-context factors and play no part here.

        Raises:
            InvalidReference: If the listing does not exist
        """
        if limit is None:
            limit = self.settings.default_student_limit

        with self.session_scope() as session:
            scorer = PairScorer(session, self.config.matching)
            listing = scorer.get_listing(listing_id)

            applicants = ApplicationRepository(session).applicant_ids(listing_id)
            students = StudentRepository(session).list_students(
                self.settings.candidate_pool_size, exclude=applicants
            )

            transfers_by_position: Dict[Tuple, Dict[str, float]] = {}
            recommendations: List[StudentRecommendation] = []
            for student in students:
                position_key = (student.sport, student.position)
                if position_key not in transfers_by_position:
                    transfers_by_position[position_key] = scorer.mapper.transfers_for(student)

                match = scorer.calculator.skill_match(
                    student, listing, transfers_by_position[position_key]
                )
                recommendations.append(
                    StudentRecommendation(
                        student=student,
                        composite_score=to_percent(match.raw),
                        matched_skills=match.matched_skills,
                        missing_skills=match.missing_skills,
                        transfer_skills=match.transfer_skills,
                    )
                )

        recommendations.sort(key=lambda r: (-r.composite_score, r.student.student_id))
        return recommendations[:limit]

    def get_match_detail(self, student_id: str, listing_id: str) -> MatchDetail:
        """
        Explain one pair, recomputing synchronously when needed.

        A fresh cached score is returned as is. Otherwise the pair is
        recomputed within ``sync_timeout``; on timeout the last known score
        is served with ``degraded=True`` and a recompute is queued.

        Raises:
            InvalidReference: If either id does not exist
        """
        with self.session_scope() as session:
            scorer = PairScorer(session, self.config.matching)
            scorer.get_student(student_id)
            scorer.get_listing(listing_id)
            cached = scorer.scores.get(student_id, listing_id)

        if cached is not None and not cached.is_stale:
            return MatchDetail(student_id=student_id, listing_id=listing_id, score=cached)

        timeout = self.settings.sync_timeout_seconds
        future = self._executor.submit(self._recompute_pair, student_id, listing_id)
        try:
            score = future.result(timeout=timeout)
            return MatchDetail(student_id=student_id, listing_id=listing_id, score=score)
        except FuturesTimeout:
            error = ComputationTimeout(student_id, listing_id, timeout)

        logger.warning(
            str(error),
            extra={
                "event": "recommendations.degraded",
                "student_id": student_id,
                "listing_id": listing_id,
                "timeout_seconds": timeout,
                "has_cached_score": cached is not None,
            },
        )
        with self.session_scope() as session:
            RecomputationQueueRepository(session).enqueue(
                student_id,
                listing_id,
                reason=RecomputeReason.STALE_READ.value,
                priority=RecomputeReason.STALE_READ.default_priority,
                version=cached.data_version if cached is not None else 0,
            )
        return MatchDetail(
            student_id=student_id, listing_id=listing_id, score=cached, degraded=True
        )

    def _recompute_pair(self, student_id: str, listing_id: str) -> MatchScore:
        with self.session_scope() as session:
            scorer = PairScorer(session, self.config.matching)
            outcome = scorer.recompute(
                student_id, listing_id, reason=RecomputeReason.STALE_READ.value
            )
            if outcome.written:
                return outcome.score
            # A newer version landed while computing; serve what the store has
            return scorer.scores.get(student_id, listing_id)

    def _backlog_exceeded(self, queue: RecomputationQueueRepository) -> bool:
        try:
            queue.check_backlog(self.config.queue.backlog_threshold)
            return False
        except QueueOverflow as e:
            logger.warning(
                f"Serving cached scores only: {e}",
                extra={
                    "event": "recommendations.degraded",
                    "reason": "backlog",
                    "backlog": e.backlog,
                    "threshold": e.threshold,
                },
            )
            return True

    @staticmethod
    def _enqueue_stale_read(
        queue: RecomputationQueueRepository, score: MatchScore, now: datetime
    ) -> None:
        queue.enqueue(
            score.student_id,
            score.listing_id,
            reason=RecomputeReason.STALE_READ.value,
            priority=RecomputeReason.STALE_READ.default_priority,
            version=score.data_version,
            now=now,
        )

