"""Queue worker: drains the recomputation queue and sweeps for stale scores."""

import threading
import time
from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

from talentmatch.config.environment import default_worker_id
from talentmatch.config.models import AppConfig
from talentmatch.domain.models import RecomputationQueueEntry, RecomputeReason
from talentmatch.logging import get_logger
from talentmatch.logging.context import log_context
from talentmatch.matching.calculator import ENGINE_VERSION
from talentmatch.matching.exceptions import (
    InvalidReference,
    PersistentComputeFailure,
    QueueClaimConflict,
)
from talentmatch.matching.service import PairScorer
from talentmatch.persistence.database import SessionScope, get_session
from talentmatch.persistence.repositories import (
    MatchScoreRepository,
    RecomputationQueueRepository,
)
from talentmatch.utils.timestamps import utc_now

from .models import EntryOutcome, EntryStatus, SweepResult, WorkerRunResult

logger = get_logger(__name__, component="worker")


class RecomputeWorker:
    """
    Claims batches of queue entries and recomputes each pair.

    Every entry is processed in its own transaction, so one failing pair
    never rolls back the others. Failures are recorded on the entry with a
    backoff; entries that keep failing end up in the dead-letter state.
    """

    def __init__(
        self,
        app_config: AppConfig,
        worker_id: Optional[str] = None,
        session_scope: SessionScope = get_session,
    ):
        """
        Initialize the worker.

        Args:
            app_config: Application configuration
            worker_id: Identity recorded on claimed entries (default: host-pid)
            session_scope: Factory for transactional session scopes
        """
        self.app_config = app_config
        self.queue_config = app_config.queue
        self.worker_id = worker_id or default_worker_id()
        self.session_scope = session_scope
        self._lock = threading.Lock()

    def drain_once(self) -> WorkerRunResult:
        """
        Claim one batch and process every claimed entry.

        Returns:
            WorkerRunResult with per-entry outcomes; a run that finds the
            previous drain still in progress is returned with skipped=True
        """
        run_started_at = utc_now()
        run_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(worker_run_id=run_id):
                logger.warning(
                    "Worker run skipped: previous drain still in progress",
                    extra={"event": "worker.run.skipped", "reason": "lock_held"},
                )
            return WorkerRunResult(
                worker_id=self.worker_id,
                run_started_at=run_started_at,
                run_finished_at=utc_now(),
                skipped=True,
            )

        try:
            with log_context(worker_run_id=run_id, worker_id=self.worker_id):
                with self.session_scope() as session:
                    claimed = RecomputationQueueRepository(session).claim_batch(
                        self.worker_id, self.queue_config.batch_size, run_started_at
                    )

                if not claimed:
                    logger.debug("Queue empty", extra={"event": "worker.run.idle"})

                outcomes: List[EntryOutcome] = [self._process_entry(entry) for entry in claimed]

                result = WorkerRunResult(
                    worker_id=self.worker_id,
                    run_started_at=run_started_at,
                    run_finished_at=utc_now(),
                    outcomes=outcomes,
                )
                if result.claimed:
                    logger.info(
                        "Worker run completed",
                        extra={
                            "event": "worker.run.completed",
                            "duration_ms": int(result.total_duration_seconds * 1000),
                            "claimed": result.claimed,
                            "written": result.written,
                            "rejected": result.rejected,
                            "dropped": result.dropped,
                            "retried": result.retried,
                            "dead_lettered": result.dead_lettered,
                            "claim_lost": result.claim_lost,
                        },
                    )
                return result
        finally:
            self._lock.release()

    def _process_entry(self, entry: RecomputationQueueEntry) -> EntryOutcome:
        started = time.time()
        outcome = EntryOutcome(
            entry_id=entry.id,
            student_id=entry.student_id,
            listing_id=entry.listing_id,
            status=EntryStatus.WRITTEN,
            attempts=entry.attempts,
        )
        claim = {"claimed_by": entry.claimed_by, "claimed_at": entry.claimed_at}

        with log_context(
            entry_id=entry.id, student_id=entry.student_id, listing_id=entry.listing_id
        ):
            try:
                with self.session_scope() as session:
                    now = utc_now()
                    scorer = PairScorer(session, self.app_config.matching)
                    result = scorer.recompute(
                        entry.student_id,
                        entry.listing_id,
                        version=entry.version,
                        reason=entry.reason,
                        now=now,
                    )
                    RecomputationQueueRepository(session).mark_processed(entry.id, now, **claim)

                outcome.composite_score = result.score.composite_score
                outcome.status = EntryStatus.WRITTEN if result.written else EntryStatus.REJECTED

            except QueueClaimConflict as e:
                outcome.status = self._claim_lost(e)

            except InvalidReference as e:
                # Nothing to score any more; retrying cannot help
                outcome.status = EntryStatus.DROPPED
                outcome.error = str(e)
                try:
                    with self.session_scope() as session:
                        RecomputationQueueRepository(session).mark_processed(
                            entry.id, utc_now(), note=str(e), **claim
                        )
                except QueueClaimConflict as conflict:
                    outcome.status = self._claim_lost(conflict)
                else:
                    logger.info(
                        f"Dropping queue entry {entry.id}: {e}",
                        extra={"event": "queue.entry.dropped", "kind": e.kind},
                    )

            except Exception as e:
                outcome.error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"Recomputation failed for entry {entry.id}: {e}",
                    extra={"event": "queue.entry.failed", "attempts": entry.attempts},
                    exc_info=True,
                )
                outcome.status = self._record_failure(entry, outcome.error)

            finally:
                outcome.duration_seconds = time.time() - started

        return outcome

    @staticmethod
    def _claim_lost(conflict: QueueClaimConflict) -> EntryStatus:
        """The claim expired and was released; the entry belongs to someone else now."""
        logger.warning(
            f"Claim on queue entry {conflict.entry_id} lost; result discarded",
            extra={"event": "queue.entry.claim_lost"},
        )
        return EntryStatus.CLAIM_LOST

    def _record_failure(self, entry: RecomputationQueueEntry, error: str) -> EntryStatus:
        """Persist a failed attempt; the dead-letter transition commits with the session."""
        try:
            with self.session_scope() as session:
                queue = RecomputationQueueRepository(session)
                try:
                    next_attempt_at = queue.mark_failed(
                        entry.id,
                        error,
                        self.queue_config,
                        utc_now(),
                        claimed_by=entry.claimed_by,
                        claimed_at=entry.claimed_at,
                    )
                except PersistentComputeFailure as failure:
                    logger.error(
                        str(failure),
                        extra={
                            "event": "queue.entry.dead_lettered",
                            "attempts": failure.attempts,
                            "error": failure.last_error,
                        },
                    )
                    return EntryStatus.DEAD_LETTER
        except QueueClaimConflict as conflict:
            return self._claim_lost(conflict)

        logger.info(
            "Queue entry scheduled for retry",
            extra={
                "event": "queue.entry.retry_scheduled",
                "next_attempt_at": next_attempt_at.isoformat() if next_attempt_at else None,
                "merged": next_attempt_at is None,
            },
        )
        return EntryStatus.RETRY

    def sweep_once(self) -> SweepResult:
        """
        Release expired claims and re-enqueue stale score rows.

        Rows left stale by a lost queue entry, a crashed worker or an engine
        version change are picked up here at the lowest priority.
        """
        run_started_at = utc_now()
        claim_cutoff = run_started_at - timedelta(seconds=self.queue_config.claim_timeout_seconds)

        with log_context(sweep_id=uuid4().hex, worker_id=self.worker_id):
            with self.session_scope() as session:
                queue = RecomputationQueueRepository(session)
                released = queue.release_expired_claims(claim_cutoff, run_started_at)

                stale_keys = MatchScoreRepository(session, ENGINE_VERSION).stale_keys(
                    self.queue_config.sweep_limit
                )
                enqueued = 0
                for key in stale_keys:
                    created = queue.enqueue(
                        key.student_id,
                        key.listing_id,
                        reason=RecomputeReason.SWEEP.value,
                        priority=RecomputeReason.SWEEP.default_priority,
                        version=key.data_version,
                        stale_since=key.stale_since,
                        now=run_started_at,
                    )
                    if created:
                        enqueued += 1
                backlog = queue.backlog()

            result = SweepResult(
                run_started_at=run_started_at,
                run_finished_at=utc_now(),
                released_claims=released,
                stale_found=len(stale_keys),
                enqueued=enqueued,
                backlog=backlog,
            )
            logger.info(
                "Stale sweep completed",
                extra={
                    "event": "worker.sweep.completed",
                    "released_claims": released,
                    "stale_found": result.stale_found,
                    "enqueued": enqueued,
                    "backlog": backlog,
                },
            )
            return result

