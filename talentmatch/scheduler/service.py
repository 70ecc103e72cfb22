"""Scheduler service for periodic queue draining and staleness sweeps."""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from talentmatch.logging import get_logger

logger = get_logger(__name__, component="scheduler")

DRAIN_JOB_ID = "queue-drain"
SWEEP_JOB_ID = "stale-sweep"


@dataclass
class ScheduledJob:
    """A periodic job: what to call, how often, and whether to run at startup."""

    job_id: str
    name: str
    func: Callable[[], object]
    interval_seconds: int
    run_immediately: bool = True


class SchedulerService:
    """
    Wraps APScheduler to drain the queue and sweep stale scores on intervals.

    Uses BackgroundScheduler to run jobs in a separate thread while
    allowing the main thread to handle signals and coordinate shutdown.
    """

    def __init__(
        self,
        drain_callable: Callable[[], object],
        drain_interval_seconds: int,
        sweep_callable: Optional[Callable[[], object]] = None,
        sweep_interval_seconds: Optional[int] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            drain_callable: Function to call on each drain (e.g., worker.drain_once)
            drain_interval_seconds: Interval between drains in seconds
            sweep_callable: Optional staleness sweep (e.g., worker.sweep_once)
            sweep_interval_seconds: Interval between sweeps in seconds
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.shutdown_event = shutdown_event
        self.jobs: List[ScheduledJob] = [
            ScheduledJob(
                DRAIN_JOB_ID, "Recomputation queue drain", drain_callable, drain_interval_seconds
            )
        ]
        if sweep_callable is not None:
            if not sweep_interval_seconds:
                raise ValueError("sweep_interval_seconds is required with a sweep_callable")
            # First sweep one interval after startup; the drain covers startup
            self.jobs.append(
                ScheduledJob(
                    SWEEP_JOB_ID,
                    "Stale score sweep",
                    sweep_callable,
                    sweep_interval_seconds,
                    run_immediately=False,
                )
            )

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # Prevent overlapping runs
                "coalesce": True,  # If run is delayed, only execute once
                "misfire_grace_time": drain_interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """Register every job and start the scheduler."""
        if self.scheduler.running:
            logger.warning(
                "Scheduler already running; start ignored",
                extra={"event": "scheduler.start_ignored"},
            )
            return

        now = datetime.now(timezone.utc)
        for job in self.jobs:
            next_run = now if job.run_immediately else now + timedelta(seconds=job.interval_seconds)
            self.scheduler.add_job(
                func=job.func,
                trigger=IntervalTrigger(seconds=job.interval_seconds, timezone=timezone.utc),
                id=job.job_id,
                name=job.name,
                replace_existing=True,
                next_run_time=next_run,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with {len(self.jobs)} jobs",
            extra={
                "event": "scheduler.started",
                "jobs": {job.job_id: job.interval_seconds for job in self.jobs},
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={
                "event": "scheduler.stopping",
                "wait_for_jobs": wait,
            },
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info(
            "Scheduler shutdown complete",
            extra={"event": "scheduler.stopped"}
        )

    def trigger_now(self, job_id: str = DRAIN_JOB_ID):
        """Run a job synchronously in the current thread and return its result."""
        job = self._job(job_id)
        logger.info(
            f"Triggering immediate run: {job.name}",
            extra={"event": "scheduler.trigger_now", "job_id": job_id},
        )
        return job.func()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str = DRAIN_JOB_ID) -> Optional[datetime]:
        """
        Get the next scheduled run time of a job.

        Returns:
            Next run time as a datetime, or None if not scheduled
        """
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None

    def _job(self, job_id: str) -> ScheduledJob:
        for job in self.jobs:
            if job.job_id == job_id:
                return job
        raise KeyError(f"Unknown job: {job_id}")
