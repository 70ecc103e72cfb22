"""Scheduling module for periodic queue draining and staleness sweeps."""

from .service import DRAIN_JOB_ID, SWEEP_JOB_ID, SchedulerService

__all__ = [
    "SchedulerService",
    "DRAIN_JOB_ID",
    "SWEEP_JOB_ID",
]
