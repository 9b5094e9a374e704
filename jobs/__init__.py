"""Sync job scheduling, failure routing and execution."""

from jobs.manager import QueueManager, backoff_delay_seconds
from jobs.runner import JobResult, JobRunner
from jobs.scheduler import InMemoryJobScheduler, JobScheduler, job_key_filter

__all__ = [
    "QueueManager",
    "backoff_delay_seconds",
    "JobResult",
    "JobRunner",
    "InMemoryJobScheduler",
    "JobScheduler",
    "job_key_filter",
]
