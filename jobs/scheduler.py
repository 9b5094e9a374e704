"""Job scheduler port and the in-process backend.

The queue manager depends only on this capability contract:

- schedule_once(job_type, payload, delay, group)
- schedule_recurring(job_type, payload, interval, group)
- has_scheduled(job_type, payload_filter, group)
- cancel_all(job_type, payload_filter, group)
- count_pending(group)

``InMemoryJobScheduler`` serves a single process polling worker (see
``workers/worker.py --local``). ``jobs.temporal_scheduler`` provides the
Temporal-backed implementation.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.models.sync import JobGroup, JobType, SyncJob

Clock = Callable[[], datetime]


class JobScheduler(ABC):
    """Abstract scheduler for sync jobs."""

    @abstractmethod
    async def schedule_once(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        delay_seconds: float = 0,
        group: JobGroup = JobGroup.ORDERS,
        retry_count: int = 0,
    ) -> SyncJob:
        """Schedule a single run after ``delay_seconds``."""
        pass

    @abstractmethod
    async def schedule_recurring(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        interval_seconds: float,
        group: JobGroup,
    ) -> str:
        """Schedule a job every ``interval_seconds``. Idempotent per job type and group.

        Returns:
            Recurring schedule ID
        """
        pass

    @abstractmethod
    async def has_scheduled(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> bool:
        """True if a matching job is pending or running."""
        pass

    @abstractmethod
    async def cancel_all(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> int:
        """Remove matching pending jobs. Running jobs are not interrupted.

        Returns:
            Number of jobs cancelled
        """
        pass

    @abstractmethod
    async def count_pending(self, group: JobGroup) -> int:
        pass


@dataclass
class RecurringSchedule:
    schedule_id: str
    job_type: JobType
    payload: Dict[str, Any]
    interval: timedelta
    group: JobGroup
    next_run: datetime


class InMemoryJobScheduler(JobScheduler):
    """Single-process scheduler with an injectable clock.

    Jobs handed out by ``claim_due`` count as scheduled until ``complete``
    is called, so the duplicate guard also covers running jobs.

    Usage:
        scheduler = InMemoryJobScheduler()
        await scheduler.schedule_once(JobType.ORDER_SYNC, {"order_id": 1042})
        for job in scheduler.claim_due():
            ...
            scheduler.complete(job.id)
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or datetime.utcnow
        self._lock = threading.Lock()
        self._pending: List[SyncJob] = []
        self._in_flight: Dict[str, SyncJob] = {}
        self._recurring: Dict[str, RecurringSchedule] = {}

    def now(self) -> datetime:
        return self._clock()

    async def schedule_once(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        delay_seconds: float = 0,
        group: JobGroup = JobGroup.ORDERS,
        retry_count: int = 0,
    ) -> SyncJob:
        job = SyncJob(
            job_type=job_type,
            group=group,
            payload=dict(payload),
            retry_count=retry_count,
            scheduled_at=self.now() + timedelta(seconds=delay_seconds),
        )
        with self._lock:
            self._pending.append(job)
        return job

    async def schedule_recurring(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        interval_seconds: float,
        group: JobGroup,
    ) -> str:
        schedule_id = recurring_schedule_id(job_type, group)
        with self._lock:
            if schedule_id not in self._recurring:
                self._recurring[schedule_id] = RecurringSchedule(
                    schedule_id=schedule_id,
                    job_type=job_type,
                    payload=dict(payload),
                    interval=timedelta(seconds=interval_seconds),
                    group=group,
                    next_run=self.now() + timedelta(seconds=interval_seconds),
                )
        return schedule_id

    async def has_scheduled(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> bool:
        with self._lock:
            jobs = self._pending + list(self._in_flight.values())
        return any(job.matches(job_type, payload_filter, group) for job in jobs)

    async def cancel_all(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> int:
        with self._lock:
            keep = [job for job in self._pending if not job.matches(job_type, payload_filter, group)]
            cancelled = len(self._pending) - len(keep)
            self._pending = keep
        return cancelled

    async def count_pending(self, group: JobGroup) -> int:
        with self._lock:
            return sum(1 for job in self._pending if job.group == group)

    # =========================================================================
    # Worker side
    # =========================================================================

    def claim_due(self, limit: Optional[int] = None) -> List[SyncJob]:
        """Hand out due jobs, oldest first, and mark them in flight.

        Recurring schedules that have come due are materialized first.
        """
        now = self.now()
        with self._lock:
            for schedule in self._recurring.values():
                if schedule.next_run <= now:
                    self._pending.append(SyncJob(
                        job_type=schedule.job_type,
                        group=schedule.group,
                        payload=dict(schedule.payload),
                        scheduled_at=schedule.next_run,
                    ))
                    while schedule.next_run <= now:
                        schedule.next_run += schedule.interval

            due = sorted((j for j in self._pending if j.scheduled_at <= now), key=lambda j: j.scheduled_at)
            if limit is not None:
                due = due[:limit]
            claimed = {job.id for job in due}
            self._pending = [j for j in self._pending if j.id not in claimed]
            for job in due:
                self._in_flight[job.id] = job
        return due

    def complete(self, job_id: str) -> None:
        """Release a claimed job."""
        with self._lock:
            self._in_flight.pop(job_id, None)

    def pending_jobs(self, group: Optional[JobGroup] = None) -> List[SyncJob]:
        with self._lock:
            return [j for j in self._pending if group is None or j.group == group]

    def next_due_at(self) -> Optional[datetime]:
        """Earliest time a pending or recurring job comes due."""
        with self._lock:
            times = [j.scheduled_at for j in self._pending]
            times.extend(s.next_run for s in self._recurring.values())
        return min(times) if times else None


def recurring_schedule_id(job_type: JobType, group: JobGroup) -> str:
    return f"{group.value}/{job_type.value}/recurring"


# Payload field identifying the logical unit of work for each job type.
# Job types without one (full stock sync) are keyed by type alone.
JOB_KEY_FIELDS: Dict[JobType, Optional[str]] = {
    JobType.ORDER_SYNC: "order_id",
    JobType.ORDER_CANCEL: "order_id",
    JobType.STOCK_PULL: "product_id",
    JobType.PRODUCT_SYNC: "product_id",
    JobType.FULL_STOCK_SYNC: None,
}


def job_key_filter(job_type: JobType, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Payload filter that matches other jobs for the same unit of work."""
    field = JOB_KEY_FIELDS.get(job_type)
    if field is None or field not in payload:
        return {}
    return {field: payload[field]}
