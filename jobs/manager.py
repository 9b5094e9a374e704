"""Queue manager: scheduling, job-level backoff and dead-lettering.

Job-level retry policy (on top of the client's own per-request retries):

    failure n (n = 1..4)  ->  rescheduled after 2^n minutes (2, 4, 8, 16)
    failure 5             ->  dead letter with attempts = 5

Validation failures skip the backoff and are dead-lettered at once. A dead
letter can be re-submitted by an operator, which re-enqueues the job with a
zero retry count and bumps ``dead_letter_cycles`` in its payload.
"""

from typing import Any, Dict, List, Optional

from core.audit.events import SyncLogger, SyncType
from core.config import SyncSettings
from core.models.sync import DeadLetterEntry, DeadLetterResolution, JobGroup, JobType, SyncJob
from core.observability.logging import get_logger
from core.observability.metrics import SyncMetrics
from core.storage.stores import DeadLetterStore
from jobs.scheduler import JobScheduler, job_key_filter

logger = get_logger(__name__)

BACKOFF_BASE_MINUTES = 2
DEAD_LETTER_CYCLES_KEY = "dead_letter_cycles"


def backoff_delay_seconds(retry_count: int) -> int:
    """Delay before running a job for the ``retry_count``-th time."""
    return (BACKOFF_BASE_MINUTES ** retry_count) * 60


class QueueManager:
    """Schedules sync jobs and routes failures.

    Usage:
        queue = QueueManager(scheduler, store, settings)
        await queue.queue_order_sync(1042)
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        dead_letters: DeadLetterStore,
        settings: SyncSettings,
        audit: Optional[SyncLogger] = None,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.scheduler = scheduler
        self.dead_letters = dead_letters
        self.settings = settings
        self.audit = audit or SyncLogger()
        self.metrics = metrics

    @property
    def max_retries(self) -> int:
        return self.settings.max_job_retries

    async def _schedule_unique(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        group: JobGroup,
        delay_seconds: float = 0,
    ) -> Optional[SyncJob]:
        """Schedule unless a job for the same unit of work is pending or running."""
        key = job_key_filter(job_type, payload)
        if await self.scheduler.has_scheduled(job_type, key, group):
            logger.debug(f"{job_type.value} already scheduled for {key or 'all'}, not queuing again")
            return None
        return await self.scheduler.schedule_once(job_type, payload, delay_seconds, group)

    # =========================================================================
    # Enqueue
    # =========================================================================

    async def queue_order_sync(self, order_id: int, delay_seconds: float = 0) -> Optional[SyncJob]:
        """Queue an order for ERP sync. Returns None if one is already queued."""
        job = await self._schedule_unique(JobType.ORDER_SYNC, {"order_id": order_id}, JobGroup.ORDERS, delay_seconds)
        if job:
            logger.info(f"Order {order_id} queued for ERP sync (job {job.id}, delay {delay_seconds}s)")
        return job

    async def queue_order_cancel(self, order_id: int) -> Optional[SyncJob]:
        job = await self._schedule_unique(JobType.ORDER_CANCEL, {"order_id": order_id}, JobGroup.ORDERS)
        if job:
            logger.info(f"Order {order_id} queued for ERP cancellation (job {job.id})")
        return job

    async def queue_stock_pull(self, product_id: int, delay_seconds: float = 0) -> Optional[SyncJob]:
        job = await self._schedule_unique(JobType.STOCK_PULL, {"product_id": product_id}, JobGroup.STOCK, delay_seconds)
        if job:
            logger.debug(f"Stock pull queued for product {product_id} (job {job.id})")
        return job

    async def queue_full_stock_sync(self) -> Optional[SyncJob]:
        job = await self._schedule_unique(JobType.FULL_STOCK_SYNC, {}, JobGroup.STOCK)
        if job:
            logger.info(f"Full stock sync queued (job {job.id})")
        return job

    async def queue_product_sync(self, product_id: int) -> Optional[SyncJob]:
        job = await self._schedule_unique(JobType.PRODUCT_SYNC, {"product_id": product_id}, JobGroup.PRODUCTS)
        if job:
            logger.debug(f"Product sync queued for product {product_id} (job {job.id})")
        return job

    async def schedule_recurring_stock_sync(self) -> str:
        """Register the periodic full stock sync at the configured interval."""
        interval = self.settings.stock_sync_interval * 60
        schedule_id = await self.scheduler.schedule_recurring(
            JobType.FULL_STOCK_SYNC, {}, interval, JobGroup.STOCK
        )
        logger.info(f"Recurring stock sync every {self.settings.stock_sync_interval} min ({schedule_id})")
        return schedule_id

    # =========================================================================
    # Failure routing
    # =========================================================================

    async def reschedule_with_backoff(self, job: SyncJob, error_message: str) -> Optional[SyncJob]:
        """Schedule the next attempt of a failed job, or dead-letter it.

        The retry bypasses the duplicate guard: the failed job still counts
        as running until its worker releases it.

        Returns:
            The rescheduled job, or None if the job was dead-lettered
        """
        attempts = job.retry_count + 1
        if attempts >= self.max_retries:
            logger.error(
                f"Job {job.job_type.value} {job.payload} failed {attempts} times, moving to dead letter"
            )
            await self.add_to_dead_letter(job, error_message, attempts=attempts)
            return None

        delay = backoff_delay_seconds(attempts)
        retry = await self.scheduler.schedule_once(
            job.job_type,
            job.payload,
            delay,
            job.group,
            retry_count=attempts,
        )
        if self.metrics:
            self.metrics.record_job_retried(job.job_type.value)
        logger.warning(
            f"Job {job.job_type.value} {job.payload} rescheduled in {delay // 60} min "
            f"(retry {attempts}/{self.max_retries - 1}): {error_message}"
        )
        return retry

    async def add_to_dead_letter(
        self,
        job: SyncJob,
        error_message: str,
        attempts: Optional[int] = None,
    ) -> int:
        """Record an exhausted job for manual resolution.

        Returns:
            Dead letter entry ID
        """
        entry = DeadLetterEntry(
            job_type=job.job_type,
            group=job.group,
            payload=dict(job.payload),
            error_message=error_message,
            attempts=attempts if attempts is not None else job.retry_count + 1,
            max_attempts=self.max_retries,
        )
        entry_id = self.dead_letters.add_dead_letter(entry)
        if self.metrics:
            self.metrics.record_job_dead_lettered(job.job_type.value)
        self.audit.error(
            SyncType.QUEUE,
            f"Job {job.job_type.value} dead-lettered after {entry.attempts} attempts: {error_message}",
            local_id=_local_id(job.payload),
            request=job.payload,
        )
        return entry_id

    # =========================================================================
    # Dead letter resolution
    # =========================================================================

    async def retry_dead_letter(self, entry_id: int) -> Optional[SyncJob]:
        """Re-enqueue a dead-lettered job with its retry count reset.

        Returns:
            The new job, or None if the entry is missing or already resolved
        """
        entry = self.dead_letters.get_dead_letter(entry_id)
        if entry is None or entry.is_resolved:
            return None

        payload = dict(entry.payload)
        payload[DEAD_LETTER_CYCLES_KEY] = int(payload.get(DEAD_LETTER_CYCLES_KEY, 0)) + 1

        job = await self.scheduler.schedule_once(entry.job_type, payload, 0, entry.group, retry_count=0)
        self.dead_letters.mark_resolved(entry_id, DeadLetterResolution.RETRIED)
        self.audit.info(
            SyncType.QUEUE,
            f"Dead letter #{entry_id} re-submitted (cycle {payload[DEAD_LETTER_CYCLES_KEY]})",
            local_id=_local_id(payload),
        )
        logger.info(f"Dead letter {entry_id} ({entry.job_type.value}) re-submitted as job {job.id}")
        return job

    async def discard_dead_letter(self, entry_id: int) -> bool:
        discarded = self.dead_letters.mark_resolved(entry_id, DeadLetterResolution.DISCARDED)
        if discarded:
            logger.info(f"Dead letter {entry_id} discarded")
        return discarded

    def get_failed_jobs(self, limit: int = 50) -> List[DeadLetterEntry]:
        return self.dead_letters.list_unresolved(limit)

    # =========================================================================
    # Queries
    # =========================================================================

    async def is_order_scheduled(self, order_id: int) -> bool:
        return await self.scheduler.has_scheduled(JobType.ORDER_SYNC, {"order_id": order_id}, JobGroup.ORDERS)

    async def cancel_order_sync(self, order_id: int) -> int:
        """Remove pending sync jobs for an order. A running sync is not interrupted."""
        cancelled = await self.scheduler.cancel_all(JobType.ORDER_SYNC, {"order_id": order_id}, JobGroup.ORDERS)
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending ERP sync jobs for order {order_id}")
        return cancelled

    async def get_pending_count(self, group: JobGroup) -> int:
        return await self.scheduler.count_pending(group)


def _local_id(payload: Dict[str, Any]) -> Optional[int]:
    return payload.get("order_id") or payload.get("product_id")
