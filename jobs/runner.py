"""Job runner: executes one SyncJob against its sync handler.

Shared by the local polling worker and the Temporal activity. The runner
never lets a job failure escape: it records metrics and logs, then asks the
queue manager to reschedule the job with backoff or dead-letter it.
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from connectors.errors import ERPError, ErrorKind
from core.models.sync import JobType, SyncJob
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import SyncMetrics
from jobs.manager import QueueManager
from sync.order_sync import OrderSync
from sync.stock_sync import StockSync, StockSyncResult

logger = get_logger(__name__)

STATUS_SUCCEEDED = "succeeded"
STATUS_RETRYING = "retrying"
STATUS_DEAD_LETTERED = "dead_lettered"


@dataclass
class JobResult:
    """Outcome of one job execution."""
    job_id: str
    job_type: str
    status: str
    result: Any = None
    error: Optional[str] = None
    retry_job_id: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobRunner:
    """Dispatch jobs to handlers and route failures.

    Usage:
        runner = JobRunner(queue, order_sync, stock_sync, metrics)
        outcome = await runner.run(job)
    """

    def __init__(
        self,
        queue: QueueManager,
        order_sync: OrderSync,
        stock_sync: StockSync,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.queue = queue
        self.order_sync = order_sync
        self.stock_sync = stock_sync
        self.metrics = metrics or SyncMetrics()
        self._handlers: Dict[JobType, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            JobType.ORDER_SYNC: lambda p: self.order_sync.sync_order(int(p["order_id"])),
            JobType.ORDER_CANCEL: lambda p: self.order_sync.cancel_order_in_erp(int(p["order_id"])),
            JobType.STOCK_PULL: lambda p: self.stock_sync.sync_product_stock(int(p["product_id"])),
            JobType.PRODUCT_SYNC: lambda p: self.stock_sync.sync_product(int(p["product_id"])),
            JobType.FULL_STOCK_SYNC: lambda p: self.stock_sync.sync_all_stock(),
        }

    async def run(self, job: SyncJob) -> JobResult:
        job_type = job.job_type.value
        with with_correlation(
            job_id=job.id,
            job_type=job_type,
            order_id=job.payload.get("order_id"),
            product_id=job.payload.get("product_id"),
            attempt=job.retry_count + 1,
        ):
            self.metrics.record_job_started(job_type)
            start = time.perf_counter()
            logger.info(f"Running {job_type} job {job.id} (attempt {job.retry_count + 1})")

            try:
                result = await self._handlers[job.job_type](job.payload)
            except ERPError as e:
                duration_ms = (time.perf_counter() - start) * 1000
                self.metrics.record_job_failed(job_type, duration_ms)
                logger.warning(f"{job_type} job {job.id} failed: [{e.kind.value}/{e.code}] {e.message}")
                return await self._route_failure(job, e.message, e.kind == ErrorKind.VALIDATION, duration_ms)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                self.metrics.record_job_failed(job_type, duration_ms)
                logger.exception(f"{job_type} job {job.id} raised unexpectedly: {e}")
                return await self._route_failure(job, f"{type(e).__name__}: {e}", False, duration_ms)

            duration_ms = (time.perf_counter() - start) * 1000
            self.metrics.record_job_succeeded(job_type, duration_ms)
            if isinstance(result, StockSyncResult):
                result = result.to_dict()
            logger.info(f"{job_type} job {job.id} completed in {duration_ms:.0f}ms")
            return JobResult(
                job_id=job.id,
                job_type=job_type,
                status=STATUS_SUCCEEDED,
                result=result,
                duration_ms=duration_ms,
            )

    async def _route_failure(
        self,
        job: SyncJob,
        message: str,
        fatal: bool,
        duration_ms: float,
    ) -> JobResult:
        if fatal:
            await self.queue.add_to_dead_letter(job, message, attempts=job.retry_count + 1)
            retry = None
        else:
            retry = await self.queue.reschedule_with_backoff(job, message)

        return JobResult(
            job_id=job.id,
            job_type=job.job_type.value,
            status=STATUS_RETRYING if retry else STATUS_DEAD_LETTERED,
            error=message,
            retry_job_id=retry.id if retry else None,
            duration_ms=duration_ms,
        )
