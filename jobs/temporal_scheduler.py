"""Temporal-backed job scheduler.

Each scheduled job is one ``SyncJobWorkflow`` execution whose workflow ID
encodes the job's identity::

    {group}/{job_type}/{key_field}={key}/{job_id}      e.g. erp-sync-orders/order-sync/order_id=1042/3f2a...
    {group}/{job_type}/all/{job_id}                     jobs without a key field

``has_scheduled``, ``cancel_all`` and ``count_pending`` are visibility
queries over running executions by workflow ID prefix, so payload filters
are matched on the job's key field only.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleIntervalSpec,
    ScheduleOverlapPolicy,
    SchedulePolicy,
    ScheduleSpec,
)

from core.models.sync import JobGroup, JobType, SyncJob
from jobs.scheduler import JOB_KEY_FIELDS, JobScheduler, recurring_schedule_id
from workflows.sync_job_workflow import TASK_QUEUE_SYNC, SyncJobWorkflow

logger = logging.getLogger(__name__)

DEFAULT_GROUPS: Dict[JobType, JobGroup] = {
    JobType.ORDER_SYNC: JobGroup.ORDERS,
    JobType.ORDER_CANCEL: JobGroup.ORDERS,
    JobType.STOCK_PULL: JobGroup.STOCK,
    JobType.FULL_STOCK_SYNC: JobGroup.STOCK,
    JobType.PRODUCT_SYNC: JobGroup.PRODUCTS,
}


def key_segment(job_type: JobType, payload: Dict[str, Any]) -> Optional[str]:
    field = JOB_KEY_FIELDS.get(job_type)
    if field is None:
        return "all"
    if field not in payload:
        return None
    return f"{field}={payload[field]}"


def job_workflow_id(job: SyncJob) -> str:
    key = key_segment(job.job_type, job.payload) or "all"
    return f"{job.group.value}/{job.job_type.value}/{key}/{job.id}"


def workflow_id_prefix(
    job_type: JobType,
    payload_filter: Dict[str, Any],
    group: Optional[JobGroup] = None,
) -> str:
    group = group or DEFAULT_GROUPS[job_type]
    prefix = f"{group.value}/{job_type.value}/"
    key = key_segment(job_type, payload_filter)
    if key is not None and (key != "all" or not payload_filter):
        prefix += f"{key}/"
    return prefix


def running_query(prefix: str) -> str:
    return (
        f'WorkflowType = "{SyncJobWorkflow.__name__}" '
        f'AND ExecutionStatus = "Running" '
        f'AND WorkflowId STARTS_WITH "{prefix}"'
    )


class TemporalJobScheduler(JobScheduler):
    """Schedule sync jobs as Temporal workflow executions.

    Usage:
        client = await get_temporal_client()
        scheduler = TemporalJobScheduler(client)
    """

    def __init__(self, client: Client, task_queue: str = TASK_QUEUE_SYNC):
        self.client = client
        self.task_queue = task_queue

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
            scheduled_at=datetime.utcnow() + timedelta(seconds=delay_seconds),
        )
        workflow_id = job_workflow_id(job)
        await self.client.start_workflow(
            SyncJobWorkflow.run,
            job.model_dump(mode="json"),
            id=workflow_id,
            task_queue=self.task_queue,
            start_delay=timedelta(seconds=delay_seconds) if delay_seconds > 0 else None,
        )
        logger.debug(f"Started workflow {workflow_id} (delay {delay_seconds}s)")
        return job

    async def schedule_recurring(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        interval_seconds: float,
        group: JobGroup,
    ) -> str:
        schedule_id = recurring_schedule_id(job_type, group)
        job = SyncJob(job_type=job_type, group=group, payload=dict(payload))
        key = key_segment(job_type, payload) or "all"
        try:
            await self.client.create_schedule(
                schedule_id,
                Schedule(
                    action=ScheduleActionStartWorkflow(
                        SyncJobWorkflow.run,
                        job.model_dump(mode="json"),
                        id=f"{group.value}/{job_type.value}/{key}/scheduled",
                        task_queue=self.task_queue,
                    ),
                    spec=ScheduleSpec(
                        intervals=[ScheduleIntervalSpec(every=timedelta(seconds=interval_seconds))],
                    ),
                    policy=SchedulePolicy(overlap=ScheduleOverlapPolicy.SKIP),
                ),
            )
            logger.info(f"Created schedule {schedule_id} every {interval_seconds}s")
        except ScheduleAlreadyRunningError:
            logger.info(f"Schedule {schedule_id} already exists")
        return schedule_id

    async def has_scheduled(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> bool:
        query = running_query(workflow_id_prefix(job_type, payload_filter, group))
        async for _ in self.client.list_workflows(query, limit=1):
            return True
        return False

    async def cancel_all(
        self,
        job_type: JobType,
        payload_filter: Dict[str, Any],
        group: Optional[JobGroup] = None,
    ) -> int:
        query = running_query(workflow_id_prefix(job_type, payload_filter, group))
        cancelled = 0
        async for execution in self.client.list_workflows(query):
            await self.client.get_workflow_handle(execution.id, run_id=execution.run_id).cancel()
            cancelled += 1
        return cancelled

    async def count_pending(self, group: JobGroup) -> int:
        result = await self.client.count_workflows(running_query(f"{group.value}/"))
        return result.count
