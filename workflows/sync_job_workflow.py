"""Sync job workflow.

One workflow execution per scheduled SyncJob. Delayed jobs are started with
``start_delay``; recurring jobs are started by a Temporal Schedule. The
workflow runs the job exactly once: job-level retries are scheduled by the
queue manager as new executions, so Temporal's own activity retries are off.
"""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync_jobs import SyncJobActivities


TASK_QUEUE_SYNC = "erp-sync"

JOB_TIMEOUT = timedelta(minutes=30)


@workflow.defn
class SyncJobWorkflow:
    """Run a single sync job through the job runner activity."""

    @workflow.run
    async def run(self, job: dict) -> dict:
        """Execute the job.

        Args:
            job: Serialized SyncJob

        Returns:
            Serialized JobResult
        """
        workflow.logger.info(
            f"Sync job {job.get('job_type')} {job.get('payload')} "
            f"(retry {job.get('retry_count', 0)})"
        )

        result = await workflow.execute_activity_method(
            SyncJobActivities.run_sync_job,
            job,
            start_to_close_timeout=JOB_TIMEOUT,
            retry_policy=RetryPolicy(maximum_attempts=1),
        )

        workflow.logger.info(f"Sync job finished with status {result.get('status')}")
        return result
