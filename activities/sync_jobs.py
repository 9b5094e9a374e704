"""Sync job activity.

Activities are bound to a ``JobRunner`` built at worker start-up, so the
handlers, client session and stores are shared across activity calls.
"""

from temporalio import activity

from core.models.sync import SyncJob
from core.observability.logging import with_correlation
from jobs.runner import JobRunner


class SyncJobActivities:
    """Activity implementations for the sync worker.

    Usage:
        activities = SyncJobActivities(engine.runner)
        Worker(client, task_queue=..., activities=[activities.run_sync_job])
    """

    def __init__(self, runner: JobRunner):
        self.runner = runner

    @activity.defn(name="run_sync_job")
    async def run_sync_job(self, job: dict) -> dict:
        """Run one job. Failures are routed by the runner, never raised.

        Args:
            job: Serialized SyncJob

        Returns:
            Serialized JobResult
        """
        sync_job = SyncJob.model_validate(job)
        info = activity.info()
        with with_correlation(workflow_id=info.workflow_id):
            result = await self.runner.run(sync_job)
        return result.to_dict()
