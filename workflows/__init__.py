"""Workflow definitions module."""

from workflows.sync_job_workflow import TASK_QUEUE_SYNC, SyncJobWorkflow

__all__ = ["SyncJobWorkflow", "TASK_QUEUE_SYNC"]
