"""Activity definitions module."""

from activities.sync_jobs import SyncJobActivities

__all__ = ["SyncJobActivities"]
