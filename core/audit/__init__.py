"""Core audit module - sync log tracking and persistence."""

from core.audit.events import (
    SyncLogger,
    SyncLogBackend,
    InMemorySyncLogBackend,
    SyncType,
    create_sync_log_entry,
)

__all__ = [
    "SyncLogger",
    "SyncLogBackend",
    "InMemorySyncLogBackend",
    "SyncType",
    "create_sync_log_entry",
]
