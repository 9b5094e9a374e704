"""Core storage - persistence interfaces and the SQLite reference store."""

from core.storage.stores import (
    SettingsStore,
    MappingStore,
    DeadLetterStore,
    MappingConflictError,
)
from core.storage.sqlite_store import SQLiteSyncStore

__all__ = [
    "SettingsStore",
    "MappingStore",
    "DeadLetterStore",
    "MappingConflictError",
    "SQLiteSyncStore",
]
