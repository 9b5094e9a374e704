"""Sync audit log.

Append-only record of every sync operation with request/response snapshots
for diagnosis. Entries are never modified; old entries can be pruned by age.
Supports multiple persistence backends.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from core.models.sync import LogStatus, SyncDirection, SyncLogEntry
from core.observability.logging import mask_sensitive

logger = logging.getLogger(__name__)


class SyncType(str, Enum):
    """Audit categories."""
    ORDER = "order"
    CUSTOMER = "customer"
    STOCK = "stock"
    PRODUCT = "product"
    QUEUE = "queue"


def create_sync_log_entry(
    sync_type: SyncType,
    status: LogStatus,
    message: str,
    local_id: Optional[int] = None,
    erp_id: Optional[Any] = None,
    direction: SyncDirection = SyncDirection.TO_ERP,
    request: Optional[Dict[str, Any]] = None,
    response: Optional[Dict[str, Any]] = None,
) -> SyncLogEntry:
    """Create a log entry with a timestamp and masked snapshots.

    Args:
        sync_type: Category of the operation
        status: Outcome
        message: Human-readable message
        local_id: Storefront entity ID
        erp_id: ERP identifier (document entry, card code, item code)
        direction: Which way data flowed
        request: Request payload snapshot
        response: Response payload snapshot

    Returns:
        SyncLogEntry ready for a backend
    """
    return SyncLogEntry(
        sync_type=sync_type.value,
        local_id=local_id,
        erp_id=str(erp_id) if erp_id is not None else None,
        status=status,
        direction=direction,
        message=message,
        request_snapshot=mask_sensitive(request) if request else None,
        response_snapshot=mask_sensitive(response) if response else None,
        created_at=datetime.utcnow(),
    )


class SyncLogBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def append(self, entry: SyncLogEntry) -> int:
        """Persist an entry and return its ID."""
        pass

    @abstractmethod
    def query(
        self,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
        local_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        """Query entries, newest first."""
        pass

    @abstractmethod
    def prune(self, older_than: datetime) -> int:
        """Delete entries created before ``older_than``. Returns the count."""
        pass


class InMemorySyncLogBackend(SyncLogBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._entries: List[SyncLogEntry] = []

    def append(self, entry: SyncLogEntry) -> int:
        entry = entry.model_copy(update={"id": len(self._entries) + 1})
        self._entries.append(entry)
        return entry.id

    def query(
        self,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
        local_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        results = []
        for entry in reversed(self._entries):
            if sync_type and entry.sync_type != sync_type:
                continue
            if status and entry.status.value != status:
                continue
            if local_id is not None and entry.local_id != local_id:
                continue
            if since and entry.created_at < since:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results

    def prune(self, older_than: datetime) -> int:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.created_at >= older_than]
        return before - len(self._entries)


class SyncLogger:
    """Audit logger that writes to every registered backend.

    Usage:
        audit = SyncLogger([SQLiteSyncStore(db_path)])
        audit.success(SyncType.ORDER, "Order synced", local_id=1042, erp_id=881)
    """

    def __init__(self, backends: Optional[List[SyncLogBackend]] = None):
        self._backends: List[SyncLogBackend] = list(backends or [])

    def add_backend(self, backend: SyncLogBackend) -> None:
        self._backends.append(backend)

    def log(self, entry: SyncLogEntry) -> None:
        """Append the entry to all backends."""
        for backend in self._backends:
            try:
                backend.append(entry)
            except Exception as e:
                # Audit failures must not break a sync
                logger.warning(f"Audit logging failed for backend {type(backend).__name__}: {e}")

    def success(self, sync_type: SyncType, message: str, **kwargs) -> None:
        self.log(create_sync_log_entry(sync_type, LogStatus.SUCCESS, message, **kwargs))

    def error(self, sync_type: SyncType, message: str, **kwargs) -> None:
        self.log(create_sync_log_entry(sync_type, LogStatus.ERROR, message, **kwargs))

    def warning(self, sync_type: SyncType, message: str, **kwargs) -> None:
        self.log(create_sync_log_entry(sync_type, LogStatus.WARNING, message, **kwargs))

    def info(self, sync_type: SyncType, message: str, **kwargs) -> None:
        self.log(create_sync_log_entry(sync_type, LogStatus.INFO, message, **kwargs))

    def query(self, **filters) -> List[SyncLogEntry]:
        """Query the first backend."""
        if not self._backends:
            return []
        return self._backends[0].query(**filters)

    def prune(self, retention_days: int) -> int:
        """Apply the age-based retention policy to every backend."""
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        removed = 0
        for backend in self._backends:
            removed += backend.prune(cutoff)
        if removed:
            logger.info(f"Pruned {removed} audit entries older than {retention_days} days")
        return removed
