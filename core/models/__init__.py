"""Core data models - ERP-neutral types.

Storefront entities consumed by the sync engine, and the bookkeeping
records (jobs, mappings, dead letters, audit entries) it maintains.
"""

from core.models.store import (
    StoreAddress,
    StoreOrder,
    StoreOrderLine,
    StoreProduct,
)

from core.models.sync import (
    # Jobs
    JobType,
    JobGroup,
    SyncJob,
    DeadLetterEntry,
    DeadLetterResolution,

    # Mappings
    SyncStatus,
    OrderMapping,
    ProductMapping,
    CustomerMapping,

    # Audit
    SyncLogEntry,
    LogStatus,
    SyncDirection,
)

__all__ = [
    "StoreAddress",
    "StoreOrder",
    "StoreOrderLine",
    "StoreProduct",
    "JobType",
    "JobGroup",
    "SyncJob",
    "DeadLetterEntry",
    "DeadLetterResolution",
    "SyncStatus",
    "OrderMapping",
    "ProductMapping",
    "CustomerMapping",
    "SyncLogEntry",
    "LogStatus",
    "SyncDirection",
]
