"""Sync bookkeeping models: jobs, dead letters, mappings and log entries."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class JobType(str, Enum):
    """Kinds of sync job."""
    ORDER_SYNC = "order-sync"
    ORDER_CANCEL = "order-cancel"
    STOCK_PULL = "stock-pull"
    FULL_STOCK_SYNC = "full-stock-sync"
    PRODUCT_SYNC = "product-sync"


class JobGroup(str, Enum):
    """Scheduler groups, one per concern."""
    ORDERS = "erp-sync-orders"
    STOCK = "erp-sync-stock"
    PRODUCTS = "erp-sync-products"


class SyncStatus(str, Enum):
    """Sync state recorded on mapping rows."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class SyncDirection(str, Enum):
    TO_ERP = "store_to_erp"
    FROM_ERP = "erp_to_store"


class LogStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DeadLetterResolution(str, Enum):
    RETRIED = "retried"
    DISCARDED = "discarded"


# =============================================================================
# Jobs
# =============================================================================

class SyncJob(BaseModel):
    """A unit of sync work handed to the scheduler.

    Attributes:
        id: Unique job instance ID
        job_type: What to run
        group: Scheduler group
        payload: Opaque arguments for the handler (e.g. ``{"order_id": 1042}``)
        retry_count: Failures so far
        scheduled_at: When the job becomes due
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    job_type: JobType
    group: JobGroup
    payload: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    scheduled_at: datetime = Field(default_factory=datetime.utcnow)

    def matches(self, job_type: JobType, payload_filter: Dict[str, Any], group: Optional[JobGroup] = None) -> bool:
        """True if this job has the given type, group and payload values."""
        if self.job_type != job_type:
            return False
        if group is not None and self.group != group:
            return False
        return all(self.payload.get(k) == v for k, v in payload_filter.items())


class DeadLetterEntry(BaseModel):
    """A job that exhausted its retries, awaiting manual resolution."""
    id: Optional[int] = None
    job_type: JobType
    group: JobGroup
    payload: Dict[str, Any] = Field(default_factory=dict)
    error_message: str = ""
    attempts: int = 0
    max_attempts: int = 5
    failed_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
    resolution: Optional[DeadLetterResolution] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


# =============================================================================
# Mappings
# =============================================================================

class OrderMapping(BaseModel):
    """Link between a storefront order and its ERP sales order."""
    local_order_id: int
    erp_doc_entry: Optional[int] = None
    erp_doc_num: Optional[int] = None
    doc_type: str = "Orders"
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_attempts: int = 0
    last_error: Optional[str] = None
    synced_at: Optional[datetime] = None

    @property
    def is_synced(self) -> bool:
        return self.erp_doc_entry is not None


class ProductMapping(BaseModel):
    """Link between a storefront product and an ERP item code."""
    local_product_id: int
    erp_item_code: str
    sync_enabled: bool = True
    last_synced_at: Optional[datetime] = None
    last_known_stock: Optional[float] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    error_message: Optional[str] = None


class CustomerMapping(BaseModel):
    """Link between a storefront customer (or guest email) and a business partner."""
    local_customer_id: Optional[int] = None
    email: Optional[str] = None
    erp_card_code: str
    card_name: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.SYNCED


# =============================================================================
# Audit
# =============================================================================

class SyncLogEntry(BaseModel):
    """Append-only audit record of a sync operation."""
    id: Optional[int] = None
    sync_type: str
    local_id: Optional[int] = None
    erp_id: Optional[str] = None
    status: LogStatus
    direction: SyncDirection = SyncDirection.TO_ERP
    message: str = ""
    request_snapshot: Optional[Dict[str, Any]] = None
    response_snapshot: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
