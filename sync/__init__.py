"""Sync handlers - one sync unit each, orchestrating mappers, client and mappings."""

from sync.customer_sync import CustomerSync
from sync.order_sync import OrderSync
from sync.stock_sync import StockSync, StockSyncResult
from sync.validation import validate_order

__all__ = [
    "CustomerSync",
    "OrderSync",
    "StockSync",
    "StockSyncResult",
    "validate_order",
]
