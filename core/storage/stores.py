"""Persistence interfaces consumed by the sync engine.

- SettingsStore: key-value settings (get/set by key)
- MappingStore: order, product and customer mappings with upsert-by-unique-key
- DeadLetterStore: jobs that exhausted their retries

The audit log sink lives in ``core.audit.events``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from core.models.sync import (
    CustomerMapping,
    DeadLetterEntry,
    DeadLetterResolution,
    OrderMapping,
    ProductMapping,
)


class SettingsStore(ABC):
    """Key-value settings."""

    @abstractmethod
    def get_setting(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_setting(self, key: str, value: str) -> None:
        pass


class MappingStore(ABC):
    """Local entity to ERP identifier mappings.

    Unique keys: order (local_order_id), product (local_product_id and
    erp_item_code), customer (local_customer_id and email).
    """

    # Orders

    @abstractmethod
    def get_order_mapping(self, local_order_id: int) -> Optional[OrderMapping]:
        pass

    @abstractmethod
    def upsert_order_mapping(self, mapping: OrderMapping) -> OrderMapping:
        pass

    # Products

    @abstractmethod
    def get_product_mapping(self, local_product_id: int) -> Optional[ProductMapping]:
        pass

    @abstractmethod
    def get_product_mapping_by_item_code(self, erp_item_code: str) -> Optional[ProductMapping]:
        pass

    @abstractmethod
    def list_product_mappings(self, enabled_only: bool = True) -> List[ProductMapping]:
        pass

    @abstractmethod
    def upsert_product_mapping(self, mapping: ProductMapping) -> ProductMapping:
        """Insert or update by local_product_id.

        Raises:
            MappingConflictError: If the item code belongs to another product
        """
        pass

    @abstractmethod
    def delete_product_mapping(self, local_product_id: int) -> bool:
        pass

    # Customers

    @abstractmethod
    def get_customer_mapping(
        self,
        local_customer_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> Optional[CustomerMapping]:
        """Find by customer ID first, then by email."""
        pass

    @abstractmethod
    def upsert_customer_mapping(self, mapping: CustomerMapping) -> CustomerMapping:
        pass


class DeadLetterStore(ABC):
    """Dead-letter table for exhausted jobs."""

    @abstractmethod
    def add_dead_letter(self, entry: DeadLetterEntry) -> int:
        """Insert an entry and return its ID."""
        pass

    @abstractmethod
    def get_dead_letter(self, entry_id: int) -> Optional[DeadLetterEntry]:
        pass

    @abstractmethod
    def list_unresolved(self, limit: int = 50) -> List[DeadLetterEntry]:
        """Unresolved entries, newest first."""
        pass

    @abstractmethod
    def mark_resolved(self, entry_id: int, resolution: DeadLetterResolution) -> bool:
        """Resolve an unresolved entry. Returns False if already resolved or missing."""
        pass


class MappingConflictError(Exception):
    """A mapping would violate a uniqueness invariant."""
    pass
