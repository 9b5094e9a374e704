"""Storefront accessor contract.

The sync engine never owns the storefront's order or product lifecycle. It
reads orders and products and writes back ERP references, order notes and
stock levels through this interface. The storefront integration layer
provides the concrete implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from core.models.store import StoreOrder, StoreProduct


class StorefrontGateway(ABC):
    """Read/write accessors the sync handlers need from the storefront."""

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[StoreOrder]:
        """Load an order with its lines, addresses and ERP references."""
        pass

    @abstractmethod
    async def save_erp_reference(
        self,
        order_id: int,
        doc_entry: int,
        doc_num: Optional[int],
        synced_at: datetime,
    ) -> None:
        """Record the ERP document on the order."""
        pass

    @abstractmethod
    async def add_order_note(self, order_id: int, note: str) -> None:
        """Append a human-readable note to the order."""
        pass

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[StoreProduct]:
        pass

    @abstractmethod
    async def update_product_stock(
        self,
        product_id: int,
        quantity: float,
        status: str,
        manage_stock: bool = True,
    ) -> None:
        """Write a stock level and stock status to the product."""
        pass


class InMemoryStorefront(StorefrontGateway):
    """Dictionary-backed storefront for local runs and tests."""

    def __init__(
        self,
        orders: Optional[List[StoreOrder]] = None,
        products: Optional[List[StoreProduct]] = None,
    ):
        self.orders: Dict[int, StoreOrder] = {o.id: o for o in orders or []}
        self.products: Dict[int, StoreProduct] = {p.id: p for p in products or []}
        self.notes: Dict[int, List[str]] = {}
        self.stock_writes: List[int] = []

    def add_order(self, order: StoreOrder) -> None:
        self.orders[order.id] = order

    def add_product(self, product: StoreProduct) -> None:
        self.products[product.id] = product

    async def get_order(self, order_id: int) -> Optional[StoreOrder]:
        return self.orders.get(order_id)

    async def save_erp_reference(
        self,
        order_id: int,
        doc_entry: int,
        doc_num: Optional[int],
        synced_at: datetime,
    ) -> None:
        order = self.orders[order_id]
        self.orders[order_id] = order.model_copy(update={
            "erp_doc_entry": doc_entry,
            "erp_doc_num": doc_num,
            "erp_synced_at": synced_at,
        })

    async def add_order_note(self, order_id: int, note: str) -> None:
        self.notes.setdefault(order_id, []).append(note)

    async def get_product(self, product_id: int) -> Optional[StoreProduct]:
        return self.products.get(product_id)

    async def update_product_stock(
        self,
        product_id: int,
        quantity: float,
        status: str,
        manage_stock: bool = True,
    ) -> None:
        product = self.products[product_id]
        self.products[product_id] = product.model_copy(update={
            "stock_quantity": quantity,
            "stock_status": status,
            "manage_stock": manage_stock,
        })
        self.stock_writes.append(product_id)
