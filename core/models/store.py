"""Storefront domain models - ERP-neutral.

These models describe what the sync engine reads from the storefront: orders,
their line items and addresses, and products. The storefront integration
layer builds them from its own entities; the engine never touches the
storefront's lifecycle directly.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (storefronts frequently hand amounts over as strings)
# =============================================================================

def _parse_amount(value):
    """Parse a monetary amount or quantity into a float."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s == "":
            return 0.0
        return float(s)
    return value


Amount = Annotated[float, BeforeValidator(_parse_amount)]


class StoreBase(BaseModel):
    """Base model for storefront entities."""

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Products
# =============================================================================

class StoreProduct(StoreBase):
    """A storefront product as seen by stock sync."""
    id: int
    sku: Optional[str] = None
    name: str = ""
    manage_stock: bool = False
    stock_quantity: Optional[float] = None
    stock_status: str = "instock"


# =============================================================================
# Orders
# =============================================================================

ADDRESS_FIELDS = ("address_1", "address_2", "city", "state", "postcode", "country")


class StoreAddress(StoreBase):
    """Billing or shipping address."""
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f) for f in ADDRESS_FIELDS)

    def same_location(self, other: "StoreAddress") -> bool:
        return all(getattr(self, f) == getattr(other, f) for f in ADDRESS_FIELDS)


class StoreOrderLine(StoreBase):
    """An order line item.

    ``product`` is None when the product was deleted after the order was placed.
    ``subtotal`` is the pre-discount line amount, ``total`` the charged amount.
    """
    item_id: int = 0
    name: str = ""
    product: Optional[StoreProduct] = None
    quantity: Amount = 0.0
    subtotal: Amount = 0.0
    total: Amount = 0.0
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def sku(self) -> Optional[str]:
        return self.product.sku if self.product else None


class StoreOrder(StoreBase):
    """A storefront order plus any ERP references already recorded on it."""
    id: int
    number: Optional[str] = None
    status: str = "pending"
    customer_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    currency: str = ""

    billing: StoreAddress = Field(default_factory=StoreAddress)
    shipping: Optional[StoreAddress] = None

    customer_note: str = ""
    payment_method: str = ""
    payment_method_title: str = ""
    shipping_total: Amount = 0.0
    shipping_method: str = ""

    lines: List[StoreOrderLine] = Field(default_factory=list)

    # ERP references written back after a successful sync
    erp_doc_entry: Optional[int] = None
    erp_doc_num: Optional[int] = None
    erp_synced_at: Optional[datetime] = None

    @property
    def order_number(self) -> str:
        return self.number or str(self.id)

    @property
    def email(self) -> Optional[str]:
        return self.billing.email or None

    @property
    def phone(self) -> Optional[str]:
        return self.billing.phone or None

    @property
    def is_synced(self) -> bool:
        return self.erp_doc_entry is not None

    def has_distinct_shipping(self) -> bool:
        """True if a shipping address exists and differs from billing."""
        if self.shipping is None or self.shipping.is_empty:
            return False
        return not self.shipping.same_location(self.billing)
