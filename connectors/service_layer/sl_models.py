"""Service Layer value objects.

Normalized, ERP-neutral shapes produced by ``sl_parser``. Raw ERP payloads
never leave the connector package; handlers work with these models.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SLBaseModel(BaseModel):
    """Base model for normalized Service Layer records."""

    model_config = ConfigDict(populate_by_name=True)


class CollectionPage(SLBaseModel):
    """One page of an OData collection response."""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    count: Optional[int] = Field(None, description="Total count when $count was requested")
    next_link: Optional[str] = Field(None, description="Opaque next-page token")

    @property
    def has_more(self) -> bool:
        return bool(self.next_link)


class ErrorInfo(SLBaseModel):
    """Error code and message extracted from an ERP error body."""
    code: str = "UNKNOWN"
    message: str = "Unknown error occurred."


class WarehouseStock(SLBaseModel):
    """Stock position for a single warehouse."""
    in_stock: float = 0.0
    committed: float = 0.0
    available: float = 0.0


class ItemStock(SLBaseModel):
    """Item stock level with per-warehouse breakdown."""
    item_code: Optional[str] = None
    total: float = 0.0
    by_warehouse: Dict[str, WarehouseStock] = Field(default_factory=dict)


class DocumentLine(SLBaseModel):
    """A marketing document line."""
    line_num: int = 0
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    quantity: float = 0.0
    unit_price: float = 0.0
    line_total: float = 0.0
    warehouse: Optional[str] = None
    tax_code: Optional[str] = None


class ERPOrder(SLBaseModel):
    """A sales order document as returned by the ERP."""
    doc_entry: Optional[int] = None
    doc_num: Optional[int] = None
    doc_status: Optional[str] = None
    doc_date: Optional[str] = None
    doc_due_date: Optional[str] = None
    card_code: Optional[str] = None
    card_name: Optional[str] = None
    num_at_card: Optional[str] = None
    doc_total: float = 0.0
    doc_currency: Optional[str] = None
    comments: Optional[str] = None
    cancelled: bool = False
    lines: List[DocumentLine] = Field(default_factory=list)


class BusinessPartner(SLBaseModel):
    """A business partner (customer) record."""
    card_code: Optional[str] = None
    card_name: Optional[str] = None
    card_type: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    valid: bool = True
