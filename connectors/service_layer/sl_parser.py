"""Service Layer response normalizer.

Pure functions mapping raw ERP payloads onto the value objects in
``sl_models``. Both OData metadata spellings are accepted: the v3 form
(``odata.count``) is checked before the v4 form (``@odata.count``).
"""

from typing import Any, Dict, List, Optional

from connectors.service_layer.sl_models import (
    BusinessPartner,
    CollectionPage,
    DocumentLine,
    ERPOrder,
    ErrorInfo,
    ItemStock,
    WarehouseStock,
)


METADATA_KEYS = (
    "odata.metadata",
    "odata.etag",
    "@odata.context",
    "@odata.etag",
)

TRUTHY_TOKENS = frozenset({"TYES", "Y", "YES", "1", "TRUE"})


def _first_present(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Generic responses
# =============================================================================

def parse_collection(raw: Dict[str, Any]) -> CollectionPage:
    """Extract the items array and optional pagination metadata."""
    count = _first_present(raw, "odata.count", "@odata.count")
    return CollectionPage(
        items=list(raw.get("value") or []),
        count=_to_int(count),
        next_link=_first_present(raw, "odata.nextLink", "@odata.nextLink"),
    )


def parse_entity(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``raw`` with protocol metadata keys removed."""
    return {k: v for k, v in raw.items() if k not in METADATA_KEYS}


def parse_error(raw: Dict[str, Any]) -> ErrorInfo:
    """Extract code and message from either ERP error nesting.

    v3: ``{"error": {"code": -1, "message": {"lang": "en-us", "value": "..."}}}``
    v4: ``{"error": {"code": "...", "message": "..."}}``
    """
    error = raw.get("error") if isinstance(raw, dict) else None
    if not isinstance(error, dict):
        return ErrorInfo()

    code = str(error.get("code", "UNKNOWN"))
    message = error.get("message")

    if isinstance(message, dict) and "value" in message:
        return ErrorInfo(code=code, message=str(message["value"]))
    if isinstance(message, str):
        return ErrorInfo(code=code, message=message)
    return ErrorInfo()


def has_error(raw: Dict[str, Any]) -> bool:
    return isinstance(raw, dict) and "error" in raw


def normalize_boolean(value: Any) -> bool:
    """Interpret ERP boolean tokens (``tYES``/``tNO`` and friends)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().upper() in TRUTHY_TOKENS


# =============================================================================
# Entities
# =============================================================================

def parse_item_stock(raw: Dict[str, Any]) -> ItemStock:
    """Normalize item stock. ``available`` is in-stock minus committed."""
    by_warehouse: Dict[str, WarehouseStock] = {}

    for row in raw.get("ItemWarehouseInfoCollection") or []:
        code = row.get("WarehouseCode")
        if not code:
            continue
        in_stock = _to_float(row.get("InStock"))
        committed = _to_float(row.get("Committed"))
        by_warehouse[code] = WarehouseStock(
            in_stock=in_stock,
            committed=committed,
            available=in_stock - committed,
        )

    return ItemStock(
        item_code=raw.get("ItemCode"),
        total=_to_float(raw.get("QuantityOnStock")),
        by_warehouse=by_warehouse,
    )


def parse_document_lines(lines: Optional[List[Dict[str, Any]]]) -> List[DocumentLine]:
    return [
        DocumentLine(
            line_num=_to_int(line.get("LineNum")) or 0,
            item_code=line.get("ItemCode"),
            item_name=line.get("ItemDescription"),
            quantity=_to_float(line.get("Quantity")),
            unit_price=_to_float(line.get("UnitPrice")),
            line_total=_to_float(line.get("LineTotal")),
            warehouse=line.get("WarehouseCode"),
            tax_code=line.get("TaxCode"),
        )
        for line in (lines or [])
    ]


def parse_order(raw: Dict[str, Any]) -> ERPOrder:
    return ERPOrder(
        doc_entry=_to_int(raw.get("DocEntry")),
        doc_num=_to_int(raw.get("DocNum")),
        doc_status=raw.get("DocumentStatus"),
        doc_date=raw.get("DocDate"),
        doc_due_date=raw.get("DocDueDate"),
        card_code=raw.get("CardCode"),
        card_name=raw.get("CardName"),
        num_at_card=raw.get("NumAtCard"),
        doc_total=_to_float(raw.get("DocTotal")),
        doc_currency=raw.get("DocCurrency"),
        comments=raw.get("Comments"),
        cancelled=normalize_boolean(raw.get("Cancelled")),
        lines=parse_document_lines(raw.get("DocumentLines")),
    )


def parse_business_partner(raw: Dict[str, Any]) -> BusinessPartner:
    return BusinessPartner(
        card_code=raw.get("CardCode"),
        card_name=raw.get("CardName"),
        card_type=raw.get("CardType"),
        email=raw.get("EmailAddress"),
        phone=raw.get("Phone1"),
        address=raw.get("Address"),
        city=raw.get("City"),
        country=raw.get("Country"),
        zip_code=raw.get("ZipCode"),
        valid=normalize_boolean(raw.get("Valid", "tYES")),
    )
