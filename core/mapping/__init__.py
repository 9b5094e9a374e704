"""Core mapping - storefront entities to ERP payloads.

Mappers are transport-independent: they build plain dict payloads and
never call the ERP.
"""

from core.mapping.customer_mapper import CustomerMapper
from core.mapping.helpers import (
    chunked,
    format_date,
    format_price,
    generate_card_code,
    parse_erp_date,
    sanitize_item_code,
)
from core.mapping.order_mapper import OrderMapper, calculate_discount_percent

__all__ = [
    "CustomerMapper",
    "OrderMapper",
    "calculate_discount_percent",
    "chunked",
    "format_date",
    "format_price",
    "generate_card_code",
    "parse_erp_date",
    "sanitize_item_code",
]
