"""Storefront order to ERP sales order document."""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.config import SyncSettings
from core.mapping.helpers import format_date, format_price, sanitize_item_code, strip_tags
from core.models.store import StoreOrder, StoreOrderLine

DUE_DATE_OFFSET = timedelta(days=7)


def calculate_discount_percent(subtotal: float, total: float) -> float:
    """Line discount as a percentage of the pre-discount subtotal.

    Always within [0, 100]; zero when there is no subtotal or no discount.
    """
    if subtotal <= 0:
        return 0.0
    discount = subtotal - total
    if discount <= 0:
        return 0.0
    return min(100.0, round(discount / subtotal * 100, 2))


class OrderMapper:
    """Build ``Orders`` document payloads.

    Usage:
        mapper = OrderMapper(settings)
        payload = mapper.map(order, card_code="WEB000042")
    """

    def __init__(self, settings: SyncSettings):
        self.settings = settings

    def map(self, order: StoreOrder, card_code: str) -> Dict[str, Any]:
        """Map an order to a sales order document.

        Args:
            order: Storefront order
            card_code: Business partner the document is raised against

        Returns:
            Document payload ready for ``POST Orders``
        """
        payload: Dict[str, Any] = {
            "CardCode": card_code,
            "DocDate": format_date(order.created_at),
            "DocDueDate": format_date(order.created_at + DUE_DATE_OFFSET),
            "NumAtCard": order.order_number,
            "Comments": self.build_comments(order),
            "DocumentLines": self.map_lines(order),
        }

        payment_code = self.map_payment_method(order.payment_method)
        if payment_code:
            payload["PaymentMethod"] = payment_code

        return payload

    def map_lines(self, order: StoreOrder) -> List[Dict[str, Any]]:
        lines = []
        for item in order.lines:
            line = self.map_line(item)
            if line:
                lines.append(line)

        shipping = self.map_shipping(order)
        if shipping:
            lines.append(shipping)
        return lines

    def map_line(self, item: StoreOrderLine) -> Optional[Dict[str, Any]]:
        """Map one line item. Lines without a product SKU are dropped."""
        if not item.sku:
            return None

        unit_price = item.subtotal / item.quantity if item.quantity else item.subtotal
        line: Dict[str, Any] = {
            "ItemCode": sanitize_item_code(item.sku),
            "Quantity": item.quantity,
            "UnitPrice": format_price(unit_price),
            "DiscountPercent": calculate_discount_percent(item.subtotal, item.total),
        }
        if self.settings.default_warehouse:
            line["WarehouseCode"] = self.settings.default_warehouse
        if self.settings.default_tax_code:
            line["TaxCode"] = self.settings.default_tax_code

        free_text = format_item_meta(item.meta)
        if free_text:
            line["FreeText"] = free_text
        return line

    def map_shipping(self, order: StoreOrder) -> Optional[Dict[str, Any]]:
        """Shipping charge as a service line, when there is one."""
        if order.shipping_total <= 0:
            return None
        line: Dict[str, Any] = {
            "ItemCode": self.settings.shipping_item_code,
            "Quantity": 1,
            "UnitPrice": format_price(order.shipping_total),
        }
        if order.shipping_method:
            line["FreeText"] = order.shipping_method
        return line

    def build_comments(self, order: StoreOrder) -> str:
        parts = [f"Store Order #{order.order_number}"]
        if order.customer_note:
            parts.append(f"Customer Note: {order.customer_note}")
        if order.payment_method_title:
            parts.append(f"Payment: {order.payment_method_title}")
        return "\n".join(parts)

    def map_payment_method(self, method: str) -> Optional[str]:
        """ERP payment method code, or None for unmapped methods."""
        if not method:
            return None
        return self.settings.payment_method_codes.get(method)


def format_item_meta(meta: Dict[str, Any]) -> Optional[str]:
    """Render line item meta as ``key: value, key: value``.

    Keys starting with an underscore are internal and skipped.
    """
    parts = [
        f"{key}: {strip_tags(value)}"
        for key, value in meta.items()
        if not str(key).startswith("_")
    ]
    return ", ".join(parts) if parts else None
