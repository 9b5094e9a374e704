"""Pre-flight order checks, run before any ERP call."""

from typing import List

from core.models.store import StoreOrder


def validate_order(order: StoreOrder) -> List[str]:
    """Return the reasons an order cannot be sent to the ERP (empty if valid)."""
    errors: List[str] = []

    if not order.lines:
        errors.append("Order has no items.")

    if not order.email and not order.phone:
        errors.append("Order has no contact information.")

    for item in order.lines:
        if item.product is None:
            errors.append(f"Product not found for item: {item.name}")
            continue
        if not item.product.sku:
            errors.append(f'Product "{item.product.name}" has no SKU.')

    return errors
