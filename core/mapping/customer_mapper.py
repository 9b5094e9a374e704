"""Storefront order customer to ERP business partner."""

from typing import Any, Dict, List

from core.config import SyncSettings
from core.mapping.helpers import generate_card_code
from core.models.store import StoreAddress, StoreOrder

CUSTOMER_CARD_TYPE = "cCustomer"
GUEST_CODE_MARKER = "G"


class CustomerMapper:
    """Build ``BusinessPartners`` payloads from an order's billing details.

    The card code is derived from the customer ID, or from the order ID for
    guest checkouts, so re-running a creation for the same customer always
    targets the same partner. Guest codes carry their own marker
    (``WEBG001042``) so they never collide with a registered customer's.
    """

    def __init__(self, settings: SyncSettings):
        self.settings = settings

    def card_code_for(self, order: StoreOrder) -> str:
        prefix = self.settings.customer_code_prefix
        if order.customer_id:
            return generate_card_code(order.customer_id, prefix)
        return generate_card_code(order.id, prefix + GUEST_CODE_MARKER)

    def map(self, order: StoreOrder) -> Dict[str, Any]:
        billing = order.billing
        payload: Dict[str, Any] = {
            "CardCode": self.card_code_for(order),
            "CardName": card_name_for(billing),
            "CardType": CUSTOMER_CARD_TYPE,
            "EmailAddress": billing.email or "",
            "Phone1": billing.phone or "",
            "Cellular": billing.phone or "",
            "Address": ", ".join(p for p in (billing.address_1, billing.address_2) if p),
            "City": billing.city,
            "Country": billing.country,
            "ZipCode": billing.postcode,
            "BPAddresses": self.map_addresses(order),
            "ContactEmployees": [map_contact(billing)],
        }
        if order.currency:
            payload["Currency"] = order.currency
        return payload

    def map_addresses(self, order: StoreOrder) -> List[Dict[str, Any]]:
        """Billing address always; shipping only when it differs."""
        addresses = [map_address(order.billing, "BILL", "bo_BillTo")]
        if order.has_distinct_shipping():
            addresses.append(map_address(order.shipping, "SHIP", "bo_ShipTo"))
        return addresses


def card_name_for(billing: StoreAddress) -> str:
    return billing.company or billing.full_name


def map_address(address: StoreAddress, name: str, address_type: str) -> Dict[str, Any]:
    return {
        "AddressName": name,
        "AddressType": address_type,
        "Street": address.address_1,
        "Block": address.address_2,
        "City": address.city,
        "State": address.state,
        "ZipCode": address.postcode,
        "Country": address.country,
    }


def map_contact(billing: StoreAddress) -> Dict[str, Any]:
    return {
        "Name": billing.full_name,
        "FirstName": billing.first_name,
        "LastName": billing.last_name,
        "E_Mail": billing.email or "",
        "Phone1": billing.phone or "",
        "MobilePhone": billing.phone or "",
    }
