"""Customer resolution: find or create the business partner for an order.

Resolution order for an order's billing email:
1. An existing customer mapping (by customer ID, then email)
2. An ERP partner with that email (fail-open: lookup errors count as "not found")
3. A new partner, when auto-create is enabled
4. The configured default (walk-in) partner code

Concurrent resolutions for the same email are serialized by a per-email
lock, and the mapping is re-checked inside the lock, so only the first
caller creates a partner. Card codes are deterministic; if the ERP rejects
a creation because the partner already exists, it is adopted only when
its email matches the order's.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

from connectors.errors import ERPError, ErrorKind
from connectors.service_layer.sl_client import ServiceLayerClient
from connectors.service_layer.sl_models import BusinessPartner
from connectors.service_layer.sl_parser import parse_business_partner, parse_collection
from connectors.service_layer.sl_query import ODataQuery
from core.audit.events import SyncLogger, SyncType
from core.config import SyncSettings
from core.mapping.customer_mapper import CUSTOMER_CARD_TYPE, CustomerMapper, card_name_for
from core.models.store import StoreOrder
from core.models.sync import CustomerMapping
from core.observability.logging import get_logger
from core.storage.stores import MappingConflictError, MappingStore

logger = get_logger(__name__)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class CustomerSync:
    """Resolve business partner codes for orders."""

    def __init__(
        self,
        client: ServiceLayerClient,
        mappings: MappingStore,
        settings: SyncSettings,
        audit: Optional[SyncLogger] = None,
        mapper: Optional[CustomerMapper] = None,
    ):
        self.client = client
        self.mappings = mappings
        self.settings = settings
        self.audit = audit or SyncLogger()
        self.mapper = mapper or CustomerMapper(settings)
        self._locks: Dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``. The entry is dropped once nobody holds or awaits it."""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def ensure_customer(self, order: StoreOrder) -> str:
        """Return the partner code to raise the order against.

        Raises:
            ERPError: If creating a new partner fails
        """
        email = (order.email or "").strip().lower() or None
        key = email or f"customer:{order.customer_id or order.id}"

        async with self._locked(key):
            mapping = self.mappings.get_customer_mapping(
                local_customer_id=order.customer_id,
                email=email,
            )
            if mapping:
                logger.debug(f"Using mapped partner {mapping.erp_card_code} for order {order.id}")
                return mapping.erp_card_code

            if email:
                existing = await self.find_by_email(email)
                if existing:
                    logger.info(f"Found ERP partner {existing} for {email}")
                    self._save_mapping(order, existing)
                    return existing

            if not self.settings.auto_create_customers:
                logger.info(
                    f"No partner for order {order.id} and auto-create is off, "
                    f"using {self.settings.default_customer_code}"
                )
                return self.settings.default_customer_code

            return await self.create_customer(order)

    async def find_by_email(self, email: str) -> Optional[str]:
        """Card code of the first customer partner with this email, if any.

        Lookup failures are logged and reported as "not found".
        """
        query = (
            ODataQuery()
            .select("CardCode", "CardName", "EmailAddress")
            .where_equals("EmailAddress", email)
            .where_equals("CardType", CUSTOMER_CARD_TYPE)
            .top(1)
        )
        try:
            response = await self.client.get_business_partners(query)
        except ERPError as e:
            logger.warning(f"Customer lookup by email failed, treating as not found: [{e.code}] {e.message}")
            return None

        items = parse_collection(response).items
        if not items:
            return None
        return items[0].get("CardCode")

    async def find_by_code(self, card_code: str) -> Optional[BusinessPartner]:
        """Fetch a partner by code. Returns None if it does not exist."""
        try:
            response = await self.client.get_business_partner(card_code)
        except ERPError as e:
            if e.is_not_found:
                return None
            raise
        return parse_business_partner(response)

    async def create_customer(self, order: StoreOrder) -> str:
        """Create a partner from the order's billing details and map it.

        Raises:
            ERPError: If the ERP rejects the partner and no partner with the
                same email exists under its code
        """
        payload = self.mapper.map(order)
        card_code = payload["CardCode"]
        logger.info(f"Creating ERP partner {card_code} for order {order.id}")

        try:
            response = await self.client.create_business_partner(payload)
            created = parse_business_partner(response)
            card_code = created.card_code or card_code
        except ERPError as e:
            if e.kind != ErrorKind.API:
                self._log_failure(order, card_code, payload, e)
                raise
            existing = await self.find_by_code(card_code)
            if existing is None:
                self._log_failure(order, card_code, payload, e)
                raise
            if not same_email(existing.email, order.email):
                logger.warning(
                    f"Partner {card_code} already exists with a different email, not adopting it for order {order.id}"
                )
                self._log_failure(order, card_code, payload, e)
                raise
            logger.info(f"Partner {card_code} already exists in the ERP, adopting it")
            card_code = existing.card_code or card_code

        self._save_mapping(order, card_code)
        self.audit.success(
            SyncType.CUSTOMER,
            f"Customer synced to ERP as {card_code}",
            local_id=order.customer_id or order.id,
            erp_id=card_code,
            request=payload,
        )
        return card_code

    def _save_mapping(self, order: StoreOrder, card_code: str) -> None:
        mapping = CustomerMapping(
            local_customer_id=order.customer_id or None,
            email=(order.email or "").lower() or None,
            erp_card_code=card_code,
            card_name=card_name_for(order.billing) or None,
        )
        try:
            self.mappings.upsert_customer_mapping(mapping)
        except MappingConflictError as e:
            logger.warning(f"Customer mapping for {card_code} not saved: {e}")

    def _log_failure(self, order: StoreOrder, card_code: str, payload: Dict, error: ERPError) -> None:
        logger.error(f"Failed to create ERP partner {card_code}: [{error.code}] {error.message}")
        self.audit.error(
            SyncType.CUSTOMER,
            f"Customer creation failed: {error.message}",
            local_id=order.customer_id or order.id,
            erp_id=card_code,
            request=payload,
            response=error.to_dict(),
        )


def same_email(first: Optional[str], second: Optional[str]) -> bool:
    return (first or "").strip().lower() == (second or "").strip().lower()
