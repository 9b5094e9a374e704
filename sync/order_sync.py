"""Order sync: storefront order to ERP sales order.

Per-order state machine::

    unsynced -> validated -> customer resolved -> submitted -> mapped

An order with a recorded ERP document is never submitted again. When a
previous attempt failed, the handler first looks for a document carrying the
order number as ``NumAtCard`` (the create may have succeeded after the
response was lost) and adopts it instead of creating a duplicate.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from connectors.errors import ERPError
from connectors.service_layer.sl_client import ServiceLayerClient
from connectors.service_layer.sl_models import ERPOrder
from connectors.service_layer.sl_parser import parse_collection, parse_order
from core.audit.events import SyncLogger, SyncType
from core.config import SyncSettings
from core.mapping.order_mapper import OrderMapper
from core.models.store import StoreOrder
from core.models.sync import OrderMapping, SyncStatus
from core.observability.logging import get_logger
from core.storage.stores import MappingStore
from core.storefront import StorefrontGateway
from sync.customer_sync import CustomerSync
from sync.validation import validate_order

logger = get_logger(__name__)


class OrderSync:
    """Push storefront orders to the ERP as sales orders.

    Usage:
        order_sync = OrderSync(client, storefront, store, settings, customer_sync=customers)
        await order_sync.sync_order(1042)
    """

    def __init__(
        self,
        client: ServiceLayerClient,
        storefront: StorefrontGateway,
        mappings: MappingStore,
        settings: SyncSettings,
        customer_sync: Optional[CustomerSync] = None,
        audit: Optional[SyncLogger] = None,
        mapper: Optional[OrderMapper] = None,
    ):
        self.client = client
        self.storefront = storefront
        self.mappings = mappings
        self.settings = settings
        self.customer_sync = customer_sync
        self.audit = audit or SyncLogger()
        self.mapper = mapper or OrderMapper(settings)

    async def sync_order(self, order_id: int) -> bool:
        """Create the ERP sales order for a storefront order.

        Args:
            order_id: Storefront order ID

        Returns:
            True if the order is synced (now or previously), False if the
            order does not exist

        Raises:
            ERPError: VALIDATION before any network call, or the client's
                API/CONNECTION/AUTHENTICATION error after bookkeeping
        """
        order = await self.storefront.get_order(order_id)
        if order is None:
            logger.error(f"Order {order_id} not found in the storefront")
            return False

        mapping = self.mappings.get_order_mapping(order_id)
        doc_entry = order.erp_doc_entry or (mapping.erp_doc_entry if mapping else None)
        if doc_entry:
            logger.info(f"Order {order_id} already synced to ERP (DocEntry {doc_entry})")
            return True

        errors = validate_order(order)
        if errors:
            error = ERPError.order_invalid(order_id, errors)
            await self._record_failure(order, mapping, error)
            raise error

        attempts = mapping.sync_attempts if mapping else 0
        logger.info(f"Starting order sync for {order_id} (previous attempts: {attempts})")

        payload: Optional[Dict[str, Any]] = None
        try:
            card_code = await self.resolve_customer(order)

            erp_order = None
            if attempts > 0:
                erp_order = await self.find_existing_document(order)

            if erp_order is None:
                payload = self.mapper.map(order, card_code)
                response = await self.client.create_order(payload)
                erp_order = parse_order(response)
                if erp_order.doc_entry is None:
                    raise ERPError.api(
                        "Order response did not include a DocEntry",
                        code="MALFORMED_RESPONSE",
                        context={"response": response},
                    )
        except ERPError as e:
            logger.error(f"ERP order sync failed for {order_id}: [{e.code}] {e.message}")
            await self._record_failure(order, mapping, e, payload)
            raise

        await self._record_success(order, erp_order, payload)
        return True

    async def resolve_customer(self, order: StoreOrder) -> str:
        """Partner code for the order's customer."""
        if order.customer_id:
            mapping = self.mappings.get_customer_mapping(local_customer_id=order.customer_id)
            if mapping:
                return mapping.erp_card_code

        if self.customer_sync is not None:
            return await self.customer_sync.ensure_customer(order)

        return self.settings.default_customer_code

    async def find_existing_document(self, order: StoreOrder) -> Optional[ERPOrder]:
        """Active ERP sales order whose NumAtCard is this order's number."""
        response = await self.client.find_orders(order.order_number)
        for raw in parse_collection(response).items:
            candidate = parse_order(raw)
            if candidate.doc_entry and not candidate.cancelled:
                logger.info(
                    f"Recovered ERP document {candidate.doc_entry} for order {order.id} "
                    f"from a previous attempt"
                )
                return candidate
        return None

    async def cancel_order_in_erp(self, order_id: int) -> bool:
        """Cancel the ERP sales order recorded for a storefront order.

        Returns:
            True if a document was cancelled, False if the order was never synced

        Raises:
            ERPError: If the ERP rejects the cancellation
        """
        mapping = self.mappings.get_order_mapping(order_id)
        doc_entry = mapping.erp_doc_entry if mapping else None
        if not doc_entry:
            order = await self.storefront.get_order(order_id)
            doc_entry = order.erp_doc_entry if order else None
        if not doc_entry:
            logger.info(f"Order {order_id} has no ERP document, nothing to cancel")
            return False

        try:
            await self.client.cancel_order(doc_entry)
        except ERPError as e:
            logger.error(f"ERP cancellation failed for order {order_id}: [{e.code}] {e.message}")
            await self.storefront.add_order_note(order_id, f"ERP cancellation failed: {e.message}")
            self.audit.error(
                SyncType.ORDER,
                f"Cancellation failed: {e.message}",
                local_id=order_id,
                erp_id=doc_entry,
                response=e.to_dict(),
            )
            raise

        await self.storefront.add_order_note(order_id, f"Order cancelled in ERP. DocEntry: {doc_entry}")
        self.audit.success(SyncType.ORDER, "Order cancelled in ERP", local_id=order_id, erp_id=doc_entry)
        logger.info(f"Cancelled ERP document {doc_entry} for order {order_id}")
        return True

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    async def _record_success(
        self,
        order: StoreOrder,
        erp_order: ERPOrder,
        payload: Optional[Dict[str, Any]],
    ) -> None:
        synced_at = datetime.utcnow()
        await self.storefront.save_erp_reference(order.id, erp_order.doc_entry, erp_order.doc_num, synced_at)
        self.mappings.upsert_order_mapping(OrderMapping(
            local_order_id=order.id,
            erp_doc_entry=erp_order.doc_entry,
            erp_doc_num=erp_order.doc_num,
            sync_status=SyncStatus.SYNCED,
            synced_at=synced_at,
        ))

        note = f"Order synced to ERP. DocNum: {erp_order.doc_num}, DocEntry: {erp_order.doc_entry}"
        await self.storefront.add_order_note(order.id, note)
        self.audit.success(
            SyncType.ORDER,
            note,
            local_id=order.id,
            erp_id=erp_order.doc_entry,
            request=payload,
            response=erp_order.model_dump(exclude={"lines"}),
        )
        logger.info(f"Order {order.id} synced (DocEntry {erp_order.doc_entry}, DocNum {erp_order.doc_num})")

    async def _record_failure(
        self,
        order: StoreOrder,
        mapping: Optional[OrderMapping],
        error: ERPError,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.mappings.upsert_order_mapping(OrderMapping(
            local_order_id=order.id,
            sync_status=SyncStatus.FAILED,
            sync_attempts=(mapping.sync_attempts if mapping else 0) + 1,
            last_error=error.message,
        ))
        await self.storefront.add_order_note(order.id, f"ERP sync failed: {error.message}")
        self.audit.error(
            SyncType.ORDER,
            f"Order sync failed: {error.message}",
            local_id=order.id,
            request=payload,
            response=error.to_dict(),
        )
