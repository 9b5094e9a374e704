"""Storefront domain event handlers.

The storefront integration layer calls these entry points from its own event
model. Each handler enqueues at most one sync job and never calls the ERP.

Order events:
    on_order_created         queue sync if auto-sync is on and the status is syncable
    on_order_status_changed  queue on entering a syncable status, cancel on cancellation
    on_order_refunded        logged only (credit memos are not synced)

Stock and product events:
    on_stock_reduced         logged only; ERP stock arrives via the recurring full sync
    on_product_saved         queue a product sync for products with a SKU
    on_product_deleted       drop the product mapping
    on_low_stock / on_no_stock  logged warnings
"""

from typing import Optional

from core.config import SyncSettings, normalize_status
from core.models.store import StoreOrder, StoreProduct
from core.models.sync import SyncJob
from core.observability.logging import get_logger, with_correlation
from core.storage.stores import MappingStore
from core.storefront import StorefrontGateway
from jobs.manager import QueueManager

logger = get_logger(__name__)

STATUS_CANCELLED = "cancelled"
STATUS_COMPLETED = "completed"


class StoreEventHandlers:
    """Translate storefront events into sync jobs.

    Usage:
        events = StoreEventHandlers(queue, storefront, mappings, settings)
        await events.on_order_created(order)
    """

    def __init__(
        self,
        queue: QueueManager,
        storefront: StorefrontGateway,
        mappings: MappingStore,
        settings: SyncSettings,
    ):
        self.queue = queue
        self.storefront = storefront
        self.mappings = mappings
        self.settings = settings

    # =========================================================================
    # Orders
    # =========================================================================

    async def on_order_created(self, order: StoreOrder) -> Optional[SyncJob]:
        with with_correlation(order_id=order.id):
            if not self.settings.auto_sync_orders:
                logger.debug("Auto order sync disabled, skipping")
                return None

            if not self.settings.is_syncable_status(order.status):
                logger.debug(f"Order status '{order.status}' not syncable on creation")
                return None

            return await self._queue_order(order)

    async def on_order_status_changed(
        self,
        order: StoreOrder,
        old_status: str,
        new_status: str,
    ) -> Optional[SyncJob]:
        """Handle an order status transition.

        Entering a syncable status queues the order. A cancellation removes
        pending sync jobs and, for an order already in the ERP, queues the
        ERP-side cancellation. Completing an order that never reached the ERP
        queues it.

        Returns:
            The queued job, if any
        """
        if not self.settings.auto_sync_orders:
            return None

        old_status = normalize_status(old_status)
        new_status = normalize_status(new_status)

        with with_correlation(order_id=order.id):
            logger.debug(f"Order status changed: {old_status} -> {new_status}")

            was_syncable = self.settings.is_syncable_status(old_status)
            is_syncable = self.settings.is_syncable_status(new_status)

            if is_syncable and not was_syncable:
                return await self._queue_order(order)

            if new_status == STATUS_CANCELLED:
                return await self._handle_cancellation(order)

            if new_status == STATUS_COMPLETED and old_status != STATUS_COMPLETED:
                if not order.is_synced:
                    return await self._queue_order(order)
                logger.info(f"Order completed, already in ERP as DocEntry {order.erp_doc_entry}")

        return None

    async def on_order_refunded(self, order: StoreOrder, refund_id: int, amount: float = 0.0) -> None:
        with with_correlation(order_id=order.id):
            logger.info(f"Order refunded (refund {refund_id}, amount {amount})")
            if not order.is_synced:
                logger.debug("Order not synced to ERP, nothing to reverse")
                return
            logger.warning(
                f"Refund {refund_id} not mirrored to ERP document {order.erp_doc_entry}; "
                f"create the credit memo in the ERP"
            )

    async def _queue_order(self, order: StoreOrder) -> Optional[SyncJob]:
        if order.is_synced:
            logger.debug(f"Order already synced to ERP (DocEntry {order.erp_doc_entry})")
            return None

        mapping = self.mappings.get_order_mapping(order.id)
        if mapping is not None and mapping.erp_doc_entry is not None:
            logger.debug(f"Order already mapped to ERP (DocEntry {mapping.erp_doc_entry})")
            return None

        job = await self.queue.queue_order_sync(order.id)
        if job:
            await self.storefront.add_order_note(order.id, f"Order queued for ERP sync (Job #{job.id})")
        return job

    async def _handle_cancellation(self, order: StoreOrder) -> Optional[SyncJob]:
        cancelled = await self.queue.cancel_order_sync(order.id)
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending ERP sync jobs")

        mapping = self.mappings.get_order_mapping(order.id)
        in_erp = order.is_synced or (mapping is not None and mapping.erp_doc_entry is not None)
        if not in_erp:
            return None

        job = await self.queue.queue_order_cancel(order.id)
        if job:
            await self.storefront.add_order_note(order.id, "Order cancellation queued for ERP sync")
        return job

    # =========================================================================
    # Stock and products
    # =========================================================================

    async def on_stock_reduced(self, order: StoreOrder) -> None:
        with with_correlation(order_id=order.id):
            products = [line.product.id for line in order.lines if line.product is not None]
            logger.debug(f"Stock reduced for products {products}")

    async def on_product_saved(self, product: StoreProduct) -> Optional[SyncJob]:
        if not product.sku:
            return None
        with with_correlation(product_id=product.id):
            logger.debug(f"Product saved (SKU {product.sku})")
            return await self.queue.queue_product_sync(product.id)

    async def on_product_deleted(self, product_id: int) -> bool:
        with with_correlation(product_id=product_id):
            logger.info("Product deleted")
            removed = self.mappings.delete_product_mapping(product_id)
            if removed:
                logger.info("Product mapping removed")
            return removed

    def on_low_stock(self, product: StoreProduct) -> None:
        logger.warning(
            f"Low stock alert: product {product.id} (SKU {product.sku}) at {product.stock_quantity}"
        )

    def on_no_stock(self, product: StoreProduct) -> None:
        logger.warning(f"Out of stock alert: product {product.id} (SKU {product.sku})")
