"""Stock sync: ERP item stock to storefront product stock.

Two modes:
- Single product pull (``sync_product_stock``): one ``Items('code')`` call
- Full sync (``sync_all_stock``): enabled product mappings in batches, one
  ``Items`` query per batch filtered with an ``in`` predicate over the
  batch's item codes

Stock is only written when it differs from the current level by more than
``STOCK_EPSILON``. In a full sync, items missing from the ERP response are
counted as skipped; a batch that fails anywhere (the ERP query or a
storefront write) counts as failed as a whole and is left to the next
scheduled run.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, List, Optional

from connectors.errors import ERPError
from connectors.service_layer.sl_client import ServiceLayerClient
from connectors.service_layer.sl_parser import parse_collection, parse_item_stock
from connectors.service_layer.sl_query import ODataQuery
from core.audit.events import SyncLogger, SyncType
from core.config import SyncSettings
from core.mapping.helpers import chunked, sanitize_item_code
from core.models.store import StoreProduct
from core.models.sync import ProductMapping, SyncDirection, SyncStatus
from core.observability.logging import get_logger
from core.observability.metrics import SyncMetrics
from core.storage.stores import MappingStore
from core.storefront import StorefrontGateway

logger = get_logger(__name__)

STOCK_EPSILON = 0.001
STOCK_FIELDS = ("ItemCode", "QuantityOnStock", "ItemWarehouseInfoCollection")


@dataclass
class StockSyncResult:
    """Outcome counters for a stock sync run."""
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, other: "StockSyncResult") -> None:
        self.synced += other.synced
        self.failed += other.failed
        self.skipped += other.skipped

    @property
    def total(self) -> int:
        return self.synced + self.failed + self.skipped

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def stock_status_for(quantity: float) -> str:
    return "instock" if quantity > 0 else "outofstock"


class StockSync:
    """Pull ERP stock levels into the storefront."""

    def __init__(
        self,
        client: ServiceLayerClient,
        storefront: StorefrontGateway,
        mappings: MappingStore,
        settings: SyncSettings,
        audit: Optional[SyncLogger] = None,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.client = client
        self.storefront = storefront
        self.mappings = mappings
        self.settings = settings
        self.audit = audit or SyncLogger()
        self.metrics = metrics

    # =========================================================================
    # Single product
    # =========================================================================

    async def sync_product_stock(self, product_id: int) -> bool:
        """Pull stock for one product.

        Returns:
            True if stock was read from the ERP, False if the product cannot
            be synced (missing, no item code, disabled, unknown to the ERP)

        Raises:
            ERPError: Transport, session or API failures other than NOT_FOUND
        """
        product = await self.storefront.get_product(product_id)
        if product is None:
            logger.error(f"Product {product_id} not found in the storefront")
            return False

        mapping = self.mappings.get_product_mapping(product_id)
        if mapping is not None and not mapping.sync_enabled:
            logger.debug(f"Stock sync disabled for product {product_id}")
            return False

        item_code = mapping.erp_item_code if mapping else sanitize_item_code(product.sku or "")
        if not item_code:
            logger.warning(f"Product {product_id} has no SKU, skipping stock pull")
            return False

        query = ODataQuery().select(*STOCK_FIELDS)
        try:
            raw = await self.client.get_item(item_code, query)
        except ERPError as e:
            if mapping is not None:
                self._mark(mapping, SyncStatus.FAILED, error=e.message)
            if e.is_not_found:
                logger.warning(f"ERP item {item_code} not found for product {product_id}")
                return False
            logger.error(f"Stock pull failed for product {product_id} ({item_code}): {e.message}")
            raise

        stock = parse_item_stock(raw)
        await self.update_product_stock(product, stock.total)
        if mapping is not None:
            self._mark(mapping, SyncStatus.SYNCED, stock=stock.total)

        logger.info(f"Stock synced for product {product_id} ({item_code}): {stock.total}")
        return True

    async def update_product_stock(self, product: StoreProduct, quantity: float) -> bool:
        """Write a stock level unless it is already current.

        Returns:
            True if the storefront was written
        """
        current = product.stock_quantity
        if product.manage_stock and current is not None and abs(current - quantity) < STOCK_EPSILON:
            return False

        await self.storefront.update_product_stock(
            product.id,
            quantity,
            stock_status_for(quantity),
            manage_stock=True,
        )
        logger.debug(f"Product {product.id} stock updated: {current} -> {quantity}")
        return True

    # =========================================================================
    # Full sync
    # =========================================================================

    async def sync_all_stock(self) -> StockSyncResult:
        """Sync stock for every enabled product mapping, batch by batch."""
        result = StockSyncResult()
        mappings = self.mappings.list_product_mappings(enabled_only=True)

        if not mappings:
            logger.info("No mapped products found for stock sync")
            return result

        logger.info(f"Starting full stock sync for {len(mappings)} products")
        for batch in chunked(mappings, self.settings.stock_batch_size):
            batch_result = await self._sync_batch(batch)
            if self.metrics:
                self.metrics.record_stock_batch(batch_result.synced, batch_result.failed, batch_result.skipped)
            result.add(batch_result)

        message = (
            f"Full stock sync completed: {result.synced} synced, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        logger.info(message)
        log = self.audit.warning if result.failed else self.audit.success
        log(SyncType.STOCK, message, direction=SyncDirection.FROM_ERP, response=result.to_dict())
        return result

    async def _sync_batch(self, batch: List[ProductMapping]) -> StockSyncResult:
        """Sync one batch. Any failure counts the whole batch as failed."""
        try:
            return await self._apply_batch(batch)
        except ERPError as e:
            logger.error(f"Batch stock sync failed for {len(batch)} items: [{e.code}] {e.message}")
        except Exception as e:
            logger.exception(f"Batch stock sync failed for {len(batch)} items: {e}")
        return StockSyncResult(failed=len(batch))

    async def _apply_batch(self, batch: List[ProductMapping]) -> StockSyncResult:
        result = StockSyncResult()
        codes = [m.erp_item_code for m in batch]

        query = (
            ODataQuery()
            .select(*STOCK_FIELDS)
            .where_in("ItemCode", codes)
            .top(len(codes))
        )
        response = await self.client.get_items(query)
        items = {item.get("ItemCode"): item for item in parse_collection(response).items}

        for mapping in batch:
            item = items.get(mapping.erp_item_code)
            if item is None:
                logger.warning(f"ERP item {mapping.erp_item_code} not in response, skipping")
                result.skipped += 1
                continue

            product = await self.storefront.get_product(mapping.local_product_id)
            if product is None:
                result.skipped += 1
                continue

            stock = parse_item_stock(item)
            await self.update_product_stock(product, stock.total)
            self._mark(mapping, SyncStatus.SYNCED, stock=stock.total)
            result.synced += 1

        return result

    # =========================================================================
    # Product lifecycle
    # =========================================================================

    async def sync_product(self, product_id: int) -> bool:
        """Map a product to the ERP item named by its SKU, then pull its stock.

        A SKU already mapped to another product is left alone.
        """
        product = await self.storefront.get_product(product_id)
        if product is None:
            logger.error(f"Product {product_id} not found in the storefront")
            return False

        item_code = sanitize_item_code(product.sku or "")
        if not item_code:
            logger.debug(f"Product {product_id} has no SKU, not mapping")
            return False

        existing = self.mappings.get_product_mapping(product_id)
        if existing is None or existing.erp_item_code != item_code:
            owner = self.mappings.get_product_mapping_by_item_code(item_code)
            if owner is not None and owner.local_product_id != product_id:
                message = f"Item code {item_code} is already mapped to product {owner.local_product_id}"
                logger.warning(message)
                self.audit.warning(SyncType.PRODUCT, message, local_id=product_id, erp_id=item_code)
                return False

            self.mappings.upsert_product_mapping(ProductMapping(
                local_product_id=product_id,
                erp_item_code=item_code,
                sync_enabled=existing.sync_enabled if existing else True,
            ))
            self.audit.info(SyncType.PRODUCT, f"Product mapped to ERP item {item_code}", local_id=product_id, erp_id=item_code)

        return await self.sync_product_stock(product_id)

    async def remove_product(self, product_id: int) -> bool:
        """Drop the mapping of a deleted product."""
        removed = self.mappings.delete_product_mapping(product_id)
        if removed:
            logger.info(f"Removed product mapping for deleted product {product_id}")
            self.audit.info(SyncType.PRODUCT, "Product mapping removed", local_id=product_id)
        return removed

    def _mark(
        self,
        mapping: ProductMapping,
        status: SyncStatus,
        stock: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        update = {"sync_status": status, "error_message": error}
        if status == SyncStatus.SYNCED:
            update["last_synced_at"] = datetime.utcnow()
            update["last_known_stock"] = stock
        self.mappings.upsert_product_mapping(mapping.model_copy(update=update))
