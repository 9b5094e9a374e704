"""
Stock Sync Tests

Validates ERP to storefront stock pulls:
1. Single product pull and the no-change epsilon
2. Unknown items and disabled mappings
3. Full sync in batches with an `in` filter per batch
4. A failed batch (ERP query or storefront write) counts as failed without
   stopping the run
5. Product mapping on save, with item code conflicts
"""

import asyncio

import pytest

from conftest import collection, make_product
from connectors.errors import ERPError
from core.config import SyncSettings
from core.models.sync import ProductMapping, SyncStatus
from core.observability.metrics import SyncMetrics
from core.storefront import InMemoryStorefront
from sync.stock_sync import StockSync, StockSyncResult, stock_status_for


class RejectingStorefront(InMemoryStorefront):
    """Storefront whose stock write fails for one product."""

    def __init__(self, reject_product_id: int):
        super().__init__()
        self.reject_product_id = reject_product_id

    async def update_product_stock(self, product_id, *args, **kwargs):
        if product_id == self.reject_product_id:
            raise RuntimeError("storefront write failed")
        return await super().update_product_stock(product_id, *args, **kwargs)


@pytest.fixture
def stock_sync(erp, storefront, store, settings, audit):
    return StockSync(erp, storefront, store, settings, audit=audit)


def seed(storefront, store, product_id: int, code: str, **product_kwargs) -> None:
    storefront.add_product(make_product(product_id=product_id, sku=code, **product_kwargs))
    store.upsert_product_mapping(ProductMapping(local_product_id=product_id, erp_item_code=code))


class TestSingleProduct:

    def test_pull_writes_stock(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001", manage_stock=True, stock_quantity=3)
        erp.get_item.return_value = {"ItemCode": "SKU-001", "QuantityOnStock": 12.0}

        assert asyncio.run(stock_sync.sync_product_stock(10)) is True

        code, query = erp.get_item.await_args.args
        assert code == "SKU-001"
        assert query.build() == {"$select": "ItemCode,QuantityOnStock,ItemWarehouseInfoCollection"}

        product = storefront.products[10]
        assert product.stock_quantity == 12.0
        assert product.stock_status == "instock"
        mapping = store.get_product_mapping(10)
        assert mapping.sync_status == SyncStatus.SYNCED
        assert mapping.last_known_stock == 12.0
        assert mapping.last_synced_at is not None

    def test_zero_stock_is_out_of_stock(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001", manage_stock=True, stock_quantity=3)
        erp.get_item.return_value = {"ItemCode": "SKU-001", "QuantityOnStock": 0}

        asyncio.run(stock_sync.sync_product_stock(10))

        assert storefront.products[10].stock_status == "outofstock"

    def test_unchanged_stock_is_not_written(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001", manage_stock=True, stock_quantity=5)
        erp.get_item.return_value = {"ItemCode": "SKU-001", "QuantityOnStock": 5.0004}

        assert asyncio.run(stock_sync.sync_product_stock(10)) is True
        assert storefront.stock_writes == []

    def test_unmanaged_stock_is_always_written(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001", manage_stock=False, stock_quantity=5)
        erp.get_item.return_value = {"ItemCode": "SKU-001", "QuantityOnStock": 5}

        asyncio.run(stock_sync.sync_product_stock(10))

        assert storefront.stock_writes == [10]
        assert storefront.products[10].manage_stock is True

    def test_unmapped_product_uses_sku(self, stock_sync, erp, storefront):
        storefront.add_product(make_product(product_id=10, sku="SKU 001"))
        erp.get_item.return_value = {"ItemCode": "SKU001", "QuantityOnStock": 1}

        assert asyncio.run(stock_sync.sync_product_stock(10)) is True
        assert erp.get_item.await_args.args[0] == "SKU001"

    def test_item_not_found(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001")
        erp.get_item.side_effect = ERPError.not_found("Items('SKU-001')")

        assert asyncio.run(stock_sync.sync_product_stock(10)) is False

        mapping = store.get_product_mapping(10)
        assert mapping.sync_status == SyncStatus.FAILED
        assert mapping.error_message == "Resource not found"
        assert storefront.stock_writes == []

    def test_transport_errors_are_raised(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 10, "SKU-001")
        erp.get_item.side_effect = ERPError.unreachable("https://erp", "refused")

        with pytest.raises(ERPError):
            asyncio.run(stock_sync.sync_product_stock(10))

    def test_disabled_mapping_is_skipped(self, stock_sync, erp, storefront, store):
        storefront.add_product(make_product(product_id=10))
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="SKU-001", sync_enabled=False))

        assert asyncio.run(stock_sync.sync_product_stock(10)) is False
        erp.get_item.assert_not_called()

    def test_missing_product(self, stock_sync, erp):
        assert asyncio.run(stock_sync.sync_product_stock(404)) is False
        erp.get_item.assert_not_called()


class TestFullSync:

    def test_batches_of_fifty(self, erp, storefront, store, settings, audit_backend, audit):
        """120 mapped products are fetched in 3 queries; a missing item is skipped."""
        for product_id in range(1, 121):
            seed(storefront, store, product_id, f"SKU-{product_id:03d}", manage_stock=True, stock_quantity=0)

        items = [
            {"ItemCode": f"SKU-{i:03d}", "QuantityOnStock": i}
            for i in range(1, 121)
            if i != 55
        ]
        erp.get_items.return_value = collection(*items)
        metrics = SyncMetrics()
        stock_sync = StockSync(erp, storefront, store, settings, audit=audit, metrics=metrics)

        result = asyncio.run(stock_sync.sync_all_stock())

        assert result == StockSyncResult(synced=119, failed=0, skipped=1)
        assert erp.get_items.await_count == 3

        first = erp.get_items.await_args_list[0].args[0].build()
        assert first["$top"] == "50"
        assert first["$filter"].startswith("(ItemCode eq 'SKU-001' or ItemCode eq 'SKU-002'")
        last = erp.get_items.await_args_list[2].args[0].build()
        assert last["$top"] == "20"

        assert storefront.products[120].stock_quantity == 120
        assert storefront.products[55].stock_quantity == 0
        assert metrics.stock == {"synced": 119, "failed": 0, "skipped": 1}
        assert audit_backend.query(sync_type="stock")[0].status.value == "success"

    def test_failed_batch_does_not_stop_the_run(self, erp, storefront, store, audit, audit_backend):
        for product_id, code in ((1, "A"), (2, "B"), (3, "C")):
            seed(storefront, store, product_id, code)
        erp.get_items.side_effect = [
            ERPError.unreachable("https://erp", "refused"),
            collection({"ItemCode": "C", "QuantityOnStock": 4}),
        ]
        stock_sync = StockSync(erp, storefront, store, SyncSettings(stock_batch_size=2), audit=audit)

        result = asyncio.run(stock_sync.sync_all_stock())

        assert result.to_dict() == {"synced": 1, "failed": 2, "skipped": 0}
        assert result.total == 3
        assert storefront.products[3].stock_quantity == 4
        assert audit_backend.query(sync_type="stock")[0].status.value == "warning"

    def test_storefront_error_fails_only_its_batch(self, erp, store, audit, audit_backend):
        """A storefront write that raises fails its batch; later batches still sync."""
        storefront = RejectingStorefront(reject_product_id=1)
        for product_id, code in ((1, "A"), (2, "B"), (3, "C")):
            seed(storefront, store, product_id, code)
        erp.get_items.side_effect = [
            collection({"ItemCode": "A", "QuantityOnStock": 1}, {"ItemCode": "B", "QuantityOnStock": 2}),
            collection({"ItemCode": "C", "QuantityOnStock": 4}),
        ]
        stock_sync = StockSync(erp, storefront, store, SyncSettings(stock_batch_size=2), audit=audit)

        result = asyncio.run(stock_sync.sync_all_stock())

        assert result.to_dict() == {"synced": 1, "failed": 2, "skipped": 0}
        assert erp.get_items.await_count == 2
        assert storefront.products[3].stock_quantity == 4
        assert audit_backend.query(sync_type="stock")[0].status.value == "warning"

    def test_no_mappings(self, stock_sync, erp):
        assert asyncio.run(stock_sync.sync_all_stock()).total == 0
        erp.get_items.assert_not_called()

    def test_disabled_mappings_are_excluded(self, stock_sync, erp, storefront, store):
        seed(storefront, store, 1, "A")
        storefront.add_product(make_product(product_id=2, sku="B"))
        store.upsert_product_mapping(ProductMapping(local_product_id=2, erp_item_code="B", sync_enabled=False))
        erp.get_items.return_value = collection({"ItemCode": "A", "QuantityOnStock": 1})

        result = asyncio.run(stock_sync.sync_all_stock())

        assert result.synced == 1
        assert erp.get_items.await_args.args[0].build()["$filter"] == "(ItemCode eq 'A')"


class TestProductLifecycle:

    def test_saved_product_is_mapped_and_pulled(self, stock_sync, erp, storefront, store, audit_backend):
        storefront.add_product(make_product(product_id=10, sku="SKU-001"))
        erp.get_item.return_value = {"ItemCode": "SKU-001", "QuantityOnStock": 7}

        assert asyncio.run(stock_sync.sync_product(10)) is True

        assert store.get_product_mapping(10).erp_item_code == "SKU-001"
        assert storefront.products[10].stock_quantity == 7
        assert audit_backend.query(sync_type="product", status="info")

    def test_item_code_owned_by_another_product(self, stock_sync, erp, storefront, store, audit_backend):
        seed(storefront, store, 10, "SKU-001")
        storefront.add_product(make_product(product_id=11, sku="SKU-001"))

        assert asyncio.run(stock_sync.sync_product(11)) is False

        assert store.get_product_mapping(11) is None
        assert store.get_product_mapping_by_item_code("SKU-001").local_product_id == 10
        erp.get_item.assert_not_called()
        assert audit_backend.query(sync_type="product", status="warning")

    def test_product_without_sku(self, stock_sync, storefront, store):
        storefront.add_product(make_product(product_id=10, sku=None))

        assert asyncio.run(stock_sync.sync_product(10)) is False
        assert store.get_product_mapping(10) is None

    def test_remove_product(self, stock_sync, storefront, store):
        seed(storefront, store, 10, "SKU-001")

        assert asyncio.run(stock_sync.remove_product(10)) is True
        assert store.get_product_mapping(10) is None
        assert asyncio.run(stock_sync.remove_product(10)) is False


def test_stock_status():
    assert stock_status_for(0.5) == "instock"
    assert stock_status_for(0) == "outofstock"
    assert stock_status_for(-2) == "outofstock"
