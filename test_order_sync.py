"""
Order Sync Tests

Validates the order sync handler against a mocked ERP client:
1. Successful sync writes references, mapping, note and audit entry
2. Already-synced orders are never submitted again
3. Invalid orders fail before any network call
4. ERP failures are recorded and re-raised
5. Retries adopt a document left behind by a lost response
6. Cancellation of synced orders
"""

import asyncio

import pytest

from conftest import make_address, make_order
from connectors.errors import ERPError, ErrorKind
from core.models.sync import CustomerMapping, OrderMapping, SyncStatus
from sync.order_sync import OrderSync


@pytest.fixture
def order_sync(erp, storefront, store, settings, audit):
    return OrderSync(erp, storefront, store, settings, audit=audit)


class TestSyncOrder:
    """Happy path and idempotency."""

    def test_successful_sync(self, order_sync, erp, storefront, store, audit_backend):
        """A new order is posted once and every record is written."""
        storefront.add_order(make_order())
        erp.create_order.return_value = {"DocEntry": 881, "DocNum": 5001, "NumAtCard": "1042"}

        assert asyncio.run(order_sync.sync_order(1042)) is True

        payload = erp.create_order.await_args.args[0]
        assert payload["NumAtCard"] == "1042"
        assert payload["CardCode"] == "WALKIN"

        order = storefront.orders[1042]
        assert order.erp_doc_entry == 881
        assert order.erp_doc_num == 5001

        mapping = store.get_order_mapping(1042)
        assert mapping.erp_doc_entry == 881
        assert mapping.sync_status == SyncStatus.SYNCED

        assert storefront.notes[1042] == ["Order synced to ERP. DocNum: 5001, DocEntry: 881"]
        entry = audit_backend.query(sync_type="order")[0]
        assert entry.status.value == "success"
        assert entry.erp_id == "881"

    def test_mapped_customer_is_used(self, order_sync, erp, storefront, store):
        store.upsert_customer_mapping(CustomerMapping(local_customer_id=7, erp_card_code="WEB000007"))
        storefront.add_order(make_order())
        erp.create_order.return_value = {"DocEntry": 881, "DocNum": 5001}

        asyncio.run(order_sync.sync_order(1042))

        assert erp.create_order.await_args.args[0]["CardCode"] == "WEB000007"

    def test_already_synced_is_noop(self, order_sync, erp, storefront):
        """An order carrying an ERP reference is not posted again."""
        storefront.add_order(make_order(erp_doc_entry=881))

        assert asyncio.run(order_sync.sync_order(1042)) is True
        erp.create_order.assert_not_called()
        assert 1042 not in storefront.notes

    def test_mapping_reference_counts_as_synced(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        store.upsert_order_mapping(OrderMapping(local_order_id=1042, erp_doc_entry=881, sync_status=SyncStatus.SYNCED))

        assert asyncio.run(order_sync.sync_order(1042)) is True
        erp.create_order.assert_not_called()

    def test_missing_order(self, order_sync, erp):
        assert asyncio.run(order_sync.sync_order(999)) is False
        erp.create_order.assert_not_called()

    def test_missing_doc_entry_in_response(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        erp.create_order.return_value = {"DocNum": 5001}

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(order_sync.sync_order(1042))

        assert exc_info.value.code == "MALFORMED_RESPONSE"
        assert store.get_order_mapping(1042).sync_status == SyncStatus.FAILED


class TestValidation:
    """Pre-flight checks."""

    def test_order_without_items(self, order_sync, erp, storefront, store, audit_backend):
        storefront.add_order(make_order(lines=[]))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(order_sync.sync_order(1042))

        error = exc_info.value
        assert error.kind == ErrorKind.VALIDATION
        assert error.message == "Order #1042 validation failed: Order has no items."
        assert error.field_errors == ["Order has no items."]
        erp.create_order.assert_not_called()
        erp.get_business_partners.assert_not_called()

        mapping = store.get_order_mapping(1042)
        assert mapping.sync_status == SyncStatus.FAILED
        assert mapping.sync_attempts == 1
        assert storefront.notes[1042] == [f"ERP sync failed: {error.message}"]
        assert audit_backend.query(status="error")

    def test_order_without_contact(self, order_sync, storefront):
        storefront.add_order(make_order(billing=make_address(email=None, phone=None)))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(order_sync.sync_order(1042))

        assert "Order has no contact information." in exc_info.value.field_errors


class TestFailures:
    """ERP errors and retry recovery."""

    def test_api_error_is_recorded_and_raised(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        erp.create_order.side_effect = ERPError.api("Item SKU-001 is inactive", code="-10", status_code=400)

        with pytest.raises(ERPError):
            asyncio.run(order_sync.sync_order(1042))

        mapping = store.get_order_mapping(1042)
        assert mapping.sync_status == SyncStatus.FAILED
        assert mapping.sync_attempts == 1
        assert mapping.last_error == "Item SKU-001 is inactive"
        assert storefront.notes[1042] == ["ERP sync failed: Item SKU-001 is inactive"]
        assert storefront.orders[1042].erp_doc_entry is None

    def test_attempts_accumulate(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        erp.find_orders.return_value = {"value": []}
        erp.create_order.side_effect = ERPError.unreachable("https://erp", "refused")

        for _ in range(2):
            with pytest.raises(ERPError):
                asyncio.run(order_sync.sync_order(1042))

        assert store.get_order_mapping(1042).sync_attempts == 2

    def test_first_attempt_does_not_search(self, order_sync, erp, storefront):
        storefront.add_order(make_order())
        erp.create_order.return_value = {"DocEntry": 881, "DocNum": 5001}

        asyncio.run(order_sync.sync_order(1042))

        erp.find_orders.assert_not_called()

    def test_retry_adopts_existing_document(self, order_sync, erp, storefront, store):
        """A retried order whose document already exists is not posted twice."""
        storefront.add_order(make_order())
        store.upsert_order_mapping(OrderMapping(local_order_id=1042, sync_status=SyncStatus.FAILED, sync_attempts=1))
        erp.find_orders.return_value = {"value": [
            {"DocEntry": 870, "DocNum": 4990, "NumAtCard": "1042", "Cancelled": "tYES"},
            {"DocEntry": 881, "DocNum": 5001, "NumAtCard": "1042", "Cancelled": "tNO"},
        ]}

        assert asyncio.run(order_sync.sync_order(1042)) is True

        erp.find_orders.assert_awaited_once_with("1042")
        erp.create_order.assert_not_called()
        assert store.get_order_mapping(1042).erp_doc_entry == 881
        assert storefront.orders[1042].erp_doc_num == 5001

    def test_retry_creates_when_nothing_found(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        store.upsert_order_mapping(OrderMapping(local_order_id=1042, sync_status=SyncStatus.FAILED, sync_attempts=2))
        erp.find_orders.return_value = {"value": []}
        erp.create_order.return_value = {"DocEntry": 882, "DocNum": 5002}

        assert asyncio.run(order_sync.sync_order(1042)) is True
        erp.create_order.assert_awaited_once()
        assert store.get_order_mapping(1042).sync_status == SyncStatus.SYNCED


class TestCancellation:

    def test_cancel_synced_order(self, order_sync, erp, storefront, store):
        storefront.add_order(make_order())
        store.upsert_order_mapping(OrderMapping(local_order_id=1042, erp_doc_entry=881, sync_status=SyncStatus.SYNCED))
        erp.cancel_order.return_value = {"success": True}

        assert asyncio.run(order_sync.cancel_order_in_erp(1042)) is True

        erp.cancel_order.assert_awaited_once_with(881)
        assert storefront.notes[1042] == ["Order cancelled in ERP. DocEntry: 881"]

    def test_cancel_unsynced_order(self, order_sync, erp, storefront):
        storefront.add_order(make_order())

        assert asyncio.run(order_sync.cancel_order_in_erp(1042)) is False
        erp.cancel_order.assert_not_called()

    def test_cancel_failure_is_raised(self, order_sync, erp, storefront):
        storefront.add_order(make_order(erp_doc_entry=881))
        erp.cancel_order.side_effect = ERPError.api("Document is already closed", code="-5006", status_code=400)

        with pytest.raises(ERPError):
            asyncio.run(order_sync.cancel_order_in_erp(1042))

        assert storefront.notes[1042] == ["ERP cancellation failed: Document is already closed"]
