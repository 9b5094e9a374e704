"""
SQLite Store Tests

Validates the persistence layer on a temporary database:
1. Settings key-value round trips
2. Mapping upserts and uniqueness constraints
3. Dead letter lifecycle
4. Audit log append, query and retention
"""

from datetime import datetime, timedelta

import pytest

from core.audit.events import SyncLogger, SyncType
from core.models.sync import (
    CustomerMapping,
    DeadLetterEntry,
    DeadLetterResolution,
    JobGroup,
    JobType,
    OrderMapping,
    ProductMapping,
    SyncLogEntry,
    SyncStatus,
)
from core.storage.stores import MappingConflictError


class TestSettings:

    def test_missing_key(self, store):
        assert store.get_setting("settings") is None

    def test_set_and_overwrite(self, store):
        store.set_setting("settings", '{"company_db": "A"}')
        store.set_setting("settings", '{"company_db": "B"}')

        assert store.get_setting("settings") == '{"company_db": "B"}'

    def test_init_is_idempotent(self, store):
        store.set_setting("k", "v")
        store.init_db()
        assert store.get_setting("k") == "v"


class TestOrderMappings:

    def test_failure_then_success(self, store):
        """A later success keeps the attempt history and records the document."""
        store.upsert_order_mapping(OrderMapping(
            local_order_id=1042,
            sync_status=SyncStatus.FAILED,
            sync_attempts=2,
            last_error="timeout",
        ))
        mapping = store.upsert_order_mapping(OrderMapping(
            local_order_id=1042,
            erp_doc_entry=881,
            erp_doc_num=5001,
            sync_status=SyncStatus.SYNCED,
            sync_attempts=2,
            synced_at=datetime(2024, 3, 1, 12, 0),
        ))

        assert mapping.erp_doc_entry == 881
        assert mapping.sync_status == SyncStatus.SYNCED
        assert mapping.sync_attempts == 2
        assert mapping.last_error is None
        assert mapping.synced_at == datetime(2024, 3, 1, 12, 0)
        assert mapping.is_synced

    def test_recorded_document_survives_a_failure_update(self, store):
        store.upsert_order_mapping(OrderMapping(local_order_id=1, erp_doc_entry=881, sync_status=SyncStatus.SYNCED))
        mapping = store.upsert_order_mapping(OrderMapping(local_order_id=1, sync_status=SyncStatus.FAILED))

        assert mapping.erp_doc_entry == 881

    def test_unknown_order(self, store):
        assert store.get_order_mapping(404) is None


class TestProductMappings:

    def test_upsert_and_lookup(self, store):
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="SKU-001"))

        assert store.get_product_mapping(10).erp_item_code == "SKU-001"
        assert store.get_product_mapping_by_item_code("SKU-001").local_product_id == 10

    def test_item_code_is_unique(self, store):
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="SKU-001"))

        with pytest.raises(MappingConflictError):
            store.upsert_product_mapping(ProductMapping(local_product_id=11, erp_item_code="SKU-001"))

    def test_remap_product(self, store):
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="OLD"))
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="NEW"))

        assert store.get_product_mapping(10).erp_item_code == "NEW"
        assert store.get_product_mapping_by_item_code("OLD") is None

    def test_list_enabled_only(self, store):
        store.upsert_product_mapping(ProductMapping(local_product_id=2, erp_item_code="B"))
        store.upsert_product_mapping(ProductMapping(local_product_id=1, erp_item_code="A"))
        store.upsert_product_mapping(ProductMapping(local_product_id=3, erp_item_code="C", sync_enabled=False))

        assert [m.erp_item_code for m in store.list_product_mappings()] == ["A", "B"]
        assert len(store.list_product_mappings(enabled_only=False)) == 3

    def test_delete(self, store):
        store.upsert_product_mapping(ProductMapping(local_product_id=10, erp_item_code="A"))

        assert store.delete_product_mapping(10) is True
        assert store.delete_product_mapping(10) is False


class TestCustomerMappings:

    def test_lookup_by_id_then_email(self, store):
        store.upsert_customer_mapping(CustomerMapping(local_customer_id=7, email="Jane@Example.com", erp_card_code="C1"))

        assert store.get_customer_mapping(local_customer_id=7).erp_card_code == "C1"
        assert store.get_customer_mapping(email="jane@example.com").erp_card_code == "C1"
        assert store.get_customer_mapping(local_customer_id=8, email="jane@example.com").erp_card_code == "C1"
        assert store.get_customer_mapping() is None

    def test_guest_mapping_gains_customer_id(self, store):
        """A guest email mapping is updated, not duplicated, when the customer registers."""
        store.upsert_customer_mapping(CustomerMapping(email="jane@example.com", erp_card_code="C1"))
        mapping = store.upsert_customer_mapping(CustomerMapping(
            local_customer_id=7,
            email="jane@example.com",
            erp_card_code="C1",
        ))

        assert mapping.local_customer_id == 7
        assert store.get_customer_mapping(local_customer_id=7).email == "jane@example.com"

    def test_email_owned_by_another_customer(self, store):
        store.upsert_customer_mapping(CustomerMapping(local_customer_id=7, email="a@example.com", erp_card_code="C7"))
        store.upsert_customer_mapping(CustomerMapping(local_customer_id=8, email="b@example.com", erp_card_code="C8"))

        with pytest.raises(MappingConflictError):
            store.upsert_customer_mapping(CustomerMapping(local_customer_id=8, email="a@example.com", erp_card_code="C8"))


class TestDeadLetters:

    def entry(self, **kwargs) -> DeadLetterEntry:
        values = {
            "job_type": JobType.ORDER_SYNC,
            "group": JobGroup.ORDERS,
            "payload": {"order_id": 1042},
            "error_message": "ERP unreachable",
            "attempts": 5,
        }
        values.update(kwargs)
        return DeadLetterEntry(**values)

    def test_add_and_get(self, store):
        entry_id = store.add_dead_letter(self.entry())
        entry = store.get_dead_letter(entry_id)

        assert entry.id == entry_id
        assert entry.job_type == JobType.ORDER_SYNC
        assert entry.group == JobGroup.ORDERS
        assert entry.payload == {"order_id": 1042}
        assert entry.attempts == 5
        assert not entry.is_resolved

    def test_unresolved_newest_first(self, store):
        first = store.add_dead_letter(self.entry(failed_at=datetime(2024, 3, 1)))
        second = store.add_dead_letter(self.entry(failed_at=datetime(2024, 3, 2)))

        assert [e.id for e in store.list_unresolved()] == [second, first]
        assert len(store.list_unresolved(limit=1)) == 1

    def test_resolve_once(self, store):
        entry_id = store.add_dead_letter(self.entry())

        assert store.mark_resolved(entry_id, DeadLetterResolution.DISCARDED) is True
        assert store.mark_resolved(entry_id, DeadLetterResolution.RETRIED) is False
        assert store.get_dead_letter(entry_id).resolution == DeadLetterResolution.DISCARDED
        assert store.list_unresolved() == []


class TestSyncLog:

    def test_audit_entries_are_masked(self, store):
        audit = SyncLogger([store])
        audit.error(
            SyncType.ORDER,
            "Order sync failed",
            local_id=1042,
            erp_id=881,
            request={"CardCode": "C1", "Password": "s3cret"},
            response={"code": "-10"},
        )

        entry = store.query(sync_type="order")[0]
        assert entry.erp_id == "881"
        assert entry.status.value == "error"
        assert entry.request_snapshot == {"CardCode": "C1", "Password": "***"}
        assert entry.response_snapshot == {"code": "-10"}

    def test_query_filters(self, store):
        audit = SyncLogger([store])
        audit.success(SyncType.ORDER, "ok", local_id=1)
        audit.error(SyncType.ORDER, "bad", local_id=2)
        audit.success(SyncType.STOCK, "stock ok")

        assert [e.message for e in store.query(sync_type="order")] == ["bad", "ok"]
        assert [e.message for e in store.query(status="success")] == ["stock ok", "ok"]
        assert [e.message for e in store.query(local_id=2)] == ["bad"]
        assert len(store.query(limit=1)) == 1

    def test_prune_by_age(self, store):
        old = SyncLogEntry(sync_type="order", status="info", message="old", created_at=datetime.utcnow() - timedelta(days=40))
        store.append(old)
        SyncLogger([store]).info(SyncType.ORDER, "new")

        removed = SyncLogger([store]).prune(retention_days=30)

        assert removed == 1
        assert [e.message for e in store.query()] == ["new"]
