"""
Engine Wiring Tests

Drives a fully wired engine with an in-memory scheduler and a mocked ERP client:
1. Auth config is assembled from settings and the secret provider
2. A new order flows from the storefront event through the queue into the ERP
3. Cancelling a synced order cancels the ERP document
4. A connection failure is rescheduled with backoff
5. TLS settings for the Temporal client
"""

import asyncio
import logging
from datetime import datetime

import pytest

from bootstrap import build_auth_config, build_engine
from conftest import make_order
from connectors.errors import ERPError
from core.models.sync import JobType, SyncStatus
from core.security.secrets import SecretNotFoundError, StaticSecretProvider
from jobs.runner import STATUS_RETRYING, STATUS_SUCCEEDED
from jobs.scheduler import InMemoryJobScheduler
from temporal_client import build_tls_config


@pytest.fixture
def scheduler():
    return InMemoryJobScheduler(clock=lambda: datetime(2024, 3, 1, 12, 0))


@pytest.fixture
def engine(settings, storefront, store, scheduler, erp):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    engine = build_engine(
        settings,
        storefront,
        store,
        StaticSecretProvider({"password": "s3cret"}),
        scheduler,
        client=erp,
    )
    yield engine
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def run_due(engine, scheduler):
    """Run every due job the way the local worker does."""
    results = []
    for job in scheduler.claim_due():
        try:
            results.append(asyncio.run(engine.runner.run(job)))
        finally:
            scheduler.complete(job.id)
    return results


class TestWiring:

    def test_auth_config(self, settings):
        config = build_auth_config(settings, StaticSecretProvider({"password": "s3cret"}))

        assert config.service_url == "https://erp.example.com:50000"
        assert config.company_db == "SBODEMO"
        assert config.username == "manager"
        assert config.password == "s3cret"

    def test_missing_password(self, settings, storefront, store, scheduler):
        with pytest.raises(SecretNotFoundError):
            build_engine(settings, storefront, store, StaticSecretProvider({}), scheduler)

    def test_components_share_the_queue(self, engine):
        assert engine.runner.queue is engine.queue
        assert engine.events.queue is engine.queue
        assert engine.order_sync.customer_sync is engine.customer_sync


class TestOrderFlow:

    def test_new_order_reaches_the_erp(self, engine, scheduler, storefront, store, erp):
        """Order event -> queued job -> customer created -> sales order posted."""
        order = make_order()
        storefront.add_order(order)
        erp.get_business_partners.return_value = {"value": []}
        erp.create_business_partner.return_value = {"CardCode": "WEB000007"}
        erp.create_order.return_value = {"DocEntry": 881, "DocNum": 5001}

        job = asyncio.run(engine.events.on_order_created(order))
        assert job.job_type == JobType.ORDER_SYNC

        results = run_due(engine, scheduler)

        assert [r.status for r in results] == [STATUS_SUCCEEDED]
        assert erp.create_order.await_args.args[0]["CardCode"] == "WEB000007"
        assert store.get_customer_mapping(local_customer_id=7).erp_card_code == "WEB000007"
        assert store.get_order_mapping(1042).sync_status == SyncStatus.SYNCED
        assert storefront.orders[1042].erp_doc_entry == 881
        assert engine.metrics.get_summary()["jobs"]["succeeded"] == 1

    def test_cancelled_order_is_cancelled_in_erp(self, engine, scheduler, storefront, store, erp):
        storefront.add_order(make_order())
        erp.get_business_partners.return_value = {"value": [{"CardCode": "C0001"}]}
        erp.create_order.return_value = {"DocEntry": 881, "DocNum": 5001}
        asyncio.run(engine.events.on_order_created(storefront.orders[1042]))
        run_due(engine, scheduler)

        job = asyncio.run(engine.events.on_order_status_changed(storefront.orders[1042], "processing", "cancelled"))
        assert job.job_type == JobType.ORDER_CANCEL

        results = run_due(engine, scheduler)

        assert results[0].status == STATUS_SUCCEEDED
        erp.cancel_order.assert_awaited_once_with(881)
        assert storefront.notes[1042][-1] == "Order cancelled in ERP. DocEntry: 881"

    def test_connection_failure_is_retried_later(self, engine, scheduler, storefront, store, erp):
        storefront.add_order(make_order())
        erp.get_business_partners.return_value = {"value": [{"CardCode": "C0001"}]}
        erp.create_order.side_effect = ERPError.unreachable("https://erp.example.com:50000", "refused")
        asyncio.run(engine.events.on_order_created(storefront.orders[1042]))

        results = run_due(engine, scheduler)

        assert results[0].status == STATUS_RETRYING
        [retry] = scheduler.pending_jobs()
        assert retry.retry_count == 1
        assert retry.scheduled_at == datetime(2024, 3, 1, 12, 2)
        assert store.get_order_mapping(1042).sync_status == SyncStatus.FAILED
        assert run_due(engine, scheduler) == []


class TestTemporalTls:

    def test_no_certificate(self):
        assert build_tls_config(None, None) is None

    def test_certificate_and_key(self, tmp_path):
        cert, key = tmp_path / "client.pem", tmp_path / "client.key"
        cert.write_bytes(b"CERT")
        key.write_bytes(b"KEY")

        tls = build_tls_config(str(cert), str(key))

        assert tls.client_cert == b"CERT"
        assert tls.client_private_key == b"KEY"

    def test_half_configured(self, tmp_path):
        with pytest.raises(ValueError):
            build_tls_config(str(tmp_path / "client.pem"), None)
