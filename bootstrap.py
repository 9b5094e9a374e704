"""Sync engine wiring.

Builds every component from settings, a storefront gateway, a store and a
secret provider. Used by the worker, the Temporal activity and tests.

Usage:
    store = SQLiteSyncStore()
    store.init_db()
    settings = load_settings(store)
    engine = build_engine(settings, storefront, store, EnvSecretProvider(), InMemoryJobScheduler())
    await engine.events.on_order_created(order)
"""

from dataclasses import dataclass
from typing import Optional

from connectors.service_layer.sl_client import RetryConfig, ServiceLayerClient
from connectors.service_layer.sl_session import SessionManager, SLAuthConfig
from core.audit.events import SyncLogger
from core.config import SyncSettings
from core.observability.logging import configure_logging
from core.observability.metrics import SyncMetrics
from core.security.secrets import SecretProvider
from core.security.session_store import SessionStore
from core.storage.sqlite_store import SQLiteSyncStore
from core.storefront import StorefrontGateway
from events.store_events import StoreEventHandlers
from jobs.manager import QueueManager
from jobs.runner import JobRunner
from jobs.scheduler import JobScheduler
from sync.customer_sync import CustomerSync
from sync.order_sync import OrderSync
from sync.stock_sync import StockSync

PASSWORD_SECRET = "password"


@dataclass
class SyncEngine:
    """All wired components of one sync engine instance."""
    settings: SyncSettings
    client: ServiceLayerClient
    audit: SyncLogger
    metrics: SyncMetrics
    customer_sync: CustomerSync
    order_sync: OrderSync
    stock_sync: StockSync
    queue: QueueManager
    runner: JobRunner
    events: StoreEventHandlers

    async def close(self) -> None:
        await self.client.close()


def build_auth_config(settings: SyncSettings, secrets: SecretProvider) -> SLAuthConfig:
    """Connection identity from settings plus the password from the secret provider.

    Raises:
        SecretNotFoundError: If no password is configured
    """
    return SLAuthConfig(
        service_url=settings.service_url,
        company_db=settings.company_db,
        username=settings.username,
        password=secrets.get_secret(PASSWORD_SECRET),
        api_version=settings.api_version,
        login_timeout=settings.login_timeout,
        logout_timeout=settings.logout_timeout,
        verify_ssl=settings.verify_ssl,
    )


def build_engine(
    settings: SyncSettings,
    storefront: StorefrontGateway,
    store: SQLiteSyncStore,
    secrets: SecretProvider,
    scheduler: JobScheduler,
    session_store: Optional[SessionStore] = None,
    client: Optional[ServiceLayerClient] = None,
) -> SyncEngine:
    """Wire a sync engine.

    Args:
        settings: Engine settings
        storefront: Storefront accessor
        store: Settings, mapping, dead letter and audit log persistence
        secrets: Source of the ERP password
        scheduler: Job scheduler backend
        session_store: Session cache (in-memory if omitted)
        client: Prebuilt ERP client, bypassing the auth config

    Returns:
        SyncEngine with every component wired
    """
    configure_logging(settings.log_level, json_format=settings.log_json)

    if client is None:
        session_manager = SessionManager(build_auth_config(settings, secrets), store=session_store)
        client = ServiceLayerClient(
            session_manager,
            request_timeout=settings.request_timeout,
            retry_config=RetryConfig(max_attempts=settings.max_attempts),
        )

    audit = SyncLogger([store])
    metrics = SyncMetrics()

    customer_sync = CustomerSync(client, store, settings, audit=audit)
    order_sync = OrderSync(client, storefront, store, settings, customer_sync=customer_sync, audit=audit)
    stock_sync = StockSync(client, storefront, store, settings, audit=audit, metrics=metrics)
    queue = QueueManager(scheduler, store, settings, audit=audit, metrics=metrics)
    runner = JobRunner(queue, order_sync, stock_sync, metrics=metrics)
    events = StoreEventHandlers(queue, storefront, store, settings)

    return SyncEngine(
        settings=settings,
        client=client,
        audit=audit,
        metrics=metrics,
        customer_sync=customer_sync,
        order_sync=order_sync,
        stock_sync=stock_sync,
        queue=queue,
        runner=runner,
        events=events,
    )
