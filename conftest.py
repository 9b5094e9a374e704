"""Shared test fixtures and fakes."""

import json
import sys
from datetime import datetime
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from connectors.service_layer.sl_client import ServiceLayerClient
from connectors.service_layer.sl_session import SLAuthConfig
from core.audit.events import InMemorySyncLogBackend, SyncLogger
from core.config import SyncSettings
from core.models.store import StoreAddress, StoreOrder, StoreOrderLine, StoreProduct
from core.storage.sqlite_store import SQLiteSyncStore
from core.storefront import InMemoryStorefront


# =============================================================================
# HTTP fakes
# =============================================================================

class FakeResponse:
    """Stand-in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, body: Any = None, cookies: Optional[Dict[str, str]] = None):
        self.status = status
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)
        self.cookies = SimpleCookie()
        for name, value in (cookies or {}).items():
            self.cookies[name] = value

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeHttp:
    """Stand-in for aiohttp.ClientSession replaying queued responses.

    Queue entries are FakeResponse objects or exceptions to raise.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, call: Dict[str, Any]) -> FakeResponse:
        self.calls.append(call)
        if not self.responses:
            raise AssertionError(f"Unexpected HTTP call: {call['method']} {call['url']}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._next({"method": "POST", "url": url, **kwargs})

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        return self._next({"method": method, "url": url, **kwargs})

    async def close(self) -> None:
        self.closed = True


def login_response(session_id: str = "sess-1", timeout: int = 30, route_id: Optional[str] = ".node1") -> FakeResponse:
    cookies = {"B1SESSION": session_id}
    if route_id:
        cookies["ROUTEID"] = route_id
    return FakeResponse(200, {"SessionId": session_id, "SessionTimeout": timeout}, cookies=cookies)


# =============================================================================
# Domain factories
# =============================================================================

def make_product(product_id: int = 10, sku: Optional[str] = "SKU-001", **kwargs) -> StoreProduct:
    kwargs.setdefault("name", f"Product {product_id}")
    return StoreProduct(id=product_id, sku=sku, **kwargs)


def make_address(**kwargs) -> StoreAddress:
    values = {
        "first_name": "Jane",
        "last_name": "Doe",
        "address_1": "1 Main St",
        "city": "Springfield",
        "postcode": "12345",
        "country": "US",
        "email": "jane@example.com",
        "phone": "555-0100",
    }
    values.update(kwargs)
    return StoreAddress(**values)


def make_order(
    order_id: int = 1042,
    customer_id: Optional[int] = 7,
    lines: Optional[List[StoreOrderLine]] = None,
    billing: Optional[StoreAddress] = None,
    **kwargs,
) -> StoreOrder:
    if lines is None:
        lines = [StoreOrderLine(item_id=1, name="Widget", product=make_product(), quantity=2, subtotal=20, total=18)]
    kwargs.setdefault("status", "processing")
    kwargs.setdefault("created_at", datetime(2024, 3, 1, 10, 0))
    kwargs.setdefault("currency", "USD")
    return StoreOrder(
        id=order_id,
        number=str(order_id),
        customer_id=customer_id,
        billing=billing or make_address(),
        lines=lines,
        **kwargs,
    )


def collection(*items: Dict[str, Any]) -> Dict[str, Any]:
    return {"odata.metadata": "$metadata#Items", "value": list(items)}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        service_url="https://erp.example.com:50000",
        company_db="SBODEMO",
        username="manager",
    )


@pytest.fixture
def auth_config() -> SLAuthConfig:
    return SLAuthConfig(
        service_url="https://erp.example.com:50000",
        company_db="SBODEMO",
        username="manager",
        password="s3cret",
    )


@pytest.fixture
def store(tmp_path) -> SQLiteSyncStore:
    sqlite_store = SQLiteSyncStore(tmp_path / "sync.db")
    sqlite_store.init_db()
    return sqlite_store


@pytest.fixture
def audit_backend() -> InMemorySyncLogBackend:
    return InMemorySyncLogBackend()


@pytest.fixture
def audit(audit_backend) -> SyncLogger:
    return SyncLogger([audit_backend])


@pytest.fixture
def storefront() -> InMemoryStorefront:
    return InMemoryStorefront()


@pytest.fixture
def erp() -> MagicMock:
    """ERP client double. Async methods are AsyncMocks."""
    return MagicMock(spec=ServiceLayerClient)
