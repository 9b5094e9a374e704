"""Service Layer HTTP client.

Low-level HTTP client for ERP Service Layer calls.
Handles session cookies, retries, and error classification.

Retry policy (per call, ``RetryConfig.max_attempts`` attempts in total):
- Expired or missing session: refresh the session and retry immediately
- Connection failure: wait ``2^attempt`` seconds (attempt counted from 1)
- Everything else (API rejections, fatal auth errors): raise at once
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp

from connectors.errors import ERPError, ErrorKind
from connectors.service_layer.sl_parser import has_error
from connectors.service_layer.sl_query import ODataQuery, quote_key
from connectors.service_layer.sl_session import (
    TRANSPORT_ERRORS,
    SessionManager,
    classify_transport_error,
    decode_json,
)
from core.observability.logging import mask_sensitive

logger = logging.getLogger(__name__)

Query = Union[ODataQuery, Dict[str, str], None]
Sleep = Callable[[float], Awaitable[Any]]

SNAPSHOT_LIMIT = 2000


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after failed ``attempt`` (1-based)."""
        return self.exponential_base ** attempt


class ServiceLayerClient:
    """HTTP client for the ERP Service Layer.

    Usage:
        client = ServiceLayerClient(session_manager)
        item = await client.get_item("SKU-001")
        order = await client.create_order(payload)
    """

    def __init__(
        self,
        session_manager: SessionManager,
        request_timeout: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
        sleep: Optional[Sleep] = None,
    ):
        """Initialize API client.

        Args:
            session_manager: Provides and refreshes session cookies
            request_timeout: Seconds allowed per request
            retry_config: Retry behavior
            sleep: Awaitable sleep used for backoff (asyncio.sleep by default)
        """
        self.session_manager = session_manager
        self.request_timeout = request_timeout
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def base_url(self) -> str:
        return self.session_manager.config.base_url

    def build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def close(self) -> None:
        await self.session_manager.close()

    # =========================================================================
    # HTTP verbs
    # =========================================================================

    async def get(self, endpoint: str, query: Query = None) -> Dict[str, Any]:
        return await self.request("GET", endpoint, query=query)

    async def post(self, endpoint: str, body: Optional[Dict[str, Any]] = None, query: Query = None) -> Dict[str, Any]:
        return await self.request("POST", endpoint, body=body, query=query)

    async def patch(self, endpoint: str, body: Dict[str, Any], query: Query = None) -> Dict[str, Any]:
        return await self.request("PATCH", endpoint, body=body, query=query)

    async def delete(self, endpoint: str, query: Query = None) -> Dict[str, Any]:
        return await self.request("DELETE", endpoint, query=query)

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
        query: Query = None,
    ) -> Dict[str, Any]:
        """Make an authenticated request with automatic retries.

        Args:
            method: HTTP method
            endpoint: Path relative to the versioned base URL
            body: JSON request body
            query: ODataQuery or prebuilt parameter map

        Returns:
            Decoded response body. 204 yields ``{"success": True}``.

        Raises:
            ERPError: AUTHENTICATION, CONNECTION (after retries) or API
        """
        params = query.build() if isinstance(query, ODataQuery) else (query or None)
        max_attempts = self.retry_config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                return await self._execute(method, endpoint, body, params)
            except ERPError as e:
                if e.kind == ErrorKind.AUTHENTICATION and e.retryable and attempt < max_attempts:
                    logger.warning(
                        f"{method} {endpoint}: {e.code}, refreshing session "
                        f"(attempt {attempt}/{max_attempts})"
                    )
                    await self.session_manager.refresh()
                    continue

                if e.kind == ErrorKind.CONNECTION:
                    if attempt < max_attempts:
                        delay = self.retry_config.get_delay(attempt)
                        logger.warning(
                            f"{method} {endpoint}: {e.message}, retrying in {delay:.0f}s "
                            f"(attempt {attempt}/{max_attempts})"
                        )
                        await self._sleep(delay)
                        continue
                    logger.error(f"{method} {endpoint}: giving up after {attempt} attempts: {e.message}")
                    raise ERPError.max_retries_exceeded(attempt, e) from e

                logger.error(f"{method} {endpoint} failed: [{e.code}] {e.message}")
                raise

        # Only reachable when max_attempts < 1
        raise ERPError.max_retries_exceeded(0)

    async def _execute(
        self,
        method: str,
        endpoint: str,
        body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, str]],
    ) -> Dict[str, Any]:
        session = await self.session_manager.get_session()
        url = self.build_url(endpoint)
        headers = {
            "Cookie": session.cookie_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        logger.debug(
            f"ERP request: {method} {url} params={params or {}} "
            f"body={_snapshot(mask_sensitive(body) if body else None)}"
        )

        try:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            async with self.session_manager.http.request(
                method,
                url,
                headers=headers,
                params=params,
                json=body,
                timeout=timeout,
                ssl=self.session_manager.config.verify_ssl,
            ) as response:
                status = response.status
                text = await response.text()
        except TRANSPORT_ERRORS as e:
            raise classify_transport_error(e, url, self.request_timeout) from e

        logger.debug(f"ERP response: {status} {method} {url} body={_snapshot(text)}")
        return self._handle_response(status, text, url)

    def _handle_response(self, status: int, text: str, url: str) -> Dict[str, Any]:
        if status == 204:
            return {"success": True}

        data = decode_json(text)

        if 200 <= status < 300:
            return data
        if status == 401:
            raise ERPError.session_expired()
        if status == 403:
            raise ERPError.forbidden()
        if status == 404:
            raise ERPError.not_found(url)
        if has_error(data):
            raise ERPError.from_response(data, status)
        raise ERPError.http_status(status)

    # =========================================================================
    # Items
    # =========================================================================

    async def get_items(self, query: Query = None) -> Dict[str, Any]:
        return await self.get("Items", query)

    async def get_item(self, item_code: str, query: Query = None) -> Dict[str, Any]:
        return await self.get(f"Items({quote_key(item_code)})", query)

    async def update_item(self, item_code: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.patch(f"Items({quote_key(item_code)})", data)

    # =========================================================================
    # Orders
    # =========================================================================

    async def get_orders(self, query: Query = None) -> Dict[str, Any]:
        return await self.get("Orders", query)

    async def get_order(self, doc_entry: int, query: Query = None) -> Dict[str, Any]:
        return await self.get(f"Orders({int(doc_entry)})", query)

    async def create_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.post("Orders", data)

    async def cancel_order(self, doc_entry: int) -> Dict[str, Any]:
        return await self.post(f"Orders({int(doc_entry)})/Cancel")

    async def find_orders(self, num_at_card: str) -> Dict[str, Any]:
        """Search sales orders by customer reference number (``NumAtCard``)."""
        query = (
            ODataQuery()
            .select("DocEntry", "DocNum", "NumAtCard", "CardCode", "Cancelled")
            .where_equals("NumAtCard", num_at_card)
            .order_by_desc("DocEntry")
        )
        return await self.get_orders(query)

    # =========================================================================
    # Business partners
    # =========================================================================

    async def get_business_partners(self, query: Query = None) -> Dict[str, Any]:
        return await self.get("BusinessPartners", query)

    async def get_business_partner(self, card_code: str, query: Query = None) -> Dict[str, Any]:
        return await self.get(f"BusinessPartners({quote_key(card_code)})", query)

    async def create_business_partner(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.post("BusinessPartners", data)

    async def update_business_partner(self, card_code: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.patch(f"BusinessPartners({quote_key(card_code)})", data)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def test_connection(self) -> Dict[str, Any]:
        """Log in with the configured credentials and report the outcome."""
        try:
            session = await self.session_manager.login()
        except ERPError as e:
            logger.warning(f"ERP connection test failed: [{e.code}] {e.message}")
            return {"success": False, "message": e.message, "code": e.code}
        return {
            "success": True,
            "message": "Connection successful",
            "session_timeout": session.timeout_minutes,
        }


def _snapshot(value: Any) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) > SNAPSHOT_LIMIT:
        return text[:SNAPSHOT_LIMIT] + "...(truncated)"
    return text
