"""Service Layer session manager.

Handles cookie-based authentication against the ERP:
- Login with company database, username and password
- Session caching with a TTL derived from the ERP-reported timeout
- Forced refresh and best-effort logout

The session is the only shared mutable state between concurrent callers.
Logins are serialized by an asyncio lock, so a refresh makes later callers
wait for the new session instead of racing it.
"""

import asyncio
import hashlib
import json
import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import aiohttp

from connectors.errors import ERPError
from connectors.service_layer.sl_parser import has_error, parse_error
from core.security.session_store import InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "B1SESSION"
ROUTE_COOKIE = "ROUTEID"
DEFAULT_SESSION_TIMEOUT = 30  # minutes
SESSION_BUFFER_MINUTES = 5


@dataclass
class SLAuthConfig:
    """Connection identity and timeouts for the Service Layer.

    Attributes:
        service_url: Server root, e.g. https://erp.example.com:50000
        company_db: Company database to log into
        username: Service Layer user
        password: Plain password, resolved from a secret provider
        api_version: Versioned path segment (v1 or v2)
        login_timeout: Seconds allowed for the login call
        logout_timeout: Seconds allowed for the logout call
        verify_ssl: Verify the server certificate
    """
    service_url: str
    company_db: str
    username: str
    password: str = field(repr=False, default="")
    api_version: str = "v1"
    login_timeout: float = 30.0
    logout_timeout: float = 10.0
    verify_ssl: bool = True

    @property
    def base_url(self) -> str:
        return f"{self.service_url.rstrip('/')}/b1s/{self.api_version}"

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/Login"

    @property
    def logout_url(self) -> str:
        return f"{self.base_url}/Logout"

    @property
    def cache_key(self) -> str:
        identity = f"{self.service_url}{self.company_db}{self.username}"
        return "session_" + hashlib.md5(identity.encode("utf-8")).hexdigest()


@dataclass
class SLSession:
    """Authenticated session cookies with expiry tracking."""
    session_id: str
    route_id: Optional[str] = None
    timeout_minutes: int = DEFAULT_SESSION_TIMEOUT
    obtained_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def cache_minutes(self) -> int:
        """Cache lifetime: ERP timeout minus a safety buffer, at least 1 minute."""
        return max(1, self.timeout_minutes - SESSION_BUFFER_MINUTES)

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(minutes=self.cache_minutes)

    @property
    def cookies(self) -> Dict[str, str]:
        cookies = {SESSION_COOKIE: self.session_id}
        if self.route_id:
            cookies[ROUTE_COOKIE] = self.route_id
        return cookies

    @property
    def cookie_header(self) -> str:
        """Render cookies as a ``Cookie`` header value."""
        return format_cookies(self.cookies)


def format_cookies(cookies: Dict[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


def classify_transport_error(exc: BaseException, url: str, timeout: float) -> ERPError:
    """Map an aiohttp/asyncio failure onto a connection error."""
    if isinstance(exc, asyncio.TimeoutError):
        return ERPError.timeout(url, timeout)
    if isinstance(exc, (aiohttp.ClientSSLError, ssl.SSLError)):
        return ERPError.ssl_error(url, str(exc))
    return ERPError.unreachable(url, str(exc) or type(exc).__name__)


TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ssl.SSLError)


class SessionManager:
    """Session lifecycle for the Service Layer.

    Usage:
        manager = SessionManager(SLAuthConfig(...))
        session = await manager.get_session()
        headers = {"Cookie": session.cookie_header}
    """

    def __init__(
        self,
        config: SLAuthConfig,
        http: Optional[aiohttp.ClientSession] = None,
        store: Optional[SessionStore] = None,
    ):
        """Initialize session manager.

        Args:
            config: Connection identity and timeouts
            http: Shared aiohttp session (created lazily if omitted)
            store: TTL cache for sessions (in-memory if omitted)
        """
        self.config = config
        self.store = store or InMemorySessionStore()
        self._http = http
        self._owns_http = http is None
        self._lock = asyncio.Lock()

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def get_session(self) -> SLSession:
        """Return the cached session, logging in if there is none."""
        cached = self.store.get(self.config.cache_key)
        if cached is not None:
            return cached

        async with self._lock:
            # Another caller may have logged in while we waited.
            cached = self.store.get(self.config.cache_key)
            if cached is not None:
                return cached
            return await self._login()

    async def login(self) -> SLSession:
        """Always authenticate, replacing any cached session."""
        async with self._lock:
            return await self._login()

    async def refresh(self) -> SLSession:
        """Discard the cached session and log in again."""
        async with self._lock:
            self.store.delete(self.config.cache_key)
            logger.info("Refreshing ERP session")
            return await self._login()

    async def logout(self) -> bool:
        """Invalidate the server-side session. The local cache is always cleared.

        Returns:
            True if the ERP acknowledged the logout
        """
        session = self.store.get(self.config.cache_key)
        if session is None:
            return True

        url = self.config.logout_url
        try:
            timeout = aiohttp.ClientTimeout(total=self.config.logout_timeout)
            async with self.http.post(
                url,
                headers={"Cookie": session.cookie_header},
                timeout=timeout,
                ssl=self.config.verify_ssl,
            ) as response:
                ok = response.status < 400
                if not ok:
                    logger.warning(f"ERP logout returned status {response.status}")
                return ok
        except TRANSPORT_ERRORS as e:
            logger.warning(f"ERP logout failed: {type(e).__name__}: {e}")
            return False
        finally:
            self.store.delete(self.config.cache_key)

    def has_cached_session(self) -> bool:
        return self.store.has(self.config.cache_key)

    def clear_session(self) -> None:
        self.store.delete(self.config.cache_key)

    # =========================================================================
    # Login
    # =========================================================================

    async def _login(self) -> SLSession:
        url = self.config.login_url
        payload = {
            "CompanyDB": self.config.company_db,
            "UserName": self.config.username,
            "Password": self.config.password,
        }
        logger.debug(f"ERP login: {url} (company={self.config.company_db}, user={self.config.username})")

        try:
            timeout = aiohttp.ClientTimeout(total=self.config.login_timeout)
            async with self.http.post(
                url,
                json=payload,
                timeout=timeout,
                ssl=self.config.verify_ssl,
            ) as response:
                status = response.status
                text = await response.text()
                session_cookie = response.cookies.get(SESSION_COOKIE)
                route_cookie = response.cookies.get(ROUTE_COOKIE)
        except TRANSPORT_ERRORS as e:
            error = classify_transport_error(e, url, self.config.login_timeout)
            logger.error(f"ERP login failed: {error.message}")
            raise error from e

        body = decode_json(text)

        if status in (401, 403):
            logger.error(f"ERP login rejected with status {status}")
            raise ERPError.invalid_credentials()

        if status >= 400:
            message, code = "Login failed", "LOGIN_FAILED"
            if has_error(body):
                info = parse_error(body)
                message, code = info.message, info.code
            logger.error(f"ERP login failed ({status}): {message}")
            raise ERPError.authentication(message, code, status_code=status)

        session_id = session_cookie.value if session_cookie is not None else body.get("SessionId")
        if not session_id:
            logger.error("ERP login response did not include a session token")
            raise ERPError.malformed_session()

        try:
            timeout_minutes = int(body.get("SessionTimeout", DEFAULT_SESSION_TIMEOUT))
        except (TypeError, ValueError):
            timeout_minutes = DEFAULT_SESSION_TIMEOUT

        session = SLSession(
            session_id=session_id,
            route_id=route_cookie.value if route_cookie is not None else None,
            timeout_minutes=timeout_minutes,
        )
        self.store.set(self.config.cache_key, session, session.cache_minutes * 60)
        logger.info(
            f"ERP session established (timeout={timeout_minutes}m, cached for {session.cache_minutes}m)"
        )
        return session


def decode_json(text: str) -> Dict[str, Any]:
    """Decode a JSON object body, tolerating empty or non-object content."""
    if not text:
        return {}
    try:
        decoded = json.loads(text)
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}
