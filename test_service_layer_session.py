"""
Service Layer Session Tests

Validates the session lifecycle against a faked HTTP transport:
1. Login caches the session for the ERP timeout minus 5 minutes
2. Concurrent callers share one login
3. Login failures are classified (credentials, ERP error body, transport)
4. Refresh and logout replace or clear the cached session
"""

import asyncio
import hashlib

import aiohttp
import pytest

from conftest import FakeHttp, FakeResponse, login_response
from connectors.errors import ERPError, ErrorKind, INVALID_CREDENTIALS, MALFORMED_SESSION, TIMEOUT, UNREACHABLE
from connectors.service_layer.sl_session import SessionManager, SLSession
from core.security.session_store import InMemorySessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSessionLifecycle:
    """Login, caching and expiry."""

    def test_login_posts_credentials_and_caches(self, auth_config):
        """First get_session logs in; the second is served from the cache."""
        http = FakeHttp([login_response("sess-1", timeout=30)])
        manager = SessionManager(auth_config, http=http)

        async def run():
            first = await manager.get_session()
            second = await manager.get_session()
            return first, second

        first, second = asyncio.run(run())

        assert first is second
        assert first.session_id == "sess-1"
        assert first.route_id == ".node1"
        assert len(http.calls) == 1
        call = http.calls[0]
        assert call["url"] == "https://erp.example.com:50000/b1s/v1/Login"
        assert call["json"] == {"CompanyDB": "SBODEMO", "UserName": "manager", "Password": "s3cret"}

    def test_cache_ttl_is_timeout_minus_buffer(self, auth_config):
        """A 30 minute ERP session is cached for 25 minutes."""
        clock = FakeClock()
        http = FakeHttp([login_response("sess-1", timeout=30), login_response("sess-2", timeout=30)])
        manager = SessionManager(auth_config, http=http, store=InMemorySessionStore(clock=clock))

        async def run():
            first = await manager.get_session()
            clock.now += 25 * 60 - 1
            still_cached = await manager.get_session()
            clock.now += 2
            renewed = await manager.get_session()
            return first, still_cached, renewed

        first, still_cached, renewed = asyncio.run(run())

        assert first.cache_minutes == 25
        assert still_cached.session_id == "sess-1"
        assert renewed.session_id == "sess-2"
        assert len(http.calls) == 2

    def test_short_timeout_caches_at_least_one_minute(self):
        session = SLSession(session_id="x", timeout_minutes=3)
        assert session.cache_minutes == 1

    def test_cookie_header_includes_route(self):
        session = SLSession(session_id="abc", route_id=".node2")
        assert session.cookie_header == "B1SESSION=abc; ROUTEID=.node2"
        assert SLSession(session_id="abc").cookie_header == "B1SESSION=abc"

    def test_cache_key_is_connection_identity_hash(self, auth_config):
        identity = "https://erp.example.com:50000SBODEMOmanager"
        expected = "session_" + hashlib.md5(identity.encode("utf-8")).hexdigest()
        assert auth_config.cache_key == expected

    def test_concurrent_callers_share_one_login(self, auth_config):
        """Only one login request is made when many callers race."""
        http = FakeHttp([login_response("sess-1")])
        manager = SessionManager(auth_config, http=http)

        async def run():
            return await asyncio.gather(*[manager.get_session() for _ in range(5)])

        sessions = asyncio.run(run())

        assert {s.session_id for s in sessions} == {"sess-1"}
        assert len(http.calls) == 1

    def test_session_id_from_body_when_cookie_missing(self, auth_config):
        http = FakeHttp([FakeResponse(200, {"SessionId": "from-body", "SessionTimeout": 30})])
        manager = SessionManager(auth_config, http=http)

        session = asyncio.run(manager.get_session())

        assert session.session_id == "from-body"
        assert session.route_id is None


class TestLoginFailures:
    """Error classification during login."""

    def test_rejected_credentials(self, auth_config):
        http = FakeHttp([FakeResponse(401, {"error": {"code": -304, "message": "Fail to get DB Credentials"}})])
        manager = SessionManager(auth_config, http=http)

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.kind == ErrorKind.AUTHENTICATION
        assert exc_info.value.code == INVALID_CREDENTIALS
        assert exc_info.value.retryable is False
        assert not manager.has_cached_session()

    def test_error_body_message_is_used(self, auth_config):
        body = {"error": {"code": -5002, "message": {"lang": "en-us", "value": "Company not available"}}}
        manager = SessionManager(auth_config, http=FakeHttp([FakeResponse(400, body)]))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.kind == ErrorKind.AUTHENTICATION
        assert exc_info.value.message == "Company not available"
        assert exc_info.value.code == "-5002"
        assert exc_info.value.status_code == 400

    def test_error_without_body(self, auth_config):
        manager = SessionManager(auth_config, http=FakeHttp([FakeResponse(500, "")]))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.message == "Login failed"

    def test_missing_session_token(self, auth_config):
        manager = SessionManager(auth_config, http=FakeHttp([FakeResponse(200, {"SessionTimeout": 30})]))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.code == MALFORMED_SESSION

    def test_unreachable_server(self, auth_config):
        http = FakeHttp([aiohttp.ClientConnectionError("connection refused")])
        manager = SessionManager(auth_config, http=http)

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.kind == ErrorKind.CONNECTION
        assert exc_info.value.code == UNREACHABLE
        assert exc_info.value.retryable is True

    def test_login_timeout(self, auth_config):
        manager = SessionManager(auth_config, http=FakeHttp([asyncio.TimeoutError()]))

        with pytest.raises(ERPError) as exc_info:
            asyncio.run(manager.get_session())

        assert exc_info.value.code == TIMEOUT
        assert "30 seconds" in exc_info.value.message


class TestRefreshAndLogout:
    """Forced refresh and logout."""

    def test_refresh_replaces_cached_session(self, auth_config):
        http = FakeHttp([login_response("sess-1"), login_response("sess-2")])
        manager = SessionManager(auth_config, http=http)

        async def run():
            await manager.get_session()
            await manager.refresh()
            return await manager.get_session()

        session = asyncio.run(run())

        assert session.session_id == "sess-2"
        assert len(http.calls) == 2

    def test_logout_clears_cache(self, auth_config):
        http = FakeHttp([login_response("sess-1"), FakeResponse(204)])
        manager = SessionManager(auth_config, http=http)

        async def run():
            await manager.get_session()
            return await manager.logout()

        ok = asyncio.run(run())

        assert ok is True
        assert not manager.has_cached_session()
        logout_call = http.calls[1]
        assert logout_call["url"].endswith("/b1s/v1/Logout")
        assert logout_call["headers"]["Cookie"] == "B1SESSION=sess-1; ROUTEID=.node1"

    def test_logout_failure_still_clears_cache(self, auth_config):
        http = FakeHttp([login_response("sess-1"), aiohttp.ClientConnectionError("reset")])
        manager = SessionManager(auth_config, http=http)

        async def run():
            await manager.get_session()
            return await manager.logout()

        assert asyncio.run(run()) is False
        assert not manager.has_cached_session()

    def test_logout_without_session_is_noop(self, auth_config):
        http = FakeHttp()
        manager = SessionManager(auth_config, http=http)

        assert asyncio.run(manager.logout()) is True
        assert http.calls == []
