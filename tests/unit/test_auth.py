"""
Unit tests for API key authentication.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from api_weaver.config import Config
from api_weaver.middleware.auth import STATIC_SUFFIXES, AuthGate, AuthStatus
from api_weaver.notifications import NotificationManager
from api_weaver.server.app import create_app

API_KEY = "s3cret-key"


def make_request(path, headers=None, query=b""):
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "client": ("203.0.113.5", 40000),
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


@pytest.fixture
def notifier(clean_env):
    return NotificationManager(Config(notification_console=False))


@pytest.fixture
def gate(notifier):
    return AuthGate(
        api_key=API_KEY,
        public_paths=("/", "/health"),
        public_prefixes=("/docs",),
        static_suffixes=STATIC_SUFFIXES,
        notifier=notifier,
    )


@pytest.mark.unit
class TestAuthGate:
    """Test the authentication decision."""

    def test_public_paths(self, gate):
        """Test exact, prefix and static-asset public paths."""
        assert gate.is_public("/") is True
        assert gate.is_public("/health") is True
        assert gate.is_public("/docs/oauth2-redirect") is True
        assert gate.is_public("/assets/app.js") is True
        assert gate.is_public("/api/files/app.js") is False
        assert gate.is_public("/api/files") is False

    @pytest.mark.asyncio
    async def test_header_key_passes(self, gate):
        """Test the X-API-KEY header."""
        result = await gate.authenticate(make_request("/api/files", {"X-API-KEY": API_KEY}))
        assert result.status is AuthStatus.PASS
        assert result.api_key == API_KEY
        assert result.to_response() is None

    @pytest.mark.asyncio
    async def test_query_key_passes(self, gate):
        """Test the api_key query parameter."""
        result = await gate.authenticate(make_request("/api/files", query=f"api_key={API_KEY}".encode()))
        assert result.status is AuthStatus.PASS

    @pytest.mark.asyncio
    async def test_missing_key(self, gate, notifier):
        """Test the 401 path and its notification."""
        result = await gate.authenticate(make_request("/api/files"))

        assert result.status is AuthStatus.UNAUTHORIZED
        assert result.to_response().status_code == 401
        event = notifier.get_history()[0]
        assert event.type == "api_key_misuse"
        assert event.metadata["ip"] == "203.0.113.5"
        assert event.metadata["reason"] == "missing"
        assert event.title == "API Key Missing"

    @pytest.mark.asyncio
    async def test_wrong_key(self, gate, notifier):
        """Test the 403 path."""
        result = await gate.authenticate(make_request("/api/files", {"X-API-KEY": "nope"}))

        assert result.status is AuthStatus.FORBIDDEN
        assert result.to_response().status_code == 403
        event = notifier.get_history()[0]
        assert event.metadata["reason"] == "invalid"
        assert event.title == "API Key Invalid"

    @pytest.mark.asyncio
    async def test_rejection_does_not_wait_for_webhook(self, clean_env):
        """Test that a slow webhook never delays the 401 answer."""
        release = asyncio.Event()
        delivered = []

        async def slow_webhook(request: httpx.Request) -> httpx.Response:
            await release.wait()
            delivered.append(request)
            return httpx.Response(200)

        notifier = NotificationManager(
            Config(notification_console=False, notification_webhook_url="https://hooks.example.com/alerts"),
            webhook_transport=httpx.MockTransport(slow_webhook),
        )
        gate = AuthGate(api_key=API_KEY, notifier=notifier)

        result = await asyncio.wait_for(gate.authenticate(make_request("/api/files")), timeout=1)

        assert result.status is AuthStatus.UNAUTHORIZED
        assert notifier.get_history()[0].metadata["reason"] == "missing"
        assert delivered == []

        release.set()
        await notifier.drain()
        assert len(delivered) == 1
        assert notifier.get_history()[0].sent is True

    @pytest.mark.asyncio
    async def test_server_without_key(self):
        """Test that a missing server key refuses protected routes with 500."""
        gate = AuthGate(api_key=None)
        result = await gate.authenticate(make_request("/api/files", {"X-API-KEY": "anything"}))
        assert result.status is AuthStatus.MISCONFIGURED
        assert result.to_response().status_code == 500

    @pytest.mark.asyncio
    async def test_public_path_without_server_key(self):
        """Test that public paths work even when no key is configured."""
        result = await AuthGate(api_key=None).authenticate(make_request("/health"))
        assert result.status is AuthStatus.PASS


@pytest.mark.unit
@pytest.mark.http
class TestAuthMiddleware:
    """Test authentication through the application."""

    def test_missing_key_body(self, config):
        """Test the 401 body."""
        with TestClient(create_app(config)) as client:
            response = client.get("/api/files")

        assert response.status_code == 401
        assert response.json() == {
            "error": "Unauthorized",
            "message": "Missing X-API-KEY header or api_key query parameter",
        }

    def test_invalid_key_body(self, config):
        """Test the 403 body."""
        with TestClient(create_app(config)) as client:
            response = client.get("/api/files", headers={"X-API-KEY": "wrong"})

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden", "message": "Invalid API key"}

    def test_unconfigured_key_body(self, project_root, clean_env):
        """Test the 500 body when the server has no key."""
        app = create_app(Config(project_root=str(project_root)))
        with TestClient(app) as client:
            response = client.get("/api/files", headers={"X-API-KEY": "anything"})
            health = client.get("/health")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Server Configuration Error",
            "message": "API_KEY not configured on server",
        }
        assert health.status_code == 200

    def test_public_stats_without_key(self, config):
        """Test that stats and logs are readable without a key."""
        with TestClient(create_app(config)) as client:
            assert client.get("/api/stats").status_code == 200
            assert client.get("/api/logs").status_code == 200

    def test_query_parameter_key(self, config, project_root):
        """Test authenticating with the query parameter."""
        with TestClient(create_app(config)) as client:
            response = client.get("/api/files", params={"api_key": config.api_key})
        assert response.status_code == 200
