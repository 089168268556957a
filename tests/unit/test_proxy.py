"""
Unit tests for the downstream reverse proxy and gateway status.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from api_weaver.server.app import create_app
from api_weaver.server.state import ServiceKind


def failing_transport(exc_type):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_type("Connection refused", request=request)

    return httpx.MockTransport(handler)


@pytest.mark.unit
@pytest.mark.http
class TestProxyForwarding:
    """Test request forwarding from the API server."""

    def test_prefix_stripped_and_key_forwarded(self, api_client, auth_headers, upstream_requests):
        """Test that the downstream sees the bare path and the caller's key."""
        response = api_client.get("/api/content/files/README.md", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["port"] == 3001
        assert body["path"] == "/files/README.md"
        assert body["apiKey"] == auth_headers["X-API-KEY"]

    def test_query_key_not_forwarded(self, api_client, config, upstream_requests):
        """Test that api_key is removed from the forwarded query string."""
        response = api_client.get(
            "/api/integration/status", params={"api_key": config.api_key, "verbose": "1"}
        )

        body = response.json()
        assert body["port"] == 3002
        assert body["query"] == {"verbose": "1"}
        assert body["apiKey"] == config.api_key

    def test_body_forwarded(self, api_client, auth_headers, upstream_requests):
        """Test that request bodies reach the downstream unchanged."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}
        api_client.post("/api/content/mcp", headers=auth_headers, json=payload)

        forwarded = upstream_requests[-1]
        assert forwarded.method == "POST"
        assert forwarded.url.path == "/mcp"
        assert b'"tools/list"' in forwarded.content

    def test_proxy_requires_key(self, api_client, upstream_requests):
        """Test that unauthenticated requests never reach the downstream."""
        response = api_client.get("/api/content/files")
        assert response.status_code == 401
        assert upstream_requests == []

    def test_unreachable_downstream(self, config, auth_headers):
        """Test the 503 answer and the outage notification."""
        app = create_app(config, upstream_transport=failing_transport(httpx.ConnectError))
        with TestClient(app) as client:
            response = client.get("/api/content/files", headers=auth_headers)

        assert response.status_code == 503
        assert response.json() == {
            "error": "Content MCP unavailable",
            "message": "Connection refused",
        }
        event = app.state.weaver.notifier.get_history()[0]
        assert event.type == "mcp_unavailable"
        assert event.severity.value == "critical"

    def test_downstream_timeout(self, config, auth_headers):
        """Test the 504 answer on a downstream timeout."""
        app = create_app(config, upstream_transport=failing_transport(httpx.ReadTimeout))
        with TestClient(app) as client:
            response = client.get("/api/integration/mcp/tools", headers=auth_headers)

        assert response.status_code == 504
        assert response.json()["error"] == "Gateway Timeout"


@pytest.mark.unit
@pytest.mark.http
class TestGateway:
    """Test the standalone gateway service."""

    def test_status_reports_online_services(self, config, upstream_transport):
        """Test the public status endpoint."""
        app = create_app(config, ServiceKind.GATEWAY, upstream_transport=upstream_transport)
        with TestClient(app) as client:
            response = client.get("/api/status")

        assert response.status_code == 200
        body = response.json()
        assert body["gateway"] == "online"
        assert [service["status"] for service in body["services"]] == ["online", "online"]
        assert [service["name"] for service in body["services"]] == ["Content MCP", "Integration MCP"]

    def test_status_reports_offline_services(self, config):
        """Test that unreachable services are reported, not raised."""
        app = create_app(
            config, ServiceKind.GATEWAY, upstream_transport=failing_transport(httpx.ConnectError)
        )
        with TestClient(app) as client:
            body = client.get("/api/status").json()

        assert all(service["status"] == "offline" for service in body["services"])
        assert body["services"][0]["error"] == "Connection failed"

    def test_gateway_forwards_with_prefix_stripped(self, config, upstream_transport, auth_headers):
        """Test that the gateway proxies like the API server."""
        app = create_app(config, ServiceKind.GATEWAY, upstream_transport=upstream_transport)
        with TestClient(app) as client:
            response = client.get("/api/content/health", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_gateway_does_not_serve_files(self, config, auth_headers):
        """Test that content routes are absent from the gateway."""
        with TestClient(create_app(config, ServiceKind.GATEWAY)) as client:
            response = client.get("/api/files", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found", "message": "Route /api/files not found"}
