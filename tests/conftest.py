"""
Pytest configuration and shared fixtures for API Weaver tests.

This module provides common test fixtures and configuration for both
unit and integration tests.
"""

import tempfile
from pathlib import Path

import httpx
import pytest

TEST_API_KEY = "test-api-key-0123456789"

# Every variable Config reads; cleared so the host shell cannot leak in
CONFIG_ENV_VARS = (
    "API_KEY",
    "PROJECT_ROOT",
    "SERVER_NAME",
    "SERVER_VERSION",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "LOG_DIR",
    "RATE_LIMIT_DISABLED",
    "RATE_LIMIT_MAX_REQUESTS",
    "RATE_LIMIT_WINDOW_MINUTES",
    "COMMAND_TIMEOUT_MS",
    "COMMAND_MAX_OUTPUT",
    "CONTENT_MCP_HOST",
    "CONTENT_MCP_PORT",
    "INTEGRATION_MCP_HOST",
    "INTEGRATION_MCP_PORT",
    "GATEWAY_PORT",
    "PROXY_TIMEOUT",
    "SSE_KEEPALIVE_INTERVAL",
    "NOTIFICATIONS_ENABLED",
    "NOTIFICATION_MIN_SEVERITY",
    "NOTIFICATION_CONSOLE",
    "NOTIFICATION_WEBHOOK_URL",
    "WEBHOOK_TIMEOUT",
    "GITHUB_TOKEN",
    "VERCEL_TOKEN",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "N8N_URL",
    "N8N_API_KEY",
    "GOOGLE_CLOUD_PROJECT_ID",
    "GOOGLE_CLOUD_ACCESS_TOKEN",
    "REMOTE_TIMEOUT",
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_root(temp_dir):
    """A small project tree with a hidden file and a node_modules directory."""
    (temp_dir / "README.md").write_text("# Sample project\n")
    (temp_dir / "src" / "lib").mkdir(parents=True)
    (temp_dir / "src" / "app.js").write_text("console.log('hello');\n")
    (temp_dir / "src" / "lib" / "util.js").write_text("export const answer = 42;\n")
    (temp_dir / ".env").write_text("SECRET=1\n")
    (temp_dir / "node_modules" / "left-pad").mkdir(parents=True)
    (temp_dir / "node_modules" / "left-pad" / "index.js").write_text("module.exports = {};\n")
    return temp_dir


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration variable from the environment."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(project_root, clean_env):
    """Config rooted at the sample project with a known API key."""
    from api_weaver.config import Config

    return Config(api_key=TEST_API_KEY, project_root=str(project_root))


@pytest.fixture
def auth_headers():
    """Headers carrying the valid test API key."""
    return {"X-API-KEY": TEST_API_KEY}


@pytest.fixture
def upstream_requests():
    """Requests seen by the mock downstream services."""
    return []


@pytest.fixture
def upstream_transport(upstream_requests):
    """Mock downstream service that echoes what it received."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(
            200,
            json={
                "upstream": request.url.host,
                "port": request.url.port,
                "path": request.url.path,
                "query": dict(request.url.params),
                "apiKey": request.headers.get("x-api-key"),
            },
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def api_client(config, upstream_transport):
    """TestClient for the all-in-one API service."""
    from fastapi.testclient import TestClient

    from api_weaver.server.app import create_app

    app = create_app(config, upstream_transport=upstream_transport)
    with TestClient(app) as client:
        yield client
