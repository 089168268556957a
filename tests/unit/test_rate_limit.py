"""
Unit tests for per-IP rate limiting.
"""

import pytest
from fastapi.testclient import TestClient

from api_weaver.config import Config
from api_weaver.middleware.rate_limit import RATE_LIMIT_BODY, RateLimiter
from api_weaver.server.app import create_app


@pytest.mark.unit
class TestRateLimiter:
    """Test the fixed-window counter."""

    @pytest.mark.asyncio
    async def test_allows_up_to_ceiling(self):
        """Test that the request after the ceiling is refused."""
        limiter = RateLimiter(max_requests=3, window_minutes=1)

        decisions = [await limiter.hit("10.0.0.1") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[0].remaining == 2
        assert decisions[-1].remaining == 0
        assert decisions[-1].limit == 3
        assert 0 < decisions[-1].retry_after <= 60

    @pytest.mark.asyncio
    async def test_clients_are_counted_separately(self):
        """Test per-identifier windows."""
        limiter = RateLimiter(max_requests=1, window_minutes=1)
        assert (await limiter.hit("a")).allowed is True
        assert (await limiter.hit("b")).allowed is True
        assert (await limiter.hit("a")).allowed is False

    @pytest.mark.asyncio
    async def test_reset(self):
        """Test that reset clears every window."""
        limiter = RateLimiter(max_requests=1, window_minutes=1)
        await limiter.hit("a")
        await limiter.reset()
        assert (await limiter.hit("a")).allowed is True


@pytest.mark.unit
@pytest.mark.http
class TestRateLimitMiddleware:
    """Test the 429 response through the application."""

    def test_hundred_and_first_request_refused(self, config):
        """Test the default ceiling of 100 requests per window."""
        app = create_app(config)
        with TestClient(app) as client:
            statuses = [client.get("/health").status_code for _ in range(100)]
            refused = client.get("/health")

        assert statuses == [200] * 100
        assert refused.status_code == 429
        assert refused.json() == RATE_LIMIT_BODY
        assert refused.headers["X-RateLimit-Limit"] == "100"
        assert int(refused.headers["Retry-After"]) > 0

        history = app.state.weaver.notifier.get_history()
        assert history[0].type == "rate_limit_exceeded"

    def test_refused_requests_are_not_logged(self, project_root, clean_env):
        """Test that the limiter runs before request logging."""
        config = Config(api_key="k", project_root=str(project_root), rate_limit_max_requests=2)
        app = create_app(config)
        with TestClient(app) as client:
            for _ in range(4):
                client.get("/health")

        assert app.state.weaver.log_store.get_stats()["totalRequests"] == 2

    def test_disabled(self, project_root, clean_env):
        """Test that the limiter can be switched off."""
        config = Config(
            api_key="k",
            project_root=str(project_root),
            rate_limit_enabled=False,
            rate_limit_max_requests=1,
        )
        with TestClient(create_app(config)) as client:
            assert [client.get("/health").status_code for _ in range(3)] == [200, 200, 200]
