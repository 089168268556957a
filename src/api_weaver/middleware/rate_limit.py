"""
Rate Limiting Middleware

Fixed-window request counting per client IP, backed by the ``limits``
library's in-memory storage. A window holds ``max_requests`` requests and
resets ``window_minutes`` after the first request in it; requests over the
ceiling receive 429 until the window elapses.

Fixed windows allow a burst of up to twice the ceiling across a window
boundary.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerMinute
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from ..notifications import NotificationManager

logger = logging.getLogger(__name__)

RATE_LIMIT_BODY = {"error": "Too many requests", "message": "Please try again later"}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    @property
    def retry_after(self) -> int:
        return max(0, math.ceil(self.reset_at - time.time()))


class RateLimiter:
    """Per-identifier fixed-window counter; one instance per application."""

    def __init__(self, max_requests: int = 100, window_minutes: int = 15):
        self.item = RateLimitItemPerMinute(max_requests, window_minutes)
        self.storage = MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)

    @property
    def max_requests(self) -> int:
        return self.item.amount

    async def hit(self, identifier: str) -> RateLimitDecision:
        """Count one request for ``identifier`` and decide whether it may proceed."""
        allowed = await self.strategy.hit(self.item, identifier)
        stats = await self.strategy.get_window_stats(self.item, identifier)
        return RateLimitDecision(
            allowed=allowed,
            limit=self.item.amount,
            remaining=stats.remaining,
            reset_at=stats.reset_time,
        )

    async def reset(self) -> None:
        await self.storage.reset()


class RateLimitMiddleware:
    """Rejects HTTP requests over the per-IP ceiling with 429."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        notifier: Optional[NotificationManager] = None,
    ):
        self.app = app
        self.limiter = limiter
        self.notifier = notifier

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        client_ip = get_remote_address(request)
        decision = await self.limiter.hit(client_ip)

        if decision.allowed:
            await self.app(scope, receive, send)
            return

        logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
        if self.notifier is not None:
            await self.notifier.notify_rate_limit_exceeded(client_ip, request.url.path, wait=False)

        response = JSONResponse(
            status_code=429,
            content=RATE_LIMIT_BODY,
            headers={
                "Retry-After": str(decision.retry_after),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
        await response(scope, receive, send)
