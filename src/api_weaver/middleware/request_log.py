"""Post-response request logging into RequestLogStore."""

import logging
import time

from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..storage import RequestLogStore

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Records method, path, status and duration once a request completes.

    Recording happens after the response has been handed to the server and
    never affects it; failures while recording are logged and dropped.
    """

    def __init__(self, app: ASGIApp, store: RequestLogStore):
        self.app = app
        self.store = store

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self._record(scope, status_code, int((time.monotonic() - start) * 1000))

    def _record(self, scope: Scope, status_code: int, duration_ms: int) -> None:
        try:
            request = Request(scope)
            self.store.record(
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=duration_ms,
                ip=get_remote_address(request),
                user_agent=request.headers.get("user-agent"),
            )
        except Exception as e:
            logger.warning(f"Failed to record request log: {str(e)}")
