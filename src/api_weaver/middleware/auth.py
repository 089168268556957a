"""
API Key Authentication

Every non-public request must present the server's API key, either in the
``X-API-KEY`` header or the ``api_key`` query parameter. Public paths (health,
docs, static assets) bypass the check. Failed attempts are reported to the
notification manager.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from ..errors import ApiWeaverError, AuthError, ConfigurationError
from ..notifications import NotificationManager

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY_PARAM = "api_key"

STATIC_SUFFIXES = (".js", ".css", ".html", ".png", ".svg", ".ico", ".map")


class AuthStatus(Enum):
    PASS = "pass"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    MISCONFIGURED = "misconfigured"


@dataclass(frozen=True)
class AuthResult:
    status: AuthStatus
    api_key: Optional[str] = None

    def to_error(self) -> Optional[ApiWeaverError]:
        """The error a failed check answers with, None when the request may pass."""
        if self.status is AuthStatus.MISCONFIGURED:
            return ConfigurationError("API_KEY not configured on server")
        if self.status is AuthStatus.UNAUTHORIZED:
            return AuthError("Missing X-API-KEY header or api_key query parameter")
        if self.status is AuthStatus.FORBIDDEN:
            return AuthError("Invalid API key", status_code=403, error="Forbidden")
        return None

    def to_response(self) -> Optional[JSONResponse]:
        error = self.to_error()
        if error is None:
            return None
        return JSONResponse(status_code=error.status_code, content=error.to_dict())


class AuthGate:
    """Decides whether a request may reach the protected routes."""

    def __init__(
        self,
        api_key: Optional[str],
        public_paths: Iterable[str] = ("/", "/health"),
        public_prefixes: Iterable[str] = (),
        static_suffixes: Iterable[str] = (),
        notifier: Optional[NotificationManager] = None,
    ):
        self.api_key = api_key
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)
        self.static_suffixes = tuple(static_suffixes)
        self.notifier = notifier

    def is_public(self, path: str) -> bool:
        if path in self.public_paths:
            return True
        if self.public_prefixes and path.startswith(self.public_prefixes):
            return True
        if self.static_suffixes and not path.startswith("/api") and path.endswith(self.static_suffixes):
            return True
        return False

    @staticmethod
    def extract_credential(request: Request) -> Optional[str]:
        return request.headers.get(API_KEY_HEADER) or request.query_params.get(API_KEY_QUERY_PARAM)

    async def authenticate(self, request: Request) -> AuthResult:
        path = request.url.path
        if self.is_public(path):
            return AuthResult(AuthStatus.PASS)

        if not self.api_key:
            logger.error("API_KEY not configured, refusing protected request")
            return AuthResult(AuthStatus.MISCONFIGURED)

        provided = self.extract_credential(request)
        if not provided:
            await self._report(request, "missing")
            return AuthResult(AuthStatus.UNAUTHORIZED)

        if not secrets.compare_digest(provided.encode(), self.api_key.encode()):
            await self._report(request, "invalid")
            return AuthResult(AuthStatus.FORBIDDEN)

        return AuthResult(AuthStatus.PASS, api_key=provided)

    async def _report(self, request: Request, reason: str) -> None:
        client_ip = get_remote_address(request)
        logger.warning(f"Rejected request from {client_ip} to {request.url.path}: {reason} API key")
        if self.notifier is not None:
            await self.notifier.notify_api_key_misuse(
                client_ip, request.url.path, reason, wait=False
            )


class AuthMiddleware:
    """Runs AuthGate in front of the application.

    The validated key is stored as ``request.state.api_key`` so the proxy
    can forward the caller's own credential downstream.
    """

    def __init__(self, app: ASGIApp, gate: AuthGate):
        self.app = app
        self.gate = gate

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        result = await self.gate.authenticate(Request(scope))
        response = result.to_response()
        if response is not None:
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})["api_key"] = result.api_key
        await self.app(scope, receive, send)
