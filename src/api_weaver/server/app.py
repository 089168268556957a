"""
Application factory for the API Weaver services.

One factory builds all four HTTP fronts. Each call constructs its own state
(request log, notification manager, rate limiter, file store, dispatcher,
proxy), so several applications can coexist in one process, which is how
the tests run them.

Middleware order, outermost first:
CORS -> RateLimit -> RequestLog -> Auth -> routes
"""

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Iterable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..commands import CommandRunner
from ..config import Config
from ..errors import ApiWeaverError, SecurityViolationError, UpstreamError
from ..files import FileStore
from ..mcp.protocol import McpDispatcher
from ..mcp.tools import CONTENT_TOOLS, INTEGRATION_TOOLS, ContentToolBackend, IntegrationToolBackend
from ..middleware.auth import STATIC_SUFFIXES, AuthGate, AuthMiddleware
from ..middleware.rate_limit import RateLimiter, RateLimitMiddleware
from ..middleware.request_log import RequestLogMiddleware
from ..notifications import NotificationManager
from ..remote import RemoteClientRegistry
from ..security import SAFE_COMMANDS
from ..storage import RequestLogStore
from .proxy import ProxyRouter, UpstreamService
from .routes import admin, content, health, mcp, proxy
from .state import AppState, ServiceKind, get_state

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {
    ServiceKind.API: ("/", "/health", "/docs", "/api-docs", "/openapi.json", "/api/stats", "/api/logs"),
    ServiceKind.CONTENT: ("/", "/health"),
    ServiceKind.INTEGRATION: ("/", "/health"),
    ServiceKind.GATEWAY: ("/", "/health", "/api/status"),
}

API_PUBLIC_PREFIXES = ("/docs", "/assets", "/static", "/favicon")


def _build_state(
    config: Config,
    kind: ServiceKind,
    notifier: NotificationManager,
    upstream_transport: Optional[httpx.AsyncBaseTransport],
    remote_transport: Optional[httpx.AsyncBaseTransport],
    allowed_commands: Iterable[str],
) -> AppState:
    state = AppState(config=config, kind=kind, log_store=RequestLogStore(), notifier=notifier)

    if kind in (ServiceKind.API, ServiceKind.CONTENT):
        state.file_store = FileStore(config.project_root)
        state.command_runner = CommandRunner(
            config.project_root,
            max_output_bytes=config.command_max_output,
            default_timeout_ms=config.command_timeout_ms,
            allowed_commands=allowed_commands,
        )
        server_name = config.server_name if kind is ServiceKind.API else f"{config.server_name}-content"
        state.dispatcher = McpDispatcher(
            server_name,
            config.server_version,
            CONTENT_TOOLS,
            ContentToolBackend(state.file_store, state.command_runner),
        )
    elif kind is ServiceKind.INTEGRATION:
        state.dispatcher = McpDispatcher(
            f"{config.server_name}-integration",
            config.server_version,
            INTEGRATION_TOOLS,
            IntegrationToolBackend(RemoteClientRegistry(config, remote_transport)),
        )

    if kind in (ServiceKind.API, ServiceKind.GATEWAY):
        state.proxy = ProxyRouter(
            [
                UpstreamService("content", "Content MCP", config.content_mcp_url),
                UpstreamService("integration", "Integration MCP", config.integration_mcp_url),
            ],
            # The gateway only forwards credentials it has validated itself
            fallback_api_key=config.api_key if kind is ServiceKind.API else None,
            notifier=notifier,
            timeout=config.proxy_timeout,
            transport=upstream_transport,
        )

    return state


def _install_routes(app: FastAPI, kind: ServiceKind) -> None:
    app.include_router(health.router)

    if kind is ServiceKind.API:
        app.include_router(content.router, prefix="/api")
        app.include_router(mcp.router)
        app.include_router(mcp.tools_router, prefix="/api")
        app.include_router(admin.router)
        app.include_router(proxy.router)
    elif kind is ServiceKind.CONTENT:
        app.include_router(content.router)
        app.include_router(mcp.router)
        app.include_router(mcp.tools_router)
    elif kind is ServiceKind.INTEGRATION:
        app.include_router(mcp.router)
        app.include_router(mcp.tools_router)
        app.include_router(health.integration_status_router)
    elif kind is ServiceKind.GATEWAY:
        app.include_router(proxy.status_router)
        app.include_router(proxy.router)


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiWeaverError)
    async def api_error_handler(request: Request, exc: ApiWeaverError):
        state = get_state(request)
        if isinstance(exc, SecurityViolationError):
            await state.notifier.notify_security_threat(
                "path_traversal",
                f"{exc.message} ({request.method} {request.url.path})",
                {"ip": get_remote_address(request), "path": request.url.path},
                wait=False,
            )
        elif exc.status_code >= 500 and not isinstance(exc, UpstreamError):
            await state.notifier.notify_server_error(
                exc.message, request.url.path, exc.status_code, wait=False
            )

        log = logger.warning if exc.status_code >= 500 else logger.info
        log(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            messages.append(f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid"))
        return JSONResponse(
            status_code=400,
            content={"error": "Validation Error", "message": "; ".join(messages)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Route {request.url.path} not found"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTPStatus(exc.status_code).phrase, "message": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        try:
            await get_state(request).notifier.notify_server_error(
                str(exc), request.url.path, 500, wait=False
            )
        except Exception as notify_error:
            logger.error(f"Failed to send server error notification: {notify_error}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "message": "An unexpected error occurred"},
        )


def create_app(
    config: Optional[Config] = None,
    service: ServiceKind = ServiceKind.API,
    *,
    notifier: Optional[NotificationManager] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    remote_transport: Optional[httpx.AsyncBaseTransport] = None,
    allowed_commands: Iterable[str] = SAFE_COMMANDS,
) -> FastAPI:
    """
    Build one API Weaver service.

    Args:
        config: Runtime configuration (defaults to the process environment)
        service: Which HTTP front to build
        notifier: Notification manager to use instead of a fresh one
        upstream_transport: httpx transport for proxied downstream calls
        remote_transport: httpx transport for third-party API calls
        allowed_commands: Base commands CommandRunner accepts

    Returns:
        Configured FastAPI application
    """
    config = config or Config.load_runtime_config()
    notifier = notifier or NotificationManager(config)
    state = _build_state(config, service, notifier, upstream_transport, remote_transport, allowed_commands)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"=== API Weaver ({service.value}) starting ===")
        logger.info(f"Server: {config.server_name} v{config.server_version}")
        for key, value in config.get_startup_summary().items():
            logger.info(f"  {key}: {value}")
        for problem in config.validate():
            logger.warning(f"Configuration problem: {problem}")
        yield
        await notifier.drain()
        if state.proxy is not None:
            await state.proxy.aclose()
        logger.info(f"API Weaver ({service.value}) shutting down")

    app = FastAPI(
        title=f"API Weaver ({service.value})",
        description="Authenticated gateway for content and integration MCP services",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/api-docs" if service is ServiceKind.API else "/openapi.json",
        lifespan=lifespan,
    )
    app.state.weaver = state

    _install_routes(app, service)
    _install_exception_handlers(app)

    gate = AuthGate(
        api_key=config.api_key,
        public_paths=PUBLIC_PATHS[service],
        public_prefixes=API_PUBLIC_PREFIXES if service is ServiceKind.API else (),
        static_suffixes=STATIC_SUFFIXES if service is ServiceKind.API else (),
        notifier=notifier,
    )

    # add_middleware prepends, so the last one added runs first
    app.add_middleware(AuthMiddleware, gate=gate)
    app.add_middleware(RequestLogMiddleware, store=state.log_store)
    if config.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=RateLimiter(config.rate_limit_max_requests, config.rate_limit_window_minutes),
            notifier=notifier,
        )
    else:
        logger.warning("Rate limiting disabled")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-KEY", "Authorization", "Mcp-Session-Id"],
        expose_headers=["X-MCP-Session-Id"],
    )

    return app
