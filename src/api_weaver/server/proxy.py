"""
Reverse proxy to the downstream MCP services.

Requests under a service prefix (``/api/content``, ``/api/integration``) are
forwarded with the prefix stripped. The caller's validated API key, or the
server's own key when the caller had none, is injected as ``X-API-KEY``.
Responses are streamed back so SSE streams pass through unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import StreamingResponse

from ..errors import ServiceUnavailableError, UpstreamTimeoutError
from ..notifications import NotificationManager

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0

# Never copied between client and upstream
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)


@dataclass(frozen=True)
class UpstreamService:
    """A downstream service the proxy forwards to."""

    key: str
    name: str
    base_url: str


class ProxyRouter:
    """Forwards prefixed requests to their downstream service."""

    def __init__(
        self,
        services: Iterable[UpstreamService],
        fallback_api_key: Optional[str] = None,
        notifier: Optional[NotificationManager] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.services = {service.key: service for service in services}
        self.fallback_api_key = fallback_api_key
        self.notifier = notifier
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _upstream_headers(self, request: Request) -> Dict[str, str]:
        headers = {
            name: value
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != "x-api-key"
        }
        api_key = getattr(request.state, "api_key", None) or self.fallback_api_key
        if api_key:
            headers["X-API-KEY"] = api_key
        return headers

    async def forward(self, service_key: str, request: Request, subpath: str) -> StreamingResponse:
        """
        Forward ``request`` to ``/{subpath}`` on the service.

        Raises:
            ServiceUnavailableError: If the service cannot be reached
            UpstreamTimeoutError: If the service does not answer in time
        """
        service = self.services[service_key]
        url = f"{service.base_url.rstrip('/')}/{subpath.lstrip('/')}"
        params = [(k, v) for k, v in request.query_params.multi_items() if k != "api_key"]

        upstream_request = self.client.build_request(
            request.method,
            url,
            params=params,
            headers=self._upstream_headers(request),
            content=await request.body(),
        )
        logger.debug(f"Proxying {request.method} {request.url.path} -> {url}")

        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            await self._report_unavailable(service, f"timed out: {e}")
            raise UpstreamTimeoutError(f"{service.name} did not respond in time")
        except httpx.TransportError as e:
            await self._report_unavailable(service, str(e))
            raise ServiceUnavailableError(str(e) or "Connection failed", error=f"{service.name} unavailable")

        response_headers = {
            name: value
            for name, value in upstream.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        }
        return StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            headers=response_headers,
            background=BackgroundTask(upstream.aclose),
        )

    async def _report_unavailable(self, service: UpstreamService, error: str) -> None:
        logger.error(f"{service.name} unavailable at {service.base_url}: {error}")
        if self.notifier is not None:
            await self.notifier.notify_mcp_unavailable(service.name, error, wait=False)

    async def check_health(self) -> List[Dict[str, Any]]:
        """Probe each downstream ``/health`` endpoint."""
        results = []
        for service in self.services.values():
            url = f"{service.base_url.rstrip('/')}/health"
            entry: Dict[str, Any] = {"name": service.name, "url": url}
            try:
                response = await self.client.get(url, timeout=HEALTH_CHECK_TIMEOUT)
                entry["status"] = "online" if response.is_success else "offline"
            except httpx.HTTPError as e:
                logger.warning(f"Health check failed for {service.name}: {e}")
                entry["status"] = "offline"
                entry["error"] = "Connection failed"
            results.append(entry)
        return results
