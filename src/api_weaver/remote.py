"""
Remote API clients for third-party integrations.

Every integration (GitHub, Vercel, Supabase, n8n, Google Cloud) is reached
through the same RemoteServiceClient: a base URL, an authentication header,
JSON in and out, a timeout, and error passthrough. The payload schemas of
those services are not modelled here; responses are returned as decoded JSON.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from .config import Config
from .errors import (
    ConfigurationError,
    ServiceUnavailableError,
    UpstreamError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class RemoteServiceClient:
    """Uniform "call remote API" wrapper around an httpx.AsyncClient."""

    def __init__(
        self,
        service: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service = service
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout
        self.transport = transport

    async def call(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one request and decode the JSON response.

        Raises:
            UpstreamError: On a non-2xx response
            ServiceUnavailableError: If the service cannot be reached
            UpstreamTimeoutError: If the service does not answer in time
        """
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{self.service} {method} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method, url, json=json, params=params, headers=self.headers
                )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"{self.service} API timed out: {e}")
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"{self.service} API unreachable: {e}")

        if not response.is_success:
            raise UpstreamError(
                f"{self.service} API error: {response.status_code} - {response.text}"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


@dataclass(frozen=True)
class RemoteService:
    """How to build a client for one third-party service from Config."""

    name: str
    label: str
    required: tuple[str, ...]
    build: Callable[[Config], RemoteServiceClient]


def _github(config: Config) -> RemoteServiceClient:
    return RemoteServiceClient(
        "GitHub",
        "https://api.github.com",
        {
            "Authorization": f"Bearer {config.github_token}",
            "Accept": "application/vnd.github+json",
        },
        config.remote_timeout,
    )


def _vercel(config: Config) -> RemoteServiceClient:
    return RemoteServiceClient(
        "Vercel",
        "https://api.vercel.com",
        {"Authorization": f"Bearer {config.vercel_token}"},
        config.remote_timeout,
    )


def _supabase(config: Config) -> RemoteServiceClient:
    return RemoteServiceClient(
        "Supabase",
        f"{config.supabase_url.rstrip('/')}/rest/v1",
        {
            "apikey": config.supabase_key,
            "Authorization": f"Bearer {config.supabase_key}",
        },
        config.remote_timeout,
    )


def _n8n(config: Config) -> RemoteServiceClient:
    return RemoteServiceClient(
        "n8n",
        f"{config.n8n_url.rstrip('/')}/api/v1",
        {"X-N8N-API-KEY": config.n8n_api_key},
        config.remote_timeout,
    )


def _gcloud(config: Config) -> RemoteServiceClient:
    return RemoteServiceClient(
        "Google Cloud",
        f"https://compute.googleapis.com/compute/v1/projects/{config.gcloud_project_id}",
        {"Authorization": f"Bearer {config.gcloud_access_token}"},
        config.remote_timeout,
    )


REMOTE_SERVICES: Dict[str, RemoteService] = {
    "github": RemoteService("github", "GitHub", ("GITHUB_TOKEN",), _github),
    "vercel": RemoteService("vercel", "Vercel", ("VERCEL_TOKEN",), _vercel),
    "supabase": RemoteService("supabase", "Supabase", ("SUPABASE_URL", "SUPABASE_KEY"), _supabase),
    "n8n": RemoteService("n8n", "n8n", ("N8N_URL", "N8N_API_KEY"), _n8n),
    "gcloud": RemoteService(
        "gcloud",
        "Google Cloud",
        ("GOOGLE_CLOUD_PROJECT_ID", "GOOGLE_CLOUD_ACCESS_TOKEN"),
        _gcloud,
    ),
}

# Environment variable -> Config key
_ENV_TO_CONFIG = {
    "GITHUB_TOKEN": "github_token",
    "VERCEL_TOKEN": "vercel_token",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "N8N_URL": "n8n_url",
    "N8N_API_KEY": "n8n_api_key",
    "GOOGLE_CLOUD_PROJECT_ID": "gcloud_project_id",
    "GOOGLE_CLOUD_ACCESS_TOKEN": "gcloud_access_token",
}


def _missing_settings(service: RemoteService, config: Config) -> List[str]:
    return [env for env in service.required if not config.get(_ENV_TO_CONFIG[env])]


class RemoteClientRegistry:
    """Builds clients on demand and refuses services whose credentials are missing."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    def get(self, name: str) -> RemoteServiceClient:
        """
        Raises:
            ConfigurationError: If the service is unknown or not configured
        """
        service = REMOTE_SERVICES.get(name)
        if service is None:
            raise ConfigurationError(f"Unknown remote service: {name}")

        missing = _missing_settings(service, self.config)
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} not configured")

        client = service.build(self.config)
        if self.transport is not None:
            client.transport = self.transport
        return client


def service_status(config: Config) -> Dict[str, Dict[str, Any]]:
    """Which remote services have their credentials configured."""
    status = {}
    for name, service in REMOTE_SERVICES.items():
        missing = _missing_settings(service, config)
        status[name] = {
            "name": service.label,
            "configured": not missing,
            "missing": missing,
        }
    return status
