"""Service descriptor, health and remote-integration status endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ...remote import service_status
from ..models import HealthResponse
from ..state import AppState, ServiceKind, get_state

router = APIRouter(tags=["health"])
integration_status_router = APIRouter(tags=["health"])

_ENDPOINTS = {
    ServiceKind.API: {
        "files": "/api/files",
        "execute": "/api/execute",
        "project": "/api/project",
        "mcp": "/mcp",
        "stats": "/api/stats",
        "logs": "/api/logs",
        "notifications": "/api/notifications",
        "content": "/api/content",
        "integration": "/api/integration",
    },
    ServiceKind.CONTENT: {
        "files": "/files",
        "execute": "/execute",
        "project": "/project",
        "mcp": "/mcp",
    },
    ServiceKind.INTEGRATION: {"mcp": "/mcp", "status": "/status"},
    ServiceKind.GATEWAY: {
        "status": "/api/status",
        "content": "/api/content",
        "integration": "/api/integration",
    },
}


@router.get("/")
async def service_info(state: AppState = Depends(get_state)):
    return {
        "name": state.config.server_name,
        "version": state.config.server_version,
        "service": state.kind.value,
        "endpoints": {"health": "/health", **_ENDPOINTS[state.kind]},
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(state: AppState = Depends(get_state)):
    details = {}
    if state.dispatcher is not None:
        details["tools_available"] = len(state.dispatcher.tools)
        details["sse_sessions"] = len(state.sessions)

    return HealthResponse(
        status="ok",
        service=state.kind.value,
        server_name=state.config.server_name,
        version=state.config.server_version,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=state.uptime_seconds,
        details=details,
    )


@integration_status_router.get("/status")
async def integration_status(state: AppState = Depends(get_state)):
    """Which third-party services have credentials configured."""
    return {"services": service_status(state.config)}
