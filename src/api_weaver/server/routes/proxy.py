"""Proxy routes to the content and integration services, plus gateway status."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from ..state import AppState, get_state

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

router = APIRouter(tags=["proxy"])
status_router = APIRouter(tags=["proxy"])


@router.api_route("/api/content/{subpath:path}", methods=PROXY_METHODS)
async def proxy_content(subpath: str, request: Request, state: AppState = Depends(get_state)):
    return await state.require_proxy().forward("content", request, subpath)


@router.api_route("/api/integration/{subpath:path}", methods=PROXY_METHODS)
async def proxy_integration(subpath: str, request: Request, state: AppState = Depends(get_state)):
    return await state.require_proxy().forward("integration", request, subpath)


@status_router.get("/api/status")
async def gateway_status(state: AppState = Depends(get_state)):
    """Report reachability of each downstream service."""
    return {
        "gateway": "online",
        "services": await state.require_proxy().check_health(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
