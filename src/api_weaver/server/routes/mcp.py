"""
MCP endpoints: SSE stream (GET /mcp) and request/response JSON-RPC (POST /mcp).

A POST carrying ``session_id`` (query) or ``Mcp-Session-Id`` (header) for a
live SSE session gets its response delivered on that stream as well.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from ...mcp.protocol import JsonRpcErrorCode, JsonRpcRequest, make_error
from ...mcp.session import SSE_HEADERS, SseSession
from ..state import AppState, get_state

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "X-MCP-Session-Id"

router = APIRouter(tags=["mcp"])
tools_router = APIRouter(tags=["mcp"])


@router.get("/mcp")
async def mcp_stream(state: AppState = Depends(get_state)):
    """Open an SSE session and announce the server."""
    dispatcher = state.require_dispatcher()
    session = SseSession(keepalive_interval=state.config.sse_keepalive_interval)
    state.sessions.add(session)
    await session.send(dispatcher.initialized_notification(session.session_id))
    logger.info(f"SSE session {session.session_id} opened")

    async def event_stream():
        try:
            async for frame in session.frames():
                yield frame
        finally:
            session.close()
            state.sessions.remove(session)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, SESSION_ID_HEADER: session.session_id},
    )


@router.post("/mcp")
async def mcp_message(request: Request, state: AppState = Depends(get_state)):
    """Handle one JSON-RPC message and return its response."""
    dispatcher = state.require_dispatcher()

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=400,
            content=make_error(None, JsonRpcErrorCode.PARSE_ERROR, "Parse error"),
        )

    try:
        message = JsonRpcRequest.model_validate(payload)
    except PydanticValidationError:
        return JSONResponse(
            status_code=400,
            content=make_error(None, JsonRpcErrorCode.INVALID_REQUEST, "Invalid Request"),
        )

    session_id = request.query_params.get("session_id") or request.headers.get("mcp-session-id")
    session = state.sessions.get(session_id)
    return await dispatcher.dispatch(message, session)


@tools_router.get("/mcp/tools")
async def list_tools(state: AppState = Depends(get_state)):
    return {"tools": state.require_dispatcher().list_tools()}
