"""
MCP Protocol Implementation

This module implements Model Context Protocol message handling over JSON-RPC
2.0: request parsing, response and error envelopes, and dispatch of the core
protocol methods to a tool backend.

The same dispatcher serves both transports. Over plain HTTP the response is
returned to the caller; when an SSE session is attached the response is also
pushed through that session.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Union

import jsonschema
from pydantic import BaseModel, ConfigDict, Field

from .session import McpSession

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"


class McpMethod(Enum):
    """Supported MCP methods."""

    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PING = "ping"
    CANCELLED = "notifications/cancelled"

    @classmethod
    def parse(cls, name: str) -> Optional["McpMethod"]:
        if name == "notifications/initialized":
            return cls.INITIALIZED
        try:
            return cls(name)
        except ValueError:
            return None


class JsonRpcErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    SERVER_ERROR = -32000


class JsonRpcRequest(BaseModel):
    """An incoming JSON-RPC request or notification."""

    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = Field(pattern=r"^2\.0$")
    id: Union[int, str, None] = None
    method: str
    params: Optional[Dict[str, Any]] = None


def make_result(request_id: Union[int, str, None], result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(request_id: Union[int, str, None], code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": int(code), "message": message},
    }


@dataclass(frozen=True)
class McpTool:
    """A tool descriptor as advertised by tools/list."""

    name: str
    description: str
    input_schema: Mapping[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": dict(self.input_schema),
        }


class ToolBackend(Protocol):
    """Executes a tool by name; raises on failure."""

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        ...


def format_tool_result(result: Any) -> Dict[str, Any]:
    text = result if isinstance(result, str) else json.dumps(result, indent=2)
    return {"content": [{"type": "text", "text": text}]}


def format_tool_error(message: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {message}"}], "isError": True}


class McpDispatcher:
    """
    Routes JSON-RPC requests to protocol handlers.

    Each dispatcher owns one immutable tool registry; the content and
    integration services use separate dispatchers and never share tools.
    """

    def __init__(
        self,
        server_name: str,
        server_version: str,
        tools: Sequence[McpTool],
        backend: ToolBackend,
    ):
        self.server_name = server_name
        self.server_version = server_version
        self.tools = tuple(tools)
        self.backend = backend
        self._tools_by_name = {tool.name: tool for tool in self.tools}

    @property
    def server_info(self) -> Dict[str, str]:
        return {"name": self.server_name, "version": self.server_version}

    @property
    def capabilities(self) -> Dict[str, Any]:
        return {"tools": {"listChanged": False}}

    def initialized_notification(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """First message pushed on a new SSE stream."""
        params = {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "serverInfo": self.server_info,
            "capabilities": self.capabilities,
        }
        if session_id:
            params["sessionId"] = session_id
        return {"jsonrpc": JSONRPC_VERSION, "method": "server/initialized", "params": params}

    def list_tools(self) -> list[Dict[str, Any]]:
        return [tool.to_dict() for tool in self.tools]

    async def dispatch(
        self, request: JsonRpcRequest, session: Optional[McpSession] = None
    ) -> Dict[str, Any]:
        """
        Handle one request and return its JSON-RPC response.

        Tool failures come back as successful results flagged ``isError``;
        only protocol-level problems produce JSON-RPC errors.
        """
        try:
            response = await self._handle(request)
        except Exception as e:
            logger.error(f"Error handling MCP request {request.method}: {str(e)}", exc_info=True)
            response = make_error(request.id, JsonRpcErrorCode.SERVER_ERROR, str(e))

        if session is not None and session.is_active:
            await session.send(response)

        return response

    async def _handle(self, request: JsonRpcRequest) -> Dict[str, Any]:
        method = McpMethod.parse(request.method)
        params = request.params or {}

        if method is McpMethod.INITIALIZE:
            return make_result(
                request.id,
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": self.capabilities,
                    "serverInfo": self.server_info,
                },
            )
        elif method is McpMethod.INITIALIZED:
            return make_result(request.id, {})
        elif method is McpMethod.TOOLS_LIST:
            return make_result(request.id, {"tools": self.list_tools()})
        elif method is McpMethod.TOOLS_CALL:
            return await self._handle_tool_call(request.id, params)
        elif method is McpMethod.PING:
            return make_result(request.id, {})
        elif method is McpMethod.CANCELLED:
            return make_result(request.id, {})
        else:
            return make_error(
                request.id,
                JsonRpcErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )

    async def _handle_tool_call(
        self, request_id: Union[int, str, None], params: Dict[str, Any]
    ) -> Dict[str, Any]:
        name = params.get("name")
        if not name:
            return make_error(request_id, JsonRpcErrorCode.INVALID_PARAMS, "Missing tool name")

        arguments = params.get("arguments") or {}
        tool = self._tools_by_name.get(name)
        if tool is None:
            return make_result(request_id, format_tool_error(f"Unknown tool: {name}"))

        try:
            jsonschema.validate(instance=arguments, schema=tool.input_schema)
        except jsonschema.ValidationError as e:
            return make_result(request_id, format_tool_error(f"Invalid arguments: {e.message}"))

        try:
            result = await self.backend.call_tool(name, arguments)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {str(e)}")
            return make_result(request_id, format_tool_error(str(e)))

        logger.info(f"Tool {name} executed")
        return make_result(request_id, format_tool_result(result))
