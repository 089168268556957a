"""
Unit tests for MCP JSON-RPC dispatch.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from api_weaver.mcp.protocol import (
    MCP_PROTOCOL_VERSION,
    JsonRpcRequest,
    McpDispatcher,
    McpMethod,
    McpTool,
    format_tool_error,
    format_tool_result,
)
from api_weaver.mcp.session import CapturingSession, SseSession


class FakeBackend:
    """Records calls and returns canned results."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        if self.error is not None:
            raise self.error
        return self.result


TOOLS = (
    McpTool(
        "echo",
        "Echo the message back",
        {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    ),
    McpTool("noop", "Do nothing", {"type": "object", "properties": {}}),
)


def make_dispatcher(backend=None):
    return McpDispatcher("test-server", "9.9.9", TOOLS, backend or FakeBackend(result="ok"))


def request(method, params=None, request_id=1):
    return JsonRpcRequest(jsonrpc="2.0", id=request_id, method=method, params=params)


@pytest.mark.unit
class TestJsonRpcRequest:
    """Test request parsing."""

    def test_valid_request(self):
        """Test a well-formed request."""
        message = JsonRpcRequest.model_validate(
            {"jsonrpc": "2.0", "id": "abc", "method": "tools/list", "extra": 1}
        )
        assert message.id == "abc"
        assert message.params is None

    def test_notification_without_id(self):
        """Test that id is optional."""
        message = JsonRpcRequest.model_validate({"jsonrpc": "2.0", "method": "initialized"})
        assert message.id is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"jsonrpc": "1.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1},
            {"id": 1, "method": "ping"},
            [{"jsonrpc": "2.0", "id": 1, "method": "ping"}],
        ],
    )
    def test_invalid_requests(self, payload):
        """Test payloads that are not JSON-RPC 2.0 requests."""
        with pytest.raises(ValidationError):
            JsonRpcRequest.model_validate(payload)

    def test_method_parse(self):
        """Test method name parsing including the notification alias."""
        assert McpMethod.parse("tools/call") is McpMethod.TOOLS_CALL
        assert McpMethod.parse("notifications/initialized") is McpMethod.INITIALIZED
        assert McpMethod.parse("resources/list") is None


@pytest.mark.unit
class TestMcpDispatcher:
    """Test protocol method handling."""

    @pytest.mark.asyncio
    async def test_initialize(self):
        """Test the initialize handshake result."""
        response = await make_dispatcher().dispatch(request("initialize"))

        assert response["jsonrpc"] == "2.0"
        assert response["id"] == 1
        result = response["result"]
        assert result["protocolVersion"] == MCP_PROTOCOL_VERSION
        assert result["serverInfo"] == {"name": "test-server", "version": "9.9.9"}
        assert result["capabilities"] == {"tools": {"listChanged": False}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["initialized", "notifications/initialized", "ping"])
    async def test_empty_result_methods(self, method):
        """Test methods that acknowledge with an empty result."""
        response = await make_dispatcher().dispatch(request(method, request_id=7))
        assert response == {"jsonrpc": "2.0", "id": 7, "result": {}}

    @pytest.mark.asyncio
    async def test_tools_list_preserves_order(self):
        """Test that tools are listed in registration order."""
        response = await make_dispatcher().dispatch(request("tools/list"))
        tools = response["result"]["tools"]

        assert [tool["name"] for tool in tools] == ["echo", "noop"]
        assert tools[0]["inputSchema"]["required"] == ["message"]

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        """Test the method-not-found error."""
        response = await make_dispatcher().dispatch(request("resources/list"))
        assert response["error"] == {"code": -32601, "message": "Method not found: resources/list"}
        assert "result" not in response

    @pytest.mark.asyncio
    async def test_tool_call_success(self):
        """Test a tool call with string output."""
        backend = FakeBackend(result="hello")
        response = await make_dispatcher(backend).dispatch(
            request("tools/call", {"name": "echo", "arguments": {"message": "hello"}})
        )

        assert response["result"] == {"content": [{"type": "text", "text": "hello"}]}
        assert backend.calls == [("echo", {"message": "hello"})]

    @pytest.mark.asyncio
    async def test_tool_call_structured_result(self):
        """Test that structured results are rendered as indented JSON."""
        backend = FakeBackend(result={"a": 1})
        response = await make_dispatcher(backend).dispatch(
            request("tools/call", {"name": "noop"})
        )
        assert response["result"]["content"][0]["text"] == '{\n  "a": 1\n}'

    @pytest.mark.asyncio
    async def test_tool_call_missing_name(self):
        """Test the invalid-params error."""
        response = await make_dispatcher().dispatch(request("tools/call", {"arguments": {}}))
        assert response["error"] == {"code": -32602, "message": "Missing tool name"}

    @pytest.mark.asyncio
    async def test_tool_call_unknown_tool(self):
        """Test that unknown tools are reported as tool errors."""
        backend = FakeBackend()
        response = await make_dispatcher(backend).dispatch(
            request("tools/call", {"name": "nope"})
        )

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "Error: Unknown tool: nope"
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_tool_call_schema_violation(self):
        """Test that arguments are checked against the input schema."""
        backend = FakeBackend()
        response = await make_dispatcher(backend).dispatch(
            request("tools/call", {"name": "echo", "arguments": {"message": 5}})
        )

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"].startswith("Error: Invalid arguments")
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_tool_call_backend_failure(self):
        """Test that backend exceptions become tool errors."""
        backend = FakeBackend(error=RuntimeError("disk on fire"))
        response = await make_dispatcher(backend).dispatch(
            request("tools/call", {"name": "echo", "arguments": {"message": "x"}})
        )

        assert response["result"] == {
            "content": [{"type": "text", "text": "Error: disk on fire"}],
            "isError": True,
        }

    @pytest.mark.asyncio
    async def test_handler_crash_becomes_server_error(self):
        """Test that unexpected failures produce -32000."""
        dispatcher = make_dispatcher()
        with patch.object(dispatcher, "_handle", side_effect=RuntimeError("unexpected")):
            response = await dispatcher.dispatch(request("ping", request_id="r1"))

        assert response["id"] == "r1"
        assert response["error"] == {"code": -32000, "message": "unexpected"}

    @pytest.mark.asyncio
    async def test_response_also_sent_to_session(self):
        """Test that an attached session receives the same response."""
        session = CapturingSession()
        response = await make_dispatcher().dispatch(request("tools/list"), session)
        assert session.messages == [response]

    @pytest.mark.asyncio
    async def test_closed_session_not_used(self):
        """Test that closed SSE sessions are skipped."""
        session = SseSession()
        session.close()
        response = await make_dispatcher().dispatch(request("ping"), session)
        assert response["result"] == {}

    def test_initialized_notification(self):
        """Test the first message of an SSE stream."""
        message = make_dispatcher().initialized_notification("abc123")
        assert message["method"] == "server/initialized"
        assert "id" not in message
        assert message["params"]["sessionId"] == "abc123"
        assert message["params"]["protocolVersion"] == MCP_PROTOCOL_VERSION


@pytest.mark.unit
class TestToolFormatting:
    """Test tool result envelopes."""

    def test_format_tool_result_string(self):
        """Test that strings are passed through unchanged."""
        assert format_tool_result("plain") == {"content": [{"type": "text", "text": "plain"}]}

    def test_format_tool_error(self):
        """Test the error envelope."""
        assert format_tool_error("bad") == {
            "content": [{"type": "text", "text": "Error: bad"}],
            "isError": True,
        }
