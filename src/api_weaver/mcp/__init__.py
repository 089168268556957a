"""
MCP Protocol Module

JSON-RPC dispatch, SSE sessions and the tool registries served by the
content and integration services.
"""

from .protocol import McpDispatcher, McpMethod, McpTool
from .session import CapturingSession, SessionRegistry, SseSession
from .tools import CONTENT_TOOLS, INTEGRATION_TOOLS, ContentToolBackend, IntegrationToolBackend

__all__ = [
    "McpDispatcher",
    "McpMethod",
    "McpTool",
    "CapturingSession",
    "SessionRegistry",
    "SseSession",
    "CONTENT_TOOLS",
    "INTEGRATION_TOOLS",
    "ContentToolBackend",
    "IntegrationToolBackend",
]
