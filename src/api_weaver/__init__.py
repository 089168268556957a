"""
API Weaver - Authenticated gateway for content and integration MCP services

This package provides an API gateway that authenticates and rate limits
requests, proxies to downstream MCP services, executes whitelisted file and
command operations inside a project root, and speaks the MCP JSON-RPC
protocol over HTTP and Server-Sent-Events.
"""

__version__ = "1.0.0"
__author__ = "API Weaver Team"
__description__ = "Authenticated gateway for content and integration MCP services"

from .config import Config
from .server.app import ServiceKind, create_app
from .server.main import main

__all__ = [
    "main",
    "create_app",
    "ServiceKind",
    "Config",
    "__version__",
    "__author__",
    "__description__",
]
