"""
API Weaver Server Module

Application factory, routes, proxy and command-line entry point for the
api, content, integration and gateway services.
"""

from .app import create_app
from .main import main
from .state import AppState, ServiceKind

__all__ = [
    "create_app",
    "main",
    "AppState",
    "ServiceKind",
]
