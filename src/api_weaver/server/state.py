"""Per-application state shared by routes and middleware."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from fastapi import Request

from ..commands import CommandRunner
from ..config import Config
from ..errors import ConfigurationError
from ..files import FileStore
from ..mcp.protocol import McpDispatcher
from ..mcp.session import SessionRegistry
from ..notifications import NotificationManager
from ..storage import RequestLogStore
from .proxy import ProxyRouter


class ServiceKind(Enum):
    """Which of the four HTTP fronts an application serves."""

    API = "api"
    CONTENT = "content"
    INTEGRATION = "integration"
    GATEWAY = "gateway"


@dataclass
class AppState:
    """Everything one application owns; built once by create_app."""

    config: Config
    kind: ServiceKind
    log_store: RequestLogStore
    notifier: NotificationManager
    file_store: Optional[FileStore] = None
    command_runner: Optional[CommandRunner] = None
    dispatcher: Optional[McpDispatcher] = None
    proxy: Optional[ProxyRouter] = None
    sessions: SessionRegistry = field(default_factory=SessionRegistry)
    started_at: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    def require_file_store(self) -> FileStore:
        if self.file_store is None:
            raise ConfigurationError(f"File operations are not served by the {self.kind.value} service")
        return self.file_store

    def require_command_runner(self) -> CommandRunner:
        if self.command_runner is None:
            raise ConfigurationError(f"Command execution is not served by the {self.kind.value} service")
        return self.command_runner

    def require_dispatcher(self) -> McpDispatcher:
        if self.dispatcher is None:
            raise ConfigurationError(f"MCP is not served by the {self.kind.value} service")
        return self.dispatcher

    def require_proxy(self) -> ProxyRouter:
        if self.proxy is None:
            raise ConfigurationError(f"Proxying is not served by the {self.kind.value} service")
        return self.proxy


def get_state(request: Request) -> AppState:
    """FastAPI dependency returning the application's AppState."""
    return request.app.state.weaver
