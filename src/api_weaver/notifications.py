"""
Pluggable Notification System for Gateway Events

Security-relevant and availability events (credential misuse, upstream
outages, rate limiting, server errors) are turned into notification events
and fanned out to the configured providers. Every event that passes the
severity filter is kept in a bounded history the admin API can read.

Supported Providers:
- Console (structured log lines)
- Webhook (JSON POST of the event to an HTTP endpoint)

Design Principles:
- Provider-agnostic interface
- Graceful failure handling (notifications never break request handling)
- Severity filtering with a runtime-adjustable floor
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Set

import httpx

from .config import Config

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000


class NotificationSeverity(Enum):
    """Severity levels, ordered from least to most urgent."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = list(NotificationSeverity)


class NotificationType(Enum):
    """Event categories emitted by the gateway."""

    API_KEY_MISUSE = "api_key_misuse"
    SERVER_ERROR = "server_error"
    MCP_UNAVAILABLE = "mcp_unavailable"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SECURITY_THREAT = "security_threat"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class NotificationEvent:
    """A notification as recorded in history and delivered to providers."""

    severity: NotificationSeverity
    type: str
    title: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    channels: List[str] = field(default_factory=list)
    sent: bool = False
    id: str = field(default_factory=lambda: f"notif_{uuid.uuid4().hex[:16]}")
    timestamp: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "metadata": self.metadata,
            "channels": self.channels,
            "sent": self.sent,
        }


class NotificationProvider(ABC):
    """
    Abstract base class for notification providers.

    All notification providers must implement this interface to ensure
    consistent behavior and easy swapping between providers.
    """

    @abstractmethod
    async def send_notification(self, event: NotificationEvent) -> bool:
        """
        Send a notification event.

        Returns:
            bool: True if the event was delivered, False otherwise
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured and can send."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Provider name for logging and configuration."""


class ConsoleNotificationProvider(NotificationProvider):
    """Writes notifications to the application log."""

    _LEVELS = {
        NotificationSeverity.INFO: logging.INFO,
        NotificationSeverity.WARNING: logging.WARNING,
        NotificationSeverity.ERROR: logging.ERROR,
        NotificationSeverity.CRITICAL: logging.CRITICAL,
    }

    async def send_notification(self, event: NotificationEvent) -> bool:
        logger.log(
            self._LEVELS[event.severity],
            f"[{event.type.upper()}] {event.title}: {event.message}",
            extra={"notification_id": event.id, "notification_metadata": event.metadata},
        )
        return True

    def is_available(self) -> bool:
        """Console is always available."""
        return True

    def get_provider_name(self) -> str:
        return "console"


class WebhookNotificationProvider(NotificationProvider):
    """
    Generic webhook notification provider.

    POSTs the event JSON to any HTTP endpoint. Useful for chat bridges or
    alerting systems that accept JSON.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": "API-Weaver/1.0",
        }

    async def send_notification(self, event: NotificationEvent) -> bool:
        if not self.is_available():
            logger.warning("Webhook provider not properly configured")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.webhook_url, json=event.to_dict(), headers=self.headers
                )
        except httpx.HTTPError as e:
            logger.warning(f"Webhook notification failed (network): {str(e)}")
            return False

        if response.is_success:
            logger.debug(f"Webhook notification sent: {event.title}")
            return True

        logger.warning(f"Webhook returned status {response.status_code}")
        return False

    def is_available(self) -> bool:
        return bool(self.webhook_url)

    def get_provider_name(self) -> str:
        return "webhook"


class NotificationManager:
    """
    Central notification manager that coordinates providers.

    Filters events by severity, fans them out to the enabled providers and
    keeps the most recent events in memory.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or Config()
        self.enabled: bool = config.notifications_enabled
        self.min_severity = NotificationSeverity(config.notification_min_severity)
        self.console_enabled: bool = config.notification_console
        self.webhook_url: str = config.notification_webhook_url
        self.webhook_enabled: bool = bool(self.webhook_url)
        self.webhook_timeout: float = config.webhook_timeout
        self._webhook_transport = webhook_transport
        self._history: Deque[NotificationEvent] = deque(maxlen=MAX_HISTORY)
        self._pending: Set["asyncio.Task[None]"] = set()
        self.providers: List[NotificationProvider] = []
        self._initialize_providers()

    def _initialize_providers(self) -> None:
        """(Re)build the provider list from the current channel settings."""
        providers: List[NotificationProvider] = []
        if self.console_enabled:
            providers.append(ConsoleNotificationProvider())
        if self.webhook_enabled:
            webhook = WebhookNotificationProvider(
                self.webhook_url, self.webhook_timeout, self._webhook_transport
            )
            if webhook.is_available():
                providers.append(webhook)
            else:
                logger.warning("Webhook channel enabled without a URL, ignoring")
        self.providers = providers

    def _should_send(self, severity: NotificationSeverity) -> bool:
        return self.enabled and severity.rank >= self.min_severity.rank

    async def notify(
        self,
        severity: NotificationSeverity,
        type: str,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        wait: bool = True,
    ) -> Optional[NotificationEvent]:
        """
        Record and deliver a notification.

        The event enters history immediately. With ``wait=False`` delivery
        runs as a background task, so request handling never waits on a
        slow provider.

        Returns:
            The recorded event, or None when notifications are disabled or
            the severity is below the configured floor.
        """
        if not self._should_send(severity):
            logger.debug(f"Notification filtered out: {title}")
            return None

        event = NotificationEvent(
            severity=severity,
            type=type,
            title=title,
            message=message,
            metadata=metadata or {},
            channels=[provider.get_provider_name() for provider in self.providers],
        )
        self._history.appendleft(event)

        providers = list(self.providers)
        if not providers:
            return event
        if wait:
            await self._deliver(event, providers)
        else:
            task = asyncio.create_task(self._deliver(event, providers))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return event

    async def _deliver(self, event: NotificationEvent, providers: List[NotificationProvider]) -> None:
        success_count = 0
        for provider in providers:
            try:
                if await provider.send_notification(event):
                    success_count += 1
            except Exception as e:
                logger.error(f"Provider {provider.get_provider_name()} failed: {str(e)}")

        event.sent = success_count > 0
        if providers and not event.sent:
            logger.warning(f"All notification providers failed for: {event.title}")

    async def drain(self) -> None:
        """Wait for background deliveries still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def notify_api_key_misuse(
        self, ip: str, path: str, reason: str, wait: bool = True
    ) -> Optional[NotificationEvent]:
        """``reason`` is ``"missing"`` or ``"invalid"``."""
        return await self.notify(
            NotificationSeverity.WARNING,
            NotificationType.API_KEY_MISUSE.value,
            f"API Key {reason.capitalize()}",
            f"Unauthorized access attempt from {ip} to {path}",
            {"ip": ip, "path": path, "reason": reason, "timestamp": _utc_now_iso()},
            wait,
        )

    async def notify_server_error(
        self, error: str, path: str, status_code: int = 500, wait: bool = True
    ) -> Optional[NotificationEvent]:
        severity = NotificationSeverity.ERROR if status_code >= 500 else NotificationSeverity.WARNING
        return await self.notify(
            severity,
            NotificationType.SERVER_ERROR.value,
            f"Server Error: {status_code}",
            f"Error on {path}: {error}",
            {"error": error, "path": path, "statusCode": status_code},
            wait,
        )

    async def notify_mcp_unavailable(
        self, mcp_name: str, error: str, wait: bool = True
    ) -> Optional[NotificationEvent]:
        return await self.notify(
            NotificationSeverity.CRITICAL,
            NotificationType.MCP_UNAVAILABLE.value,
            f"MCP Service Unavailable: {mcp_name}",
            f"The {mcp_name} service is not responding",
            {"mcpName": mcp_name, "error": error},
            wait,
        )

    async def notify_rate_limit_exceeded(
        self, ip: str, path: str, wait: bool = True
    ) -> Optional[NotificationEvent]:
        return await self.notify(
            NotificationSeverity.WARNING,
            NotificationType.RATE_LIMIT_EXCEEDED.value,
            "Rate Limit Exceeded",
            f"Client {ip} exceeded the request limit on {path}",
            {"ip": ip, "path": path},
            wait,
        )

    async def notify_security_threat(
        self,
        threat: str,
        details: str,
        metadata: Optional[Dict[str, Any]] = None,
        wait: bool = True,
    ) -> Optional[NotificationEvent]:
        return await self.notify(
            NotificationSeverity.ERROR,
            NotificationType.SECURITY_THREAT.value,
            f"Security Threat Detected: {threat}",
            details,
            metadata,
            wait,
        )

    def get_history(self, limit: int = 50) -> List[NotificationEvent]:
        """Most recent events first."""
        return list(self._history)[: max(limit, 0)]

    def clear_history(self) -> None:
        self._history.clear()

    def get_config(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "minSeverity": self.min_severity.value,
            "channels": {
                "console": self.console_enabled,
                "webhook": {"enabled": self.webhook_enabled, "url": self.webhook_url},
            },
        }

    def update_config(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial configuration update.

        Accepts the shape returned by get_config(); omitted keys keep their
        current values.

        Raises:
            ValueError: If minSeverity is not a known severity
        """
        if "minSeverity" in updates and updates["minSeverity"] is not None:
            self.min_severity = NotificationSeverity(updates["minSeverity"])
        if updates.get("enabled") is not None:
            self.enabled = bool(updates["enabled"])

        channels = updates.get("channels") or {}
        if channels.get("console") is not None:
            self.console_enabled = bool(channels["console"])
        webhook = channels.get("webhook") or {}
        if webhook.get("url") is not None:
            self.webhook_url = webhook["url"]
        if webhook.get("enabled") is not None:
            self.webhook_enabled = bool(webhook["enabled"])

        self._initialize_providers()
        logger.info(f"Notification configuration updated: {self.get_config()}")
        return self.get_config()

    def get_status(self) -> Dict[str, Any]:
        """Get notification system status."""
        return {
            "enabled": self.enabled,
            "providers": [
                {"name": provider.get_provider_name(), "available": provider.is_available()}
                for provider in self.providers
            ],
            "history_size": len(self._history),
            "pending_deliveries": len(self._pending),
        }
