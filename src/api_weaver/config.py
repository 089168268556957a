"""Configuration management for API Weaver."""

import os
from pathlib import Path
from typing import Any, Dict, List

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")

SEVERITY_NAMES = ("info", "warning", "error", "critical")

# Credentials that never reach a child process spawned by CommandRunner
SECRET_ENV_VARS = (
    "API_KEY",
    "GITHUB_TOKEN",
    "VERCEL_TOKEN",
    "SUPABASE_KEY",
    "N8N_API_KEY",
    "GOOGLE_CLOUD_ACCESS_TOKEN",
    "NOTIFICATION_WEBHOOK_URL",
)


def _env_bool(name: str, default: str) -> bool:
    value = os.environ.get(name, default).lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value}")


class Config:
    """Configuration manager for API Weaver services.

    Values come from the process environment at construction time. Keyword
    overrides win over the environment, which keeps test instances isolated
    from whatever the host shell exports.
    """

    def __init__(self, **overrides: Any):
        self._defaults = {
            # Security
            "api_key": os.environ.get("API_KEY") or None,
            "project_root": os.path.abspath(os.environ.get("PROJECT_ROOT", os.getcwd())),

            # Server configuration
            "server_name": os.environ.get("SERVER_NAME", "api-weaver"),
            "server_version": os.environ.get("SERVER_VERSION", "1.0.0"),
            "host": os.environ.get("HOST", "0.0.0.0"),  # nosec B104 - Intentional for container deployment
            "port": int(os.environ.get("PORT", "5000")),
            "log_level": os.environ.get("LOG_LEVEL", "INFO"),
            "log_dir": os.environ.get("LOG_DIR", ""),

            # Rate limiting
            "rate_limit_enabled": not _env_bool("RATE_LIMIT_DISABLED", "false"),
            "rate_limit_max_requests": int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "100")),
            "rate_limit_window_minutes": int(os.environ.get("RATE_LIMIT_WINDOW_MINUTES", "15")),

            # Command execution
            "command_timeout_ms": int(os.environ.get("COMMAND_TIMEOUT_MS", "10000")),
            "command_max_output": int(os.environ.get("COMMAND_MAX_OUTPUT", "1048576")),  # 1MB

            # Downstream MCP services
            "content_mcp_host": os.environ.get("CONTENT_MCP_HOST", "localhost"),
            "content_mcp_port": int(os.environ.get("CONTENT_MCP_PORT", "3001")),
            "integration_mcp_host": os.environ.get("INTEGRATION_MCP_HOST", "localhost"),
            "integration_mcp_port": int(os.environ.get("INTEGRATION_MCP_PORT", "3002")),
            "gateway_port": int(os.environ.get("GATEWAY_PORT", "3000")),
            "proxy_timeout": float(os.environ.get("PROXY_TIMEOUT", "30")),

            # SSE
            "sse_keepalive_interval": float(os.environ.get("SSE_KEEPALIVE_INTERVAL", "30")),

            # Notification configuration
            "notifications_enabled": _env_bool("NOTIFICATIONS_ENABLED", "true"),
            "notification_min_severity": os.environ.get("NOTIFICATION_MIN_SEVERITY", "warning").lower(),
            "notification_console": _env_bool("NOTIFICATION_CONSOLE", "true"),
            "notification_webhook_url": os.environ.get("NOTIFICATION_WEBHOOK_URL", ""),
            "webhook_timeout": float(os.environ.get("WEBHOOK_TIMEOUT", "5")),

            # Remote service credentials
            "github_token": os.environ.get("GITHUB_TOKEN", ""),
            "vercel_token": os.environ.get("VERCEL_TOKEN", ""),
            "supabase_url": os.environ.get("SUPABASE_URL", ""),
            "supabase_key": os.environ.get("SUPABASE_KEY", ""),
            "n8n_url": os.environ.get("N8N_URL", ""),
            "n8n_api_key": os.environ.get("N8N_API_KEY", ""),
            "gcloud_project_id": os.environ.get("GOOGLE_CLOUD_PROJECT_ID", ""),
            "gcloud_access_token": os.environ.get("GOOGLE_CLOUD_ACCESS_TOKEN", ""),
            "remote_timeout": float(os.environ.get("REMOTE_TIMEOUT", "30")),
        }

        unknown = set(overrides) - set(self._defaults)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        self._defaults.update(overrides)
        if self._defaults["project_root"]:
            self._defaults["project_root"] = os.path.abspath(self._defaults["project_root"])

    def __getattr__(self, name: str) -> Any:
        """Get configuration value."""
        if name in self._defaults:
            return self._defaults[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification of configuration after initialization."""
        try:
            defaults = object.__getattribute__(self, "_defaults")
            if name in defaults:
                raise AttributeError(f"Configuration is immutable: cannot set '{name}'")
        except AttributeError as e:
            if "immutable" in str(e):
                raise
        super().__setattr__(name, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with optional default."""
        return self._defaults.get(key, default)

    @property
    def content_mcp_url(self) -> str:
        return f"http://{self.content_mcp_host}:{self.content_mcp_port}"

    @property
    def integration_mcp_url(self) -> str:
        return f"http://{self.integration_mcp_host}:{self.integration_mcp_port}"

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty list means valid.
        """
        errors = []

        if not self.api_key:
            errors.append("API_KEY is not set; protected routes will answer 500")

        root = Path(self.project_root)
        if not root.is_dir():
            errors.append(f"Project root not found: {root}")
        elif not os.access(root, os.W_OK):
            errors.append(f"Project root not writable: {root}")

        if self.rate_limit_max_requests < 1:
            errors.append("RATE_LIMIT_MAX_REQUESTS must be at least 1")
        if self.rate_limit_window_minutes < 1:
            errors.append("RATE_LIMIT_WINDOW_MINUTES must be at least 1")

        if not 1000 <= self.command_timeout_ms <= 30000:
            errors.append("COMMAND_TIMEOUT_MS must be between 1000 and 30000")

        if self.notification_min_severity not in SEVERITY_NAMES:
            errors.append(
                f"NOTIFICATION_MIN_SEVERITY must be one of {', '.join(SEVERITY_NAMES)}"
            )

        if self.sse_keepalive_interval <= 0:
            errors.append("SSE_KEEPALIVE_INTERVAL must be positive")

        if self.log_dir:
            log_dir = Path(self.log_dir)
            if not log_dir.exists():
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    errors.append(f"Cannot create log directory {log_dir}: {e}")
            elif not os.access(log_dir, os.W_OK):
                errors.append(f"Log directory not writable: {log_dir}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self._defaults.copy()

    def __str__(self) -> str:
        return f"Config(project_root={self.project_root})"

    def __repr__(self) -> str:
        return f"Config(project_root={self.project_root}, port={self.port})"

    def get_startup_summary(self) -> Dict[str, Any]:
        """Get startup configuration summary for logging (without secrets).

        Returns:
            Dictionary with key configuration values for startup logging
        """
        return {
            "server_name": self.server_name,
            "server_version": self.server_version,
            "project_root": self.project_root,
            "api_key_configured": bool(self.api_key),
            "rate_limit": (
                f"{self.rate_limit_max_requests}/{self.rate_limit_window_minutes}min"
                if self.rate_limit_enabled
                else "disabled"
            ),
            "content_mcp_url": self.content_mcp_url,
            "integration_mcp_url": self.integration_mcp_url,
            "notifications_enabled": self.notifications_enabled,
            "notification_min_severity": self.notification_min_severity,
            "webhook_configured": bool(self.notification_webhook_url),
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
        }

    @classmethod
    def load_runtime_config(cls) -> "Config":
        """Load runtime configuration from the process environment.

        This is the main entry point for loading configuration when a
        service is started from the command line.

        Returns:
            Configured Config instance
        """
        return cls()
