"""
Exception hierarchy for API Weaver.

Every error that can reach a client derives from ApiWeaverError and carries
the HTTP status and the short ``error`` label used in the JSON envelope
``{"error": ..., "message": ...}``. Handlers never expose stack traces.
"""

from typing import Any, Dict


class ApiWeaverError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ConfigurationError(ApiWeaverError):
    """Server-side configuration is missing or invalid."""

    status_code = 500
    error = "Server Configuration Error"


class AuthError(ApiWeaverError):
    """Credential missing (401) or not matching (403)."""

    status_code = 401
    error = "Unauthorized"


class ValidationError(ApiWeaverError):
    """Request input failed validation."""

    status_code = 400
    error = "Bad Request"


class SecurityViolationError(ValidationError):
    """A path or command tried to escape the sandbox."""


class CommandRejectedError(ValidationError):
    """A command line was refused by the command validator."""


class NotFoundError(ApiWeaverError):
    """Requested file or directory does not exist."""

    status_code = 404
    error = "Not Found"


class UpstreamError(ApiWeaverError):
    """A downstream service or remote API answered with an error."""

    status_code = 502
    error = "Bad Gateway"


class ServiceUnavailableError(UpstreamError):
    """A downstream service could not be reached."""

    status_code = 503
    error = "Service Unavailable"


class UpstreamTimeoutError(UpstreamError):
    """A downstream service did not answer in time."""

    status_code = 504
    error = "Gateway Timeout"
