"""Request and response models for the HTTP API."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..commands import DEFAULT_TIMEOUT_MS, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS
from ..config import SEVERITY_NAMES
from ..security import MAX_PATH_LENGTH


class FileWriteRequest(BaseModel):
    """Body of POST /files."""

    path: str = Field(..., min_length=1, max_length=MAX_PATH_LENGTH, description="File path relative to the project root")
    content: Optional[str] = Field(None, description="Text content to write")


class ExecuteRequest(BaseModel):
    """Body of POST /execute."""

    command: str = Field(..., min_length=1, description="Command line to execute")
    timeout: int = Field(
        DEFAULT_TIMEOUT_MS,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Timeout in milliseconds",
    )
    cwd: Optional[str] = Field(None, description="Working directory relative to the project root")


class WebhookChannelUpdate(BaseModel):
    enabled: Optional[bool] = None
    url: Optional[str] = None


class ChannelsUpdate(BaseModel):
    console: Optional[bool] = None
    webhook: Optional[WebhookChannelUpdate] = None


class NotificationConfigUpdate(BaseModel):
    """Body of PUT /api/notifications/config; omitted fields are unchanged."""

    enabled: Optional[bool] = None
    minSeverity: Optional[str] = None
    channels: Optional[ChannelsUpdate] = None

    @field_validator("minSeverity")
    @classmethod
    def validate_min_severity(cls, v):
        if v is not None and v not in SEVERITY_NAMES:
            raise ValueError(f"minSeverity must be one of: {', '.join(SEVERITY_NAMES)}")
        return v


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service variant")
    server_name: str
    version: str
    timestamp: str
    uptime_seconds: int
    details: Dict[str, Any] = Field(default_factory=dict)
