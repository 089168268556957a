"""In-memory request log and aggregate request statistics."""

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List


MAX_LOG_ENTRIES = 1000


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ApiLogRecord:
    """A single handled HTTP request."""

    method: str
    path: str
    status: int
    duration_ms: int
    ip: str
    user_agent: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "duration": self.duration_ms,
            "ip": self.ip,
            "userAgent": self.user_agent,
        }


class RequestLogStore:
    """Ring buffer of recent requests plus running totals.

    Only the most recent ``max_entries`` records are kept; the totals count
    every request since the store was created.
    """

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._logs: Deque[ApiLogRecord] = deque(maxlen=max_entries)
        self._started = time.monotonic()
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self._total_response_time = 0

    def add_log(
        self,
        method: str,
        path: str,
        status: int,
        duration_ms: int,
        ip: str,
        user_agent: str | None = None,
    ) -> ApiLogRecord:
        record = ApiLogRecord(
            method=method,
            path=path,
            status=status,
            duration_ms=duration_ms,
            ip=ip,
            user_agent=user_agent,
        )
        self._logs.appendleft(record)
        return record

    def get_logs(self, limit: int = 100) -> List[ApiLogRecord]:
        """Most recent records first."""
        return list(self._logs)[: max(limit, 0)]

    def clear_logs(self) -> None:
        self._logs.clear()

    def increment_requests(self, success: bool, duration_ms: int) -> None:
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        self._total_response_time += duration_ms

    def record(
        self,
        method: str,
        path: str,
        status: int,
        duration_ms: int,
        ip: str,
        user_agent: str | None = None,
    ) -> ApiLogRecord:
        """Add a log record and update the totals in one step."""
        record = self.add_log(method, path, status, duration_ms, ip, user_agent)
        self.increment_requests(200 <= status < 400, duration_ms)
        return record

    def get_stats(self) -> Dict[str, Any]:
        average = (
            round(self._total_response_time / self.total_requests)
            if self.total_requests
            else 0
        )
        return {
            "totalRequests": self.total_requests,
            "successfulRequests": self.successful_requests,
            "failedRequests": self.failed_requests,
            "averageResponseTime": average,
            "uptime": int(time.monotonic() - self._started),
        }
