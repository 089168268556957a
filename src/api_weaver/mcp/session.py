"""
MCP transport sessions.

A session is anything the dispatcher can push a JSON-RPC message into.
SseSession backs a Server-Sent-Events stream: messages are queued and the
HTTP response iterates ``frames()`` to write them out, with a comment-line
ping every keep-alive interval so intermediaries keep the connection open.

Lifecycle: CONNECTING (headers sent, timer armed) -> OPEN (first frame
written) -> CLOSED (client disconnect or write failure; timer cancelled).
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL = 30.0
PING_FRAME = ":ping\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse_message(message: Dict[str, Any], event: str = "message") -> str:
    return f"event: {event}\ndata: {json.dumps(message)}\n\n"


class SessionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class McpSession(ABC):
    """A transport that accepts server-to-client messages."""

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """Whether send() will still deliver."""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Deliver one JSON-RPC message."""


class CapturingSession(McpSession):
    """Collects messages in memory; used for request/response HTTP."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    @property
    def is_active(self) -> bool:
        return True

    async def send(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)


class SseSession(McpSession):
    """An MCP session carried over one Server-Sent-Events response."""

    def __init__(
        self,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.keepalive_interval = keepalive_interval
        self.state = SessionState.CONNECTING
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._keepalive_task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.state is not SessionState.CLOSED

    def start(self) -> None:
        """Arm the keep-alive timer."""
        if self._keepalive_task is None and self.is_active:
            self._keepalive_task = asyncio.create_task(self._keepalive())

    async def _keepalive(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.keepalive_interval)
            if self.is_active:
                self._queue.put_nowait(PING_FRAME)

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.is_active:
            logger.debug(f"Dropping message for closed session {self.session_id}")
            return
        self._queue.put_nowait(format_sse_message(message))

    async def frames(self) -> AsyncIterator[str]:
        """
        Yield SSE frames until the session closes.

        A failed write surfaces here as cancellation or generator close,
        either of which closes the session.
        """
        self.start()
        try:
            while self.is_active:
                frame = await self._queue.get()
                yield frame
                if self.state is SessionState.CONNECTING:
                    self.state = SessionState.OPEN
        finally:
            self.close()

    def close(self) -> None:
        """Mark the session closed and cancel its keep-alive timer."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        logger.info(f"SSE session {self.session_id} closed")


class SessionRegistry:
    """Live SSE sessions of one application, by id."""

    def __init__(self):
        self._sessions: Dict[str, SseSession] = {}

    def add(self, session: SseSession) -> None:
        self._sessions[session.session_id] = session

    def get(self, session_id: Optional[str]) -> Optional[SseSession]:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None and not session.is_active:
            self._sessions.pop(session_id, None)
            return None
        return session

    def remove(self, session: SseSession) -> None:
        self._sessions.pop(session.session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
