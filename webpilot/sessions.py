"""
Session registry: owns every live session, its event channel and its running task.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from .browser import AsyncBrowserSession
from .config import AutomationConfig
from .events import EventChannel
from .exceptions import SessionError
from .image_store import ImageStore
from .models import EventType


@dataclass
class SessionHandle:
    """Everything the registry tracks for one session id"""

    session: AsyncBrowserSession
    channel: EventChannel
    task: asyncio.Task | None = None
    result: Any = None
    error: BaseException | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.session.id

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class SessionRegistry:
    """
    Explicit map of session id -> SessionHandle.

    Sessions never share mutable state; the registry is the only place that knows
    about more than one of them.
    """

    def __init__(self, config: AutomationConfig | None = None, image_store: ImageStore | None = None):
        self.config = config or AutomationConfig()
        self.image_store = image_store
        self._handles: dict[str, SessionHandle] = {}
        # finished ids, oldest first
        self._finished: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._handles

    def ids(self) -> list[str]:
        return list(self._handles)

    def create(
        self, session_id: str | None = None, config: AutomationConfig | None = None
    ) -> SessionHandle:
        """
        Allocate a session and its channel.

        Args:
            session_id: Reuse a caller-chosen id (must not be in use); uuid4 hex otherwise
            config: Per-session configuration (defaults to the registry's)

        Raises:
            SessionError: If session_id is already registered
        """
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._handles:
            raise SessionError(f"Session already exists: {session_id}", session_id=session_id)

        config = config or self.config
        session = AsyncBrowserSession(
            session_id=session_id, config=config, image_store=self.image_store
        )
        channel = EventChannel(session_id, heartbeat_interval_s=config.heartbeat_interval_s)
        handle = SessionHandle(session=session, channel=channel)
        self._handles[session_id] = handle
        channel.emit(EventType.CONNECTED, f"Session {session_id} created")
        return handle

    def get(self, session_id: str) -> SessionHandle:
        try:
            return self._handles[session_id]
        except KeyError:
            raise SessionError(f"Unknown session: {session_id}", session_id=session_id) from None

    def require_idle(self, session_id: str) -> SessionHandle:
        """Return the handle, raising SessionError if a task is still running on it"""
        handle = self.get(session_id)
        if handle.running:
            raise SessionError(f"Session is busy: {session_id}", session_id=session_id)
        return handle

    async def remove(self, session_id: str) -> None:
        """Cancel the session's task, close its browser and channel, forget it"""
        handle = self._handles.pop(session_id, None)
        self._finished.pop(session_id, None)
        if handle is None:
            raise SessionError(f"Unknown session: {session_id}", session_id=session_id)

        if handle.running:
            handle.task.cancel()
            try:
                await handle.task
            except (asyncio.CancelledError, Exception):
                # the task's own error is already recorded on the handle
                pass
        await handle.session.close()
        await handle.channel.close()

    def mark_finished(self, session_id: str) -> list[str]:
        """
        Record that a session's task ended and evict the oldest finished sessions
        beyond config.max_finished_sessions.

        Evicted sessions must already be closed; their results and events are gone.

        Returns:
            Ids that were evicted
        """
        if session_id not in self._handles:
            return []
        self._finished.pop(session_id, None)
        self._finished[session_id] = None

        evicted: list[str] = []
        while len(self._finished) > self.config.max_finished_sessions:
            oldest = next(iter(self._finished))
            del self._finished[oldest]
            self._handles.pop(oldest, None)
            evicted.append(oldest)
        return evicted

    async def close_all(self) -> None:
        for session_id in list(self._handles):
            await self.remove(session_id)
