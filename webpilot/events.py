"""
Per-session event channel.

Events get a monotonically increasing seq and a non-decreasing timestamp, are kept in
a bounded replay buffer and fanned out to every subscriber. Heartbeats are fanned out
but never buffered or numbered.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

from .models import AutomationEvent, EventType

DEFAULT_BUFFER_SIZE = 1000

_CLOSED = object()


def format_sse(event: AutomationEvent) -> str:
    """
    Encode one event as a Server-Sent Events frame.

    Sequenced events carry their seq as the SSE id; heartbeats carry only data.
    """
    payload = json.dumps(event.to_wire(), separators=(",", ":"))
    if event.type == EventType.HEARTBEAT or event.seq is None:
        return f"data: {payload}\n\n"
    return f"id: {event.seq}\ndata: {payload}\n\n"


class EventChannel:
    """
    Ordered event stream for one session.

    Example:
        >>> channel = EventChannel("abc123")
        >>> channel.emit(EventType.INFO, "Navigating")
        >>> async for event in channel.subscribe():
        ...     print(event.message)
    """

    def __init__(
        self,
        session_id: str,
        heartbeat_interval_s: float = 15.0,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.session_id = session_id
        self.heartbeat_interval_s = heartbeat_interval_s
        self._buffer: deque[AutomationEvent] = deque(maxlen=buffer_size)
        self._subscribers: set[asyncio.Queue] = set()
        self._seq = 0
        self._last_timestamp = 0.0
        self._closed = False
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_seq(self) -> int:
        return self._seq

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def events(self) -> list[AutomationEvent]:
        """Buffered events, oldest first"""
        return list(self._buffer)

    def emit(
        self,
        type: EventType,
        message: str = "",
        data: dict[str, Any] | None = None,
    ) -> AutomationEvent | None:
        """
        Append an event and deliver it to subscribers.

        Args:
            type: Event type (not HEARTBEAT; use heartbeat())
            message: Human-readable message
            data: Optional structured payload (screenshot_url, url, title, done, ...)

        Returns:
            The sequenced event, or None if the channel is closed
        """
        if type == EventType.HEARTBEAT:
            raise ValueError("Heartbeats are sent with heartbeat(), not emit()")
        if self._closed:
            return None

        # wall clock can step backwards; timestamps must not
        timestamp = max(time.time(), self._last_timestamp)
        self._last_timestamp = timestamp
        self._seq += 1
        event = AutomationEvent(
            session_id=self.session_id,
            type=type,
            message=message,
            timestamp=timestamp,
            seq=self._seq,
            data=data,
        )
        self._buffer.append(event)
        self._fan_out(event)
        return event

    def heartbeat(self) -> None:
        if self._closed:
            return
        self._fan_out(
            AutomationEvent(
                session_id=self.session_id,
                type=EventType.HEARTBEAT,
                timestamp=max(time.time(), self._last_timestamp),
            )
        )

    def _fan_out(self, item: Any) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(item)

    async def subscribe(self, after_seq: int | None = None) -> AsyncIterator[AutomationEvent]:
        """
        Yield buffered events newer than after_seq, then live events, until close().

        Args:
            after_seq: Last seq the subscriber already has (None replays everything)
        """
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._buffer:
            if after_seq is None or (event.seq or 0) > after_seq:
                queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._subscribers.add(queue)

        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers.discard(queue)

    def start_heartbeat(self) -> None:
        """Start the periodic heartbeat task (requires a running event loop)"""
        if self._heartbeat_task is None and not self._closed:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval_s)
            self.heartbeat()

    async def close(self) -> None:
        """Stop heartbeats and end every subscription once buffered events drain"""
        if self._closed:
            return
        self._closed = True
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        self._fan_out(_CLOSED)
        self._subscribers.clear()


async def sse_stream(channel: EventChannel, last_event_id: str | None = None) -> AsyncIterator[str]:
    """
    SSE frames for a channel, resuming after Last-Event-ID when given.

    Args:
        channel: Session channel
        last_event_id: Value of the Last-Event-ID request header, if any
    """
    after_seq = int(last_event_id) if last_event_id and last_event_id.isdigit() else None
    async for event in channel.subscribe(after_seq=after_seq):
        yield format_sse(event)
