"""
Client side: REST submission and a reconnecting event-stream subscriber.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any, Protocol

import aiohttp
import requests

from .events import EventChannel
from .exceptions import SessionError
from .image_store import WebPilotLogger
from .models import AutomationEvent, EventType

START_ENDPOINT = "/api/automation/start"
EVENTS_ENDPOINT = "/api/automation/events"


class EventTransport(Protocol):
    """Opens one event subscription; the returned stream is closed with aclose()"""

    def open(self, session_id: str, after_seq: int | None) -> AsyncIterator[AutomationEvent]: ...


class ChannelTransport:
    """
    In-process transport reading straight from EventChannels.

    Args:
        lookup: Maps a session id to its channel (e.g. AutomationService.channel)
    """

    def __init__(self, lookup: Callable[[str], EventChannel]):
        self.lookup = lookup

    async def open(self, session_id: str, after_seq: int | None) -> AsyncIterator[AutomationEvent]:
        channel = self.lookup(session_id)
        async with aclosing(channel.subscribe(after_seq=after_seq)) as events:
            async for event in events:
                yield event


def parse_sse_frame(lines: list[str], session_id: str) -> AutomationEvent | None:
    """
    Decode one SSE frame (the lines between blank lines) into an event.

    Returns:
        AutomationEvent, or None for frames without data (comments, retry hints)
    """
    event_id: str | None = None
    data_lines: list[str] = []
    for line in lines:
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "id":
            event_id = value
        elif field == "data":
            data_lines.append(value)

    if not data_lines:
        return None

    payload = json.loads("\n".join(data_lines))
    return AutomationEvent(
        session_id=session_id,
        type=EventType(payload["type"]),
        message=payload.get("message", ""),
        timestamp=payload.get("timestamp", time.time()),
        seq=int(event_id) if event_id and event_id.isdigit() else None,
        data=payload.get("data"),
    )


class SSETransport:
    """
    Server-Sent Events over aiohttp, resuming with Last-Event-ID.

    Example:
        >>> client = EventStreamClient(SSETransport("http://localhost:8000"))
        >>> events = await client.listen(session_id)
    """

    def __init__(self, base_url: str, headers: dict[str, str] | None = None, connect_timeout_s: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.connect_timeout_s = connect_timeout_s

    def url_for(self, session_id: str) -> str:
        return f"{self.base_url}{EVENTS_ENDPOINT}/{session_id}"

    async def open(self, session_id: str, after_seq: int | None) -> AsyncIterator[AutomationEvent]:
        headers = {"Accept": "text/event-stream", **self.headers}
        if after_seq is not None:
            headers["Last-Event-ID"] = str(after_seq)

        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            async with http.get(self.url_for(session_id), headers=headers) as response:
                if response.status == 404:
                    raise SessionError(f"Unknown session: {session_id}", session_id=session_id)
                response.raise_for_status()

                frame: list[str] = []
                async for raw in response.content:
                    line = raw.decode("utf-8").rstrip("\r\n")
                    if line:
                        frame.append(line)
                        continue
                    event = parse_sse_frame(frame, session_id)
                    frame = []
                    if event is not None:
                        yield event


class EventStreamClient:
    """
    Subscribes to a session's events and keeps listening across transport failures.

    Heartbeats are dropped. Every other event is appended to `events` in arrival order,
    deduplicated by seq. On a transport error while running, the pending stream is
    closed and a new one opened after reconnect_delay_s, resuming after the last seq
    seen. Listening ends on an event with data.done, when the stream ends cleanly, or
    on stop().
    """

    def __init__(
        self,
        transport: EventTransport,
        reconnect_delay_s: float = 3.0,
        on_event: Callable[[AutomationEvent], None] | None = None,
        max_reconnects: int | None = None,
        logger: WebPilotLogger | None = None,
    ):
        self.transport = transport
        self.reconnect_delay_s = reconnect_delay_s
        self.on_event = on_event
        self.max_reconnects = max_reconnects
        self.logger = logger

        self.events: list[AutomationEvent] = []
        self.running = False
        self.reconnects = 0
        self.last_seq: int | None = None
        self._seen: set[int] = set()

    def stop(self) -> None:
        self.running = False

    def _accept(self, event: AutomationEvent) -> bool:
        """Record an event; returns True if it ends the stream"""
        if event.type == EventType.HEARTBEAT:
            return False
        if event.seq is not None:
            if event.seq in self._seen:
                return False
            self._seen.add(event.seq)
            self.last_seq = max(self.last_seq or 0, event.seq)

        self.events.append(event)
        if self.on_event:
            self.on_event(event)
        return bool(event.data and event.data.get("done"))

    async def listen(self, session_id: str) -> list[AutomationEvent]:
        """
        Listen until the session's terminal event.

        Returns:
            The filtered event log

        Raises:
            SessionError: The session does not exist
        """
        self.running = True
        while self.running:
            stream = self.transport.open(session_id, self.last_seq)
            try:
                async for event in stream:
                    if self._accept(event):
                        self.running = False
                        break
                    if not self.running:
                        break
                else:
                    self.running = False
            except SessionError:
                self.running = False
                raise
            except Exception as e:
                if not self.running:
                    break
                if self.max_reconnects is not None and self.reconnects >= self.max_reconnects:
                    self.running = False
                    raise
                self.reconnects += 1
                message = (
                    f"⚠️  [WebPilot] Event stream dropped ({e}); "
                    f"reconnecting in {self.reconnect_delay_s:.0f}s"
                )
                if self.logger:
                    self.logger.warning(message)
                else:
                    print(message)
                # never hold two subscriptions for one session
                await stream.aclose()
                await asyncio.sleep(self.reconnect_delay_s)
            finally:
                await stream.aclose()

        return self.events


class ApiClient:
    """
    Synchronous REST client for the automation endpoints.

    Example:
        >>> client = ApiClient("http://localhost:8000")
        >>> response = client.start_automation("Go to example.com and read the page title")
        >>> response["session_id"]
    """

    def __init__(self, base_url: str = "http://localhost:8000", timeout_s: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def start_automation(
        self,
        prompt: str,
        session_id: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Submit a task.

        Args:
            prompt: Natural-language task
            session_id: Optional session id to reuse
            config: Optional overrides (model, temperature, maxTokens, headless, timeout)

        Returns:
            Decoded JSON response (success payload or error response)
        """
        body: dict[str, Any] = {"prompt": prompt}
        if session_id:
            body["sessionId"] = session_id
        if config:
            body["config"] = config

        response = requests.post(
            f"{self.base_url}{START_ENDPOINT}",
            json=body,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout_s,
        )
        return response.json()

    def events_url(self, session_id: str) -> str:
        return f"{self.base_url}{EVENTS_ENDPOINT}/{session_id}"
