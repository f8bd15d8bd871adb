"""
Tests for the reconnecting event client, SSE transport and REST client
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from webpilot.client import (
    ApiClient,
    ChannelTransport,
    EventStreamClient,
    SSETransport,
    parse_sse_frame,
)
from webpilot.events import EventChannel, sse_stream
from webpilot.exceptions import SessionError
from webpilot.models import AutomationEvent, EventType


def event(seq, message="", done=False, type=EventType.INFO):
    return AutomationEvent(
        session_id="s1",
        type=type,
        message=message,
        seq=seq,
        data={"done": True} if done else None,
    )


class FlakyTransport:
    """Serves scripted streams; a stream entry that is an exception is raised mid-stream"""

    def __init__(self, streams):
        self.streams = list(streams)
        self.opened = []
        self.log = []

    async def open(self, session_id, after_seq):
        self.opened.append(after_seq)
        self.log.append("open")
        items = self.streams.pop(0)
        try:
            for item in items:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.log.append("close")


@pytest.mark.asyncio
async def test_reconnects_and_resumes_after_last_seq():
    transport = FlakyTransport(
        [
            [event(1, "connected"), event(2, "navigating"), ConnectionResetError("peer reset")],
            [event(2, "navigating"), event(3, "done", done=True)],
        ]
    )
    client = EventStreamClient(transport, reconnect_delay_s=0)

    events = await client.listen("s1")

    assert [e.seq for e in events] == [1, 2, 3]
    assert transport.opened == [None, 2]
    assert transport.log == ["open", "close", "open", "close"]
    assert client.reconnects == 1
    assert client.running is False


@pytest.mark.asyncio
async def test_heartbeats_are_dropped():
    heartbeat = AutomationEvent(session_id="s1", type=EventType.HEARTBEAT)
    transport = FlakyTransport([[heartbeat, event(1, "a"), heartbeat, event(2, "b", done=True)]])
    seen = []

    events = await EventStreamClient(transport, on_event=seen.append).listen("s1")

    assert [e.seq for e in events] == [1, 2]
    assert seen == events


@pytest.mark.asyncio
async def test_clean_stream_end_stops_listening():
    transport = FlakyTransport([[event(1, "a")]])
    client = EventStreamClient(transport, reconnect_delay_s=0)

    events = await client.listen("s1")

    assert len(events) == 1
    assert client.reconnects == 0
    assert transport.opened == [None]


@pytest.mark.asyncio
async def test_unknown_session_is_not_retried():
    transport = FlakyTransport([[SessionError("Unknown session: s1", session_id="s1")]])
    client = EventStreamClient(transport, reconnect_delay_s=0)

    with pytest.raises(SessionError):
        await client.listen("s1")

    assert client.reconnects == 0


@pytest.mark.asyncio
async def test_max_reconnects_reraises():
    transport = FlakyTransport([[OSError("down")], [OSError("down")], [OSError("down")]])
    client = EventStreamClient(transport, reconnect_delay_s=0, max_reconnects=2)

    with pytest.raises(OSError):
        await client.listen("s1")

    assert client.reconnects == 2
    assert client.running is False


@pytest.mark.asyncio
async def test_channel_transport_follows_a_live_channel():
    channel = EventChannel("s1")
    channel.emit(EventType.CONNECTED, "Connected")
    client = EventStreamClient(ChannelTransport(lambda sid: channel))

    async def produce():
        await asyncio.sleep(0.01)
        channel.heartbeat()
        channel.emit(EventType.SUCCESS, "Automation completed", {"done": True, "status": "completed"})

    producer = asyncio.create_task(produce())
    events = await asyncio.wait_for(client.listen("s1"), timeout=1)
    await producer

    assert [e.type for e in events] == [EventType.CONNECTED, EventType.SUCCESS]
    assert channel.subscriber_count == 0


def test_parse_sse_frame():
    parsed = parse_sse_frame(
        ["id: 4", 'data: {"type":"success","timestamp":1.5,"message":"ok","data":{"done":true}}'],
        "s1",
    )

    assert parsed.seq == 4
    assert parsed.type == EventType.SUCCESS
    assert parsed.data == {"done": True}
    assert parse_sse_frame([": keep-alive"], "s1") is None
    assert parse_sse_frame(['data: {"type":"heartbeat"}'], "s1").seq is None


@pytest.mark.asyncio
async def test_sse_transport_against_aiohttp_server():
    channel = EventChannel("s1")
    for i in range(3):
        channel.emit(EventType.INFO, f"step {i}")
    channel.emit(EventType.SUCCESS, "finished", {"done": True})
    await channel.close()
    seen_headers = []

    async def events_handler(request):
        if request.match_info["session_id"] != "s1":
            raise web.HTTPNotFound()
        seen_headers.append(request.headers.get("Last-Event-ID"))
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        async for frame in sse_stream(channel, request.headers.get("Last-Event-ID")):
            await response.write(frame.encode("utf-8"))
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_get("/api/automation/events/{session_id}", events_handler)
    async with TestServer(app) as server:
        transport = SSETransport(f"http://{server.host}:{server.port}")
        client = EventStreamClient(transport, reconnect_delay_s=0)
        client.last_seq = 1

        events = await client.listen("s1")

        with pytest.raises(SessionError):
            await EventStreamClient(transport, reconnect_delay_s=0).listen("nope")

    assert [e.seq for e in events] == [2, 3, 4]
    assert events[-1].data == {"done": True}
    assert seen_headers == ["1"]


def test_api_client_posts_camel_case_body():
    response = MagicMock()
    response.json.return_value = {"success": True, "session_id": "abc"}

    with patch("webpilot.client.requests.post", return_value=response) as post:
        body = ApiClient("http://localhost:8000/", timeout_s=5).start_automation(
            "Go to example.com", session_id="abc", config={"headless": True}
        )

    assert body["session_id"] == "abc"
    post.assert_called_once_with(
        "http://localhost:8000/api/automation/start",
        json={"prompt": "Go to example.com", "sessionId": "abc", "config": {"headless": True}},
        headers={"Content-Type": "application/json"},
        timeout=5,
    )


def test_api_client_events_url():
    assert ApiClient("http://api.test").events_url("abc") == "http://api.test/api/automation/events/abc"
