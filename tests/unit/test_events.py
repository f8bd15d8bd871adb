"""
Tests for the per-session event channel and SSE framing
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from webpilot.events import EventChannel, format_sse, sse_stream
from webpilot.models import AutomationEvent, EventType


async def collect(agen, limit=None):
    items = []
    async for item in agen:
        items.append(item)
        if limit is not None and len(items) >= limit:
            break
    return items


def test_seq_increases_from_one():
    channel = EventChannel("s1")

    first = channel.emit(EventType.INFO, "Starting")
    second = channel.emit(EventType.SUCCESS, "Navigated", {"url": "https://example.com"})

    assert (first.seq, second.seq) == (1, 2)
    assert channel.last_seq == 2
    assert [e.message for e in channel.events()] == ["Starting", "Navigated"]


def test_timestamps_never_go_backwards():
    channel = EventChannel("s1")

    with patch("webpilot.events.time.time", side_effect=[100.0, 99.5, 101.0]):
        stamps = [channel.emit(EventType.INFO, str(i)).timestamp for i in range(3)]

    assert stamps == [100.0, 100.0, 101.0]


def test_emit_heartbeat_is_rejected():
    channel = EventChannel("s1")

    with pytest.raises(ValueError):
        channel.emit(EventType.HEARTBEAT)


def test_buffer_is_bounded():
    channel = EventChannel("s1", buffer_size=3)

    for i in range(5):
        channel.emit(EventType.INFO, str(i))

    assert [e.seq for e in channel.events()] == [3, 4, 5]


def test_format_sse_frames():
    event = AutomationEvent(
        session_id="s1",
        type=EventType.SCREENSHOT,
        message="Screenshot captured",
        timestamp=12.5,
        seq=7,
        data={"screenshot_url": "https://images.test/a.jpg"},
    )
    heartbeat = AutomationEvent(session_id="s1", type=EventType.HEARTBEAT)

    frame = format_sse(event)

    assert frame.startswith("id: 7\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload == {
        "type": "screenshot",
        "timestamp": 12.5,
        "message": "Screenshot captured",
        "data": {"screenshot_url": "https://images.test/a.jpg"},
    }
    assert format_sse(heartbeat) == 'data: {"type":"heartbeat"}\n\n'


@pytest.mark.asyncio
async def test_subscribe_replays_then_streams_live():
    channel = EventChannel("s1")
    channel.emit(EventType.CONNECTED, "Connected")

    async def produce():
        await asyncio.sleep(0)
        channel.emit(EventType.INFO, "live")
        await channel.close()

    producer = asyncio.create_task(produce())
    events = await collect(channel.subscribe())
    await producer

    assert [e.message for e in events] == ["Connected", "live"]
    assert channel.subscriber_count == 0


@pytest.mark.asyncio
async def test_subscribe_after_seq_skips_delivered_events():
    channel = EventChannel("s1")
    for i in range(4):
        channel.emit(EventType.INFO, str(i))
    await channel.close()

    events = await collect(channel.subscribe(after_seq=2))

    assert [e.seq for e in events] == [3, 4]


@pytest.mark.asyncio
async def test_heartbeats_reach_subscribers_but_are_not_buffered():
    channel = EventChannel("s1", heartbeat_interval_s=0.01)
    received = []

    async def listen():
        async for event in channel.subscribe():
            received.append(event)
            if len(received) == 2:
                return

    listener = asyncio.create_task(listen())
    await asyncio.sleep(0)
    channel.start_heartbeat()
    await asyncio.wait_for(listener, timeout=1)
    await channel.close()

    assert all(e.type == EventType.HEARTBEAT for e in received)
    assert all(e.seq is None for e in received)
    assert channel.events() == []
    assert channel.last_seq == 0


@pytest.mark.asyncio
async def test_closed_channel_drops_emits():
    channel = EventChannel("s1")
    channel.emit(EventType.INFO, "before")
    await channel.close()
    await channel.close()

    assert channel.closed
    assert channel.emit(EventType.INFO, "after") is None
    assert [e.message for e in channel.events()] == ["before"]


@pytest.mark.asyncio
async def test_sse_stream_resumes_from_last_event_id():
    channel = EventChannel("s1")
    for i in range(3):
        channel.emit(EventType.INFO, f"step {i}")
    await channel.close()

    frames = await collect(sse_stream(channel, last_event_id="1"))

    assert [f.split("\n", 1)[0] for f in frames] == ["id: 2", "id: 3"]
    assert len(await collect(sse_stream(channel, last_event_id="garbage"))) == 3
