import json
import time
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

# Upstream event payloads
TEXT_HELLO = {"text": "Hello"}
TEXT_WORLD = {"text": " world"}
THINKING = {"text": "", "agent_status": {"uid": "a1", "type": "thinking", "text": "Thinking"}}
FINISHED = {"text": "", "finished": True}


def thinking_detail(detail):
    return {
        "text": "",
        "agent_status": {
            "uid": "a1",
            "type": "thinking_detail_stream",
            "metadata": {"title": "Reasoning", "reasoning_detail": detail},
        },
    }


def sse_line(event) -> bytes:
    """Encode one upstream event the way the vendor feed does."""
    return f"data: {json.dumps(event)}\n\n".encode()


def sse_feed(*events) -> bytes:
    return b"".join(sse_line(event) for event in events)


async def byte_stream(*chunks):
    for chunk in chunks:
        yield chunk


async def failing_stream(*chunks, error=None):
    for chunk in chunks:
        yield chunk
    raise error or ConnectionResetError("upstream went away")


async def tracked_stream(closed, *chunks):
    """Byte stream that records in `closed` when its cleanup has run."""
    try:
        for chunk in chunks:
            yield chunk
    finally:
        closed.append(True)


def parse_sse(data: bytes):
    """Split SSE output into decoded chunk dicts plus the literal sentinel."""
    frames = []
    for block in data.decode().split("\n\n"):
        if not block:
            continue
        payload = block[len("data: "):]
        frames.append(payload if payload == "[DONE]" else json.loads(payload))
    return frames


class RecordingDestination:
    """Destination that keeps every write and counts flush calls"""

    def __init__(self):
        self.writes = []
        self.flushes = 0

    async def write(self, data):
        self.writes.append((time.monotonic(), data))

    async def flush(self):
        self.flushes += 1

    @property
    def data(self):
        return b"".join(data for _, data in self.writes)


class PlainDestination:
    """Destination without an explicit flush"""

    def __init__(self):
        self.chunks = []

    async def write(self, data):
        self.chunks.append(data)


class BrokenDestination:
    """Destination whose peer has gone away"""

    def __init__(self):
        self.attempts = 0

    async def write(self, data):
        self.attempts += 1
        raise BrokenPipeError("client disconnected")


@pytest.fixture
def fake_upstream(monkeypatch):
    """
    Replace the upstream call with a canned byte feed.

    Set `feed.chunks` to the bytes the upstream should send, `feed.broken`
    to make the feed fail after them, or `feed.error` to fail the call.
    Requests that reached the upstream and releases are recorded.
    """

    class Feed:
        chunks = []
        error = None
        broken = False
        requests = []
        released = 0

    feed = Feed()

    @asynccontextmanager
    async def open_upstream_stream(request, timeout=None, **kwargs):
        feed.requests.append(request)
        if feed.error is not None:
            raise feed.error
        try:
            yield failing_stream(*feed.chunks) if feed.broken else byte_stream(*feed.chunks)
        finally:
            feed.released += 1

    import monica_proxy.backends

    monkeypatch.setattr(monica_proxy.backends, "open_upstream_stream", open_upstream_stream)
    return feed


@pytest.fixture
def test_client(fake_upstream):
    from monica_proxy.api import app

    return TestClient(app)
