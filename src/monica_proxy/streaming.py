"""Streaming response handling for the Monica proxy."""

import asyncio
import logging
from typing import AsyncIterable, Awaitable, Callable, Mapping, Optional, Protocol

from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse
from starlette.types import Send

from .decoder import iter_vendor_events
from .errors import ReadError, WriteError
from .frames import DONE_LINE, FrameBuilder, encode_chunk
from .models import StreamIdentity

logger = logging.getLogger(__name__)

FLUSH_INTERVAL = 0.1
BUFFER_SIZE = 4096


class Destination(Protocol):
    """
    Anything bytes can be written to.

    A destination may also define an async `flush()`, which is called after
    every buffer drain triggered by a flush to push bytes to the peer.
    """

    async def write(self, data: bytes) -> None: ...


class BufferedWriter:
    """
    Buffers writes in memory and drains them to a destination.

    The buffer is drained when it reaches `size` bytes or when `flush()` is
    called. Drains are serialized so bytes reach the destination in write
    order even when a background task flushes concurrently. Once the
    destination fails, every later write or flush raises WriteError.
    """

    def __init__(self, destination: Destination, size: int = BUFFER_SIZE):
        self.destination = destination
        self.size = size
        self._buffer = bytearray()
        self._lock = asyncio.Lock()
        self._error: Optional[BaseException] = None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def write(self, data: bytes) -> None:
        self._check()
        self._buffer += data
        if len(self._buffer) >= self.size:
            await self._drain()

    async def flush(self) -> None:
        await self._drain()
        push = getattr(self.destination, "flush", None)
        if push is None:
            return
        try:
            await push()
        except Exception as e:
            self._error = e
            raise WriteError(f"flush error: {e}") from e

    async def _drain(self) -> None:
        async with self._lock:
            self._check()
            if not self._buffer:
                return
            data = bytes(self._buffer)
            self._buffer.clear()
            try:
                await self.destination.write(data)
            except Exception as e:
                self._error = e
                raise WriteError(f"write error: {e}") from e

    def _check(self) -> None:
        if self._error is not None:
            raise WriteError(f"destination already failed: {self._error}") from self._error


class FlushTicker:
    """
    Flushes a BufferedWriter every `interval` seconds while in scope.

    Use as `async with FlushTicker(writer, interval):`; the background task
    is cancelled and awaited on every exit from the block.
    """

    def __init__(self, writer: BufferedWriter, interval: float = FLUSH_INTERVAL):
        self.writer = writer
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "FlushTicker":
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        # Awaiting the task directly would swallow our own cancellation.
        await asyncio.wait({task})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.writer.flush()
            except WriteError as e:
                # The main loop sees the same failure on its next write.
                logger.warning("Periodic flush failed, stopping ticker: %s", e)
                return


async def stream_to_client(
    model: str,
    destination: Destination,
    body: AsyncIterable[bytes],
    *,
    flush_interval: float = FLUSH_INTERVAL,
    buffer_size: int = BUFFER_SIZE,
) -> None:
    """
    Translate an upstream SSE feed into chat completion chunks on `destination`.

    Each chunk is written as `data: <json>\\n\\n`. When the upstream finished
    event arrives the terminal chunk is followed by `data: [DONE]\\n\\n` and
    a final flush. If the upstream ends without a finished event, whatever is
    buffered is flushed and the call returns normally without the sentinel.

    Raises:
        ReadError: if the upstream stream fails.
        WriteError: if the destination fails.
    """
    identity = StreamIdentity.new()
    frames = FrameBuilder(model, identity)
    writer = BufferedWriter(destination, buffer_size)
    logger.info("Starting stream %s for model: %s", identity.id, model)

    events = iter_vendor_events(body)
    async with FlushTicker(writer, flush_interval):
        try:
            async for event in events:
                chunk = frames.build(event)
                await writer.write(encode_chunk(chunk))
                if chunk.is_terminal:
                    await writer.write(DONE_LINE)
                    await writer.flush()
                    logger.info("Stream %s finished", identity.id)
                    return
        except ReadError:
            logger.info("Flushing %d buffered bytes after read error", writer.buffered)
            try:
                await writer.flush()
            except WriteError as e:
                logger.warning("Could not flush after read error: %s", e)
            raise
        finally:
            await events.aclose()

        await writer.flush()
        logger.info("Upstream ended stream %s without a finished event", identity.id)


class ASGIDestination:
    """Writes bytes straight to an ASGI `send` channel as body messages."""

    def __init__(self, send: Send):
        self.send = send

    async def write(self, data: bytes) -> None:
        await self.send({"type": "http.response.body", "body": data, "more_body": True})


class SSETranslationResponse(StreamingResponse):
    """
    Streams a translated upstream feed to the client as text/event-stream.

    `release` is awaited once the stream is over, however it ended, to close
    the upstream connection.
    """

    def __init__(
        self,
        content: AsyncIterable[bytes],
        model: str,
        *,
        release: Optional[Callable[[], Awaitable[None]]] = None,
        flush_interval: float = FLUSH_INTERVAL,
        buffer_size: int = BUFFER_SIZE,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        background: Optional[BackgroundTask] = None,
    ):
        headers = {"Cache-Control": "no-cache", **(headers or {})}
        super().__init__(
            content,
            status_code=status_code,
            headers=headers,
            media_type="text/event-stream",
            background=background,
        )
        self.model = model
        self.release = release
        self.flush_interval = flush_interval
        self.buffer_size = buffer_size

    async def stream_response(self, send: Send) -> None:
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
            try:
                await stream_to_client(
                    self.model,
                    ASGIDestination(send),
                    self.body_iterator,
                    flush_interval=self.flush_interval,
                    buffer_size=self.buffer_size,
                )
            except (ReadError, WriteError) as e:
                logger.error(f"Aborting stream for model {self.model}: {str(e)}")
                raise
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        finally:
            if self.release is not None:
                await self.release()
