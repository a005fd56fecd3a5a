"""Decoding of the upstream SSE feed into VendorEvent values."""

import logging
from typing import AsyncGenerator, AsyncIterable, AsyncIterator, Optional

from pydantic import ValidationError

from .errors import ReadError
from .models import VendorEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = b"data: "


async def close_iterator(iterator) -> None:
    """Close an async iterator that supports it, such as an async generator."""
    close = getattr(iterator, "aclose", None)
    if close is not None:
        await close()


async def iter_lines(body: AsyncIterable[bytes]) -> AsyncGenerator[bytes, None]:
    """
    Re-split an async byte stream into newline-terminated lines.

    Each yielded line still carries its trailing newline. Bytes left over
    after the last newline when the stream ends do not form a line and are
    dropped. The underlying iterator is closed when this generator is.

    Raises:
        ReadError: if the underlying stream fails.
    """
    iterator: AsyncIterator[bytes] = body.__aiter__()
    pending = b""
    try:
        while True:
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                raise ReadError(f"read error: {e}") from e

            pending += chunk
            while True:
                newline = pending.find(b"\n")
                if newline == -1:
                    break
                line, pending = pending[: newline + 1], pending[newline + 1 :]
                yield line
    finally:
        await close_iterator(iterator)

    if pending:
        logger.debug("Dropping %d unterminated trailing bytes", len(pending))


def decode_line(line: bytes) -> Optional[VendorEvent]:
    """
    Parse one raw line into a VendorEvent.

    Returns None for lines that carry no event: anything without the
    `data: ` prefix, an empty payload, or a payload that does not parse.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX) :].rstrip(b"\r\n")
    if not payload:
        return None

    try:
        return VendorEvent.model_validate_json(payload)
    except ValidationError as e:
        logger.warning(f"Error unmarshaling SSE data: {e.errors()[0]['msg']}")
        return None


async def iter_vendor_events(
    body: AsyncIterable[bytes],
) -> AsyncGenerator[VendorEvent, None]:
    """
    Lazily decode an upstream SSE byte stream into VendorEvent values.

    The sequence ends when the stream is exhausted, whether or not a
    finished event was seen.
    """
    lines = iter_lines(body)
    try:
        async for line in lines:
            logger.debug("Stream SSE raw line: %r", line)
            event = decode_line(line)
            if event is not None:
                yield event
    finally:
        await lines.aclose()
