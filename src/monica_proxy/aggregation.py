"""Aggregation of an upstream feed into a single chat completion."""

import logging
from typing import AsyncIterable

from .decoder import iter_vendor_events
from .models import (
    AgentStatusType,
    ChatCompletionResponse,
    Choice,
    ResponseMessage,
    StreamIdentity,
    Usage,
    VendorEvent,
)

logger = logging.getLogger(__name__)


def event_text(event: VendorEvent) -> str:
    """
    Text an event contributes to an aggregated answer.

    Reasoning detail events contribute their reasoning text; every other
    event contributes its `text`. No think tags are added, so reasoning and
    answer end up concatenated together.
    """
    if event.status_type is AgentStatusType.THINKING_DETAIL:
        return event.reasoning_detail or event.text
    return event.text


async def aggregate_response(
    model: str, body: AsyncIterable[bytes]
) -> ChatCompletionResponse:
    """
    Collect an upstream SSE feed into one non-streaming response.

    Accumulation stops at the first finished event or when the feed ends,
    whichever comes first. Usage counters are always zero.

    Raises:
        ReadError: if the upstream stream fails.
    """
    identity = StreamIdentity.new()
    parts = []
    finished = False

    events = iter_vendor_events(body)
    try:
        async for event in events:
            parts.append(event_text(event))
            if event.finished:
                finished = True
                break
    finally:
        await events.aclose()

    if not finished:
        logger.info("Upstream ended response %s without a finished event", identity.id)

    content = "".join(parts)
    logger.info(f"Aggregated {len(parts)} events into {len(content)} characters")

    return ChatCompletionResponse(
        id=identity.id,
        created=identity.created,
        model=model,
        system_fingerprint=identity.fingerprint,
        choices=[Choice(index=0, message=ResponseMessage(content=content))],
        usage=Usage(),
    )
