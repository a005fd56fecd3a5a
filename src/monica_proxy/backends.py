"""Upstream handling for the Monica proxy."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx

from . import config as settings
from .errors import UpstreamError
from .models import ChatCompletionRequest

logger = logging.getLogger(__name__)


def upstream_headers(cookie: str) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
    }
    if cookie:
        headers["Cookie"] = cookie
    return headers


@asynccontextmanager
async def open_upstream_stream(
    request: ChatCompletionRequest,
    timeout: Optional[float] = None,
    url: Optional[str] = None,
    cookie: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[AsyncIterator[bytes]]:
    """
    Send a chat request upstream and yield the raw SSE body.

    The upstream always streams, so `stream` is forced on regardless of what
    the caller asked for. The client connection stays open until the context
    exits.

    Args:
        request: The caller's chat completion request
        timeout: Request timeout in seconds
        url: Upstream endpoint, defaults to the configured one
        cookie: Upstream session cookie, defaults to the configured one
        transport: Optional httpx transport, used instead of the network

    Raises:
        UpstreamError: if the upstream answers with a non-200 status.
        httpx.HTTPError: if the request cannot be sent.
    """
    target_url = url or settings.UPSTREAM_URL
    payload = request.model_dump(exclude_none=True)
    payload["stream"] = True
    headers = upstream_headers(settings.UPSTREAM_COOKIE if cookie is None else cookie)

    logger.info(f"Calling upstream at {target_url} for model {request.model}")

    async with httpx.AsyncClient(
        timeout=timeout or settings.TIMEOUT, transport=transport
    ) as client:
        async with client.stream("POST", target_url, json=payload, headers=headers) as response:
            if response.status_code != 200:
                content = await response.aread()
                raise UpstreamError(response.status_code, content.decode(errors="replace"))
            yield response.aiter_bytes()
