"""FastAPI application and routes for the Monica proxy."""

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from . import config as settings
from . import backends
from .aggregation import aggregate_response
from .errors import TranslationError, UpstreamError
from .models import ChatCompletionRequest
from .streaming import SSETranslationResponse

logger = logging.getLogger(__name__)

app = FastAPI(title="Monica Proxy")


def error_response(message: str, error_type: str, status_code: int) -> JSONResponse:
    content: Dict[str, Any] = {"error": {"message": message, "type": error_type}}
    return JSONResponse(content=content, status_code=status_code)


@app.post("/v1/chat/completions")
async def chat_completions(request: Request) -> Response:
    """
    Translate an OpenAI-style chat completion request into an upstream call:
    - Forwards the request upstream, always as a stream
    - Streams translated chunks back when the caller asked for `stream`
    - Otherwise aggregates the feed into a single response
    """
    body = await request.body()
    try:
        chat_request = ChatCompletionRequest.model_validate_json(body)
    except ValidationError:
        return error_response("Invalid request payload", "invalid_request_error", 400)

    if not chat_request.messages:
        return error_response("No messages found", "invalid_request_error", 400)

    stack = AsyncExitStack()
    try:
        upstream = await stack.enter_async_context(
            backends.open_upstream_stream(chat_request, settings.TIMEOUT)
        )
    except (UpstreamError, httpx.HTTPError) as e:
        await stack.aclose()
        logger.error(f"Error calling upstream: {str(e)}")
        return error_response(str(e), "upstream_error", 500)

    if chat_request.stream:
        return SSETranslationResponse(
            upstream,
            chat_request.model,
            release=stack.aclose,
            flush_interval=settings.FLUSH_INTERVAL,
            buffer_size=settings.BUFFER_SIZE,
        )

    try:
        completion = await aggregate_response(chat_request.model, upstream)
    except TranslationError as e:
        logger.error(f"Error aggregating upstream response: {str(e)}")
        return error_response(str(e), "proxy_error", 500)
    finally:
        await stack.aclose()

    return JSONResponse(
        content=completion.model_dump(),
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
