"""Mapping of upstream events onto outbound chat completion chunks."""

from enum import Enum

from .models import (
    AgentStatusType,
    ChatCompletionChunk,
    Delta,
    FINISH_REASON_STOP,
    StreamChoice,
    StreamIdentity,
    VendorEvent,
)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
DONE_LINE = b"data: [DONE]\n\n"


class ThinkState(Enum):
    NORMAL = "normal"
    THINKING = "thinking"


class FrameBuilder:
    """
    Turns VendorEvents into chunks for one streaming session.

    Reasoning content is bracketed with <think>...</think> inside the
    content stream: a thinking status opens the block and the first plain
    text event afterwards closes it. A finished event always yields the
    terminal chunk, even while a think block is open, and ends the session.
    """

    def __init__(self, model: str, identity: StreamIdentity):
        self.model = model
        self.identity = identity
        self.state = ThinkState.NORMAL
        self.finished = False

    def build(self, event: VendorEvent) -> ChatCompletionChunk:
        if self.finished:
            raise RuntimeError("session already received its finished event")

        if event.finished:
            self.finished = True
            return self._chunk("", FINISH_REASON_STOP)

        status = event.status_type
        if status is AgentStatusType.THINKING:
            self.state = ThinkState.THINKING
            return self._chunk(THINK_OPEN)
        if status is AgentStatusType.THINKING_DETAIL:
            return self._chunk(event.reasoning_detail)

        content = event.text
        if self.state is ThinkState.THINKING:
            content = THINK_CLOSE + content
            self.state = ThinkState.NORMAL
        return self._chunk(content)

    def _chunk(self, content: str, finish_reason=None) -> ChatCompletionChunk:
        return ChatCompletionChunk(
            id=self.identity.id,
            created=self.identity.created,
            model=self.model,
            system_fingerprint=self.identity.fingerprint,
            choices=[
                StreamChoice(
                    index=0,
                    delta=Delta(content=content),
                    finish_reason=finish_reason,
                )
            ],
        )


def encode_chunk(chunk: ChatCompletionChunk) -> bytes:
    """Render a chunk as one SSE event."""
    return f"data: {chunk.model_dump_json()}\n\n".encode()
