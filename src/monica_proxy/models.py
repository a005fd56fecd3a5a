"""Data models and schemas for the Monica proxy."""

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .utils import rand_string

CHUNK_OBJECT = "chat.completion.chunk"
COMPLETION_OBJECT = "chat.completion"
ROLE_ASSISTANT = "assistant"
FINISH_REASON_STOP = "stop"


class AgentStatusType(str, Enum):
    """Classification of the non-text signalling carried by an upstream event."""

    NONE = "none"
    THINKING = "thinking"
    THINKING_DETAIL = "thinking_detail_stream"
    OTHER = "other"


class UpstreamModel(BaseModel):
    """Base for upstream payloads, where a JSON null means the field's zero value."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class AgentStatusMetadata(UpstreamModel):
    title: str = ""
    reasoning_detail: str = ""


class AgentStatus(UpstreamModel):
    uid: str = ""
    type: str = ""
    text: str = ""
    metadata: AgentStatusMetadata = Field(default_factory=AgentStatusMetadata)


class VendorEvent(UpstreamModel):
    """One decoded `data:` line of the upstream feed."""

    text: str = ""
    finished: bool = False
    agent_status: Optional[AgentStatus] = None

    @property
    def status_type(self) -> AgentStatusType:
        if self.agent_status is None or not self.agent_status.type:
            return AgentStatusType.NONE
        if self.agent_status.type == AgentStatusType.THINKING.value:
            return AgentStatusType.THINKING
        if self.agent_status.type == AgentStatusType.THINKING_DETAIL.value:
            return AgentStatusType.THINKING_DETAIL
        return AgentStatusType.OTHER

    @property
    def reasoning_detail(self) -> str:
        if self.agent_status is None:
            return ""
        return self.agent_status.metadata.reasoning_detail


class StreamIdentity(BaseModel):
    """Constants shared by every chunk of one translation session."""

    model_config = ConfigDict(frozen=True)

    id: str
    created: int
    fingerprint: str

    @classmethod
    def new(cls) -> "StreamIdentity":
        return cls(
            id="chatcmpl-" + rand_string(29),
            created=int(time.time()),
            fingerprint=rand_string(10),
        )


class Message(BaseModel):
    """Chat message model."""

    model_config = ConfigDict(extra="allow")

    role: str
    content: Union[str, List[Dict[str, Any]], None] = None
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """Request model for chat completions.

    Unknown fields are kept so they can be forwarded upstream untouched.
    """

    model_config = ConfigDict(extra="allow")

    model: str = ""
    messages: List[Message] = Field(default_factory=list)
    stream: bool = False


class Delta(BaseModel):
    """Delta model for streaming responses."""

    role: str = ROLE_ASSISTANT
    content: str = ""


class StreamChoice(BaseModel):
    index: int = 0
    delta: Delta
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    """One outbound `chat.completion.chunk` frame."""

    id: str
    object: str = CHUNK_OBJECT
    created: int
    model: str
    system_fingerprint: str
    choices: List[StreamChoice]

    @property
    def is_terminal(self) -> bool:
        return any(choice.finish_reason == FINISH_REASON_STOP for choice in self.choices)


class ResponseMessage(BaseModel):
    role: str = ROLE_ASSISTANT
    content: str = ""


class Choice(BaseModel):
    """Choice model for chat completions."""

    index: int = 0
    message: ResponseMessage
    finish_reason: str = FINISH_REASON_STOP


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response model for non-streaming chat completions."""

    id: str
    object: str = COMPLETION_OBJECT
    created: int
    model: str
    system_fingerprint: str
    choices: List[Choice]
    usage: Usage = Field(default_factory=Usage)
