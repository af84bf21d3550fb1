"""Wire models for the OpenAI-compatible surface and the Open-WebUI upstream."""

from typing import List

from pydantic import BaseModel, Field

OWNED_BY = "open-webui"


class ChatMessage(BaseModel):
    """A single message in a chat conversation (same shape on both sides)."""

    role: str = ""
    content: str = ""


class ChatRequest(BaseModel):
    """Incoming OpenAI chat-completion request.

    Only ``model`` and ``messages`` are read; any other OpenAI parameters are
    accepted and dropped because the upstream does not support them.
    """

    model: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)


class UsageInfo(BaseModel):
    """Token usage. The upstream does not report usage, so it is always zero."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str = "stop"


class ChatResponse(BaseModel):
    """OpenAI-shaped chat-completion response."""

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatChoice]
    usage: UsageInfo = Field(default_factory=UsageInfo)


class UpstreamChatResponse(BaseModel):
    """Reply shape of the upstream ``/chat`` endpoint."""

    message: ChatMessage = Field(default_factory=ChatMessage)
    status: str = ""


class UpstreamModel(BaseModel):
    """One entry of the upstream ``/models`` array."""

    id: str = ""
    name: str = ""
    status: str = ""


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    owned_by: str = OWNED_BY


class ModelList(BaseModel):
    """OpenAI-style model listing envelope."""

    object: str = "list"
    data: List[ModelCard] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Structured error detail."""

    type: str
    message: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
