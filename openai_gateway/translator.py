"""Translation between the OpenAI chat schema and the Open-WebUI schema.

Everything here is pure: bytes or models in, models or dicts out. The
functions raise TranslationError when a payload cannot be decoded; callers
decide which HTTP status that maps to.
"""

import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from openai_gateway.models import (
    ChatChoice,
    ChatRequest,
    ChatResponse,
    ModelCard,
    ModelList,
    UpstreamChatResponse,
    UpstreamModel,
    UsageInfo,
)

COMPLETION_ID_PREFIX = "chatcmpl-"

_MODEL_LIST = TypeAdapter(List[UpstreamModel])


class TranslationError(Exception):
    """Raised when a payload cannot be decoded into the expected schema."""

    def __init__(self, what: str, detail: str) -> None:
        self.what = what
        self.detail = detail
        super().__init__("Invalid {}: {}".format(what, detail))


def new_completion_id() -> str:
    """Return a fresh response id, unique for the lifetime of the process."""
    return COMPLETION_ID_PREFIX + uuid.uuid4().hex


def parse_chat_request(body: bytes) -> ChatRequest:
    """Decode an inbound OpenAI chat-completion request body."""
    try:
        return ChatRequest.model_validate_json(body)
    except ValidationError as exc:
        raise TranslationError("chat request", _summarize(exc)) from exc


def to_upstream_payload(request: ChatRequest) -> Dict[str, Any]:
    """Build the JSON payload for the upstream ``/chat`` endpoint."""
    return {
        "model": request.model,
        "messages": [{"role": m.role, "content": m.content} for m in request.messages],
    }


def parse_upstream_chat(body: bytes) -> UpstreamChatResponse:
    """Decode the upstream ``/chat`` reply."""
    try:
        return UpstreamChatResponse.model_validate_json(body)
    except ValidationError as exc:
        raise TranslationError("upstream chat response", _summarize(exc)) from exc


def build_chat_response(
    request: ChatRequest,
    upstream: UpstreamChatResponse,
    *,
    completion_id: Optional[str] = None,
    created: Optional[int] = None,
) -> ChatResponse:
    """Wrap an upstream reply into an OpenAI chat-completion response.

    The model is echoed from the request, there is exactly one choice, and
    usage is always zero because the upstream does not report token counts.
    """
    return ChatResponse(
        id=completion_id or new_completion_id(),
        created=int(time.time()) if created is None else created,
        model=request.model,
        choices=[ChatChoice(index=0, message=upstream.message, finish_reason="stop")],
        usage=UsageInfo(),
    )


def parse_upstream_models(body: bytes) -> List[UpstreamModel]:
    """Decode the upstream ``/models`` array."""
    try:
        return _MODEL_LIST.validate_json(body)
    except ValidationError as exc:
        raise TranslationError("upstream model list", _summarize(exc)) from exc


def to_model_list(models: List[UpstreamModel]) -> ModelList:
    """Reshape upstream model descriptors into an OpenAI model listing."""
    return ModelList(data=[ModelCard(id=m.id) for m in models])


def _summarize(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ())) or "body"
    more = " (+{} more)".format(len(errors) - 1) if len(errors) > 1 else ""
    return "{}: {}{}".format(loc, first.get("msg", "invalid"), more)
