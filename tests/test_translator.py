"""Tests for the OpenAI <-> Open-WebUI translation functions."""

import pytest

from openai_gateway.models import ChatMessage, ChatRequest, UpstreamChatResponse, UpstreamModel
from openai_gateway.translator import (
    TranslationError,
    build_chat_response,
    new_completion_id,
    parse_chat_request,
    parse_upstream_chat,
    parse_upstream_models,
    to_model_list,
    to_upstream_payload,
)


def test_parse_chat_request_ignores_extra_fields() -> None:
    request = parse_chat_request(
        b'{"model": "m", "messages": [{"role": "user", "content": "hi"}], "temperature": 1}'
    )
    assert request.model == "m"
    assert request.messages == [ChatMessage(role="user", content="hi")]


def test_parse_chat_request_defaults_missing_fields() -> None:
    request = parse_chat_request(b"{}")
    assert request.model == ""
    assert request.messages == []


def test_parse_chat_request_invalid_json() -> None:
    with pytest.raises(TranslationError, match="Invalid chat request"):
        parse_chat_request(b"{oops")


def test_to_upstream_payload_preserves_message_order() -> None:
    request = ChatRequest(
        model="m",
        messages=[
            ChatMessage(role="system", content="be brief"),
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello"),
        ],
    )
    payload = to_upstream_payload(request)
    assert payload == {
        "model": "m",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ],
    }


def test_build_chat_response_shape() -> None:
    request = ChatRequest(model="llama3", messages=[])
    upstream = UpstreamChatResponse(message=ChatMessage(role="assistant", content="hello"), status="ok")

    response = build_chat_response(request, upstream, completion_id="chatcmpl-abc", created=1700000000)

    assert response.model_dump() == {
        "id": "chatcmpl-abc",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "llama3",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "hello"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def test_build_chat_response_generates_id_and_timestamp() -> None:
    response = build_chat_response(ChatRequest(model="m"), UpstreamChatResponse())
    assert response.id.startswith("chatcmpl-")
    assert response.created > 1600000000
    assert len(response.choices) == 1


def test_completion_ids_do_not_repeat() -> None:
    ids = {new_completion_id() for _ in range(1000)}
    assert len(ids) == 1000


def test_parse_upstream_chat() -> None:
    reply = parse_upstream_chat(b'{"message": {"role": "assistant", "content": "x"}, "status": "ok"}')
    assert reply.message.content == "x"
    assert reply.status == "ok"


def test_parse_upstream_chat_invalid() -> None:
    with pytest.raises(TranslationError):
        parse_upstream_chat(b"boom")


def test_model_list_reshape() -> None:
    models = parse_upstream_models(
        b'[{"id": "m1", "name": "Model 1", "status": "active"}, {"id": "m2", "name": "Two", "status": "idle"}]'
    )
    assert models == [
        UpstreamModel(id="m1", name="Model 1", status="active"),
        UpstreamModel(id="m2", name="Two", status="idle"),
    ]
    assert to_model_list(models).model_dump() == {
        "object": "list",
        "data": [
            {"id": "m1", "object": "model", "owned_by": "open-webui"},
            {"id": "m2", "object": "model", "owned_by": "open-webui"},
        ],
    }


@pytest.mark.parametrize("raw", [b'{"id": "m1"}', b"[1, 2]", b"nope"])
def test_parse_upstream_models_invalid(raw: bytes) -> None:
    with pytest.raises(TranslationError, match="upstream model list"):
        parse_upstream_models(raw)
