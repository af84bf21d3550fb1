"""FastAPI application for the public side of the OpenAI gateway.

A single catch-all route hands every request to the router, which picks one
of three paths:
1. /v1/chat/completions is decoded, translated and sent to the upstream /chat
2. /healthz probes the upstream /health endpoint
3. anything else is forwarded with the /v1 prefix stripped; /v1/models
   responses are reshaped into an OpenAI model list
"""

import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.requests import ClientDisconnect

from openai_gateway import __version__
from openai_gateway.config import GatewayConfig
from openai_gateway.models import ErrorDetail, ErrorResponse
from openai_gateway.router import MethodNotAllowed, RouteKind, RouteResult, resolve_route
from openai_gateway.telemetry import log_event, new_request_id
from openai_gateway.translator import (
    TranslationError,
    build_chat_response,
    parse_chat_request,
    parse_upstream_chat,
    parse_upstream_models,
    to_model_list,
    to_upstream_payload,
)
from openai_gateway.upstream import UpstreamClient, UpstreamStream, UpstreamUnavailable

# Everything is routed by hand; Starlette itself answers 405 only for
# methods outside this list.
_ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def _error_response(status: int, error_type: str, message: str) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=ErrorDetail(type=error_type, message=message))
    return JSONResponse(status_code=status, content=body.model_dump())


def _decode(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def create_app(
    config: GatewayConfig,
    *,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    """Build the public gateway application.

    Args:
        config: Immutable gateway configuration.
        upstream: Upstream client; built from the config when omitted.
    """
    upstream = upstream or UpstreamClient(
        config.upstream_url, health_timeout=config.health_timeout
    )
    app = FastAPI(
        title="OpenAI Gateway",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.api_route("/{path:path}", methods=_ROUTED_METHODS, response_model=None)
    async def dispatch(request: Request) -> Response:
        request_id = new_request_id()
        log_event(
            "request_received",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            route = resolve_route(request.method, request.url.path)
        except MethodNotAllowed as exc:
            log_event("method_not_allowed", level=logging.WARNING, request_id=request_id, method=exc.method)
            return _error_response(405, "method_not_allowed", "Method not allowed")

        if route.kind is RouteKind.HEALTH:
            return await _handle_health(upstream, request_id)
        if route.kind is RouteKind.CHAT:
            return await _handle_chat(upstream, request, request_id)
        return await _handle_passthrough(upstream, request, route, request_id)

    return app


async def _handle_chat(upstream: UpstreamClient, request: Request, request_id: str) -> Response:
    """Translate an OpenAI chat completion into an upstream /chat call."""
    try:
        body = await request.body()
    except ClientDisconnect as exc:
        log_event("chat_completion", level=logging.ERROR, request_id=request_id, outcome="read_error", error=exc)
        return _error_response(400, "invalid_request_error", "Failed to read request body")

    try:
        chat_request = parse_chat_request(body)
    except TranslationError as exc:
        log_event(
            "chat_completion",
            level=logging.ERROR,
            request_id=request_id,
            outcome="invalid_json",
            error=exc,
            body=_decode(body),
        )
        return _error_response(400, "invalid_request_error", "Invalid JSON format")

    log_event(
        "chat_completion_forwarding",
        request_id=request_id,
        model=chat_request.model,
        messages_count=len(chat_request.messages),
        url=upstream.url_for("/chat"),
    )

    try:
        result = await upstream.post_chat(
            to_upstream_payload(chat_request),
            authorization=request.headers.get("authorization"),
        )
    except UpstreamUnavailable as exc:
        log_event(
            "chat_completion",
            level=logging.ERROR,
            request_id=request_id,
            outcome="upstream_unavailable",
            duration_ms=exc.duration_ms,
            error=exc.cause,
        )
        return _error_response(502, "upstream_unavailable", "Failed to contact Open-WebUI")

    log_event(
        "upstream_response",
        request_id=request_id,
        status_code=result.status_code,
        duration_ms=result.duration_ms,
    )

    if result.status_code != 200:
        text = _decode(result.body)
        log_event(
            "chat_completion",
            level=logging.ERROR,
            request_id=request_id,
            outcome="upstream_error",
            status_code=result.status_code,
            response_body=text,
        )
        return _error_response(
            502,
            "upstream_error",
            "Open-WebUI Error ({}): {}".format(result.status_code, text),
        )

    try:
        upstream_reply = parse_upstream_chat(result.body)
    except TranslationError as exc:
        log_event(
            "chat_completion",
            level=logging.ERROR,
            request_id=request_id,
            outcome="invalid_upstream_response",
            error=exc,
            response_body=_decode(result.body),
        )
        return _error_response(500, "upstream_response_invalid", "Invalid WebUI response format")

    response = build_chat_response(chat_request, upstream_reply)
    log_event(
        "chat_completion",
        request_id=request_id,
        outcome="success",
        model=response.model,
        response_id=response.id,
    )
    return JSONResponse(status_code=200, content=response.model_dump())


async def _relay_body(stream: UpstreamStream, request_id: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in stream.response.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        # Status and headers are already on the wire; the body is truncated.
        log_event("passthrough_copy_failed", level=logging.ERROR, request_id=request_id, error=exc)
    finally:
        await stream.aclose()


async def _handle_passthrough(
    upstream: UpstreamClient, request: Request, route: RouteResult, request_id: str
) -> Response:
    """Forward a request to the upstream and relay its response."""
    try:
        body = await request.body()
    except ClientDisconnect as exc:
        log_event("passthrough", level=logging.ERROR, request_id=request_id, outcome="read_error", error=exc)
        return _error_response(400, "invalid_request_error", "Failed to read request body")

    try:
        stream = await upstream.forward(
            request.method,
            route.target_path,
            headers=request.headers.items(),
            body=body,
            query=request.url.query,
        )
    except UpstreamUnavailable as exc:
        log_event(
            "passthrough",
            level=logging.ERROR,
            request_id=request_id,
            outcome="upstream_unavailable",
            url=exc.url,
            duration_ms=exc.duration_ms,
            error=exc.cause,
        )
        return _error_response(502, "upstream_unavailable", "Failed to contact upstream service")

    log_event(
        "passthrough",
        request_id=request_id,
        original_path=route.path,
        target_path=route.target_path,
        status_code=stream.status_code,
        duration_ms=stream.duration_ms,
    )

    if route.reshape_models and stream.status_code == 200:
        raw = await stream.read()
        try:
            models = parse_upstream_models(raw)
        except TranslationError as exc:
            log_event(
                "model_list",
                level=logging.ERROR,
                request_id=request_id,
                outcome="invalid_upstream_response",
                error=exc,
                response_body=_decode(raw),
            )
            return _error_response(500, "upstream_response_invalid", "Invalid WebUI model list format")
        return JSONResponse(status_code=200, content=to_model_list(models).model_dump())

    response = StreamingResponse(_relay_body(stream, request_id), status_code=stream.status_code)
    response.raw_headers.extend(
        (k.encode("latin-1"), v.encode("latin-1")) for k, v in stream.relay_headers()
    )
    return response


async def _handle_health(upstream: UpstreamClient, request_id: str) -> Response:
    """Map the upstream /health probe to a binary up/down answer."""
    try:
        status = await upstream.check_health()
    except UpstreamUnavailable as exc:
        log_event("health_check", level=logging.ERROR, request_id=request_id, outcome="unreachable", error=exc.cause)
        return PlainTextResponse("Upstream service unavailable", status_code=503)

    if status != 200:
        log_event("health_check", level=logging.WARNING, request_id=request_id, outcome="unhealthy", status_code=status)
        return PlainTextResponse(
            "Upstream service unhealthy (status: {})".format(status), status_code=503
        )

    log_event("health_check", request_id=request_id, outcome="healthy")
    return PlainTextResponse("OK", status_code=200)
