"""Shared test fixtures for the OpenAI gateway tests."""

import json
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Union

import httpx
import pytest
from fastapi import FastAPI

from openai_gateway.app import create_app
from openai_gateway.config import GatewayConfig, build_config
from openai_gateway.upstream import UpstreamClient

UPSTREAM_URL = "http://upstream.test/api"

class _UnreadStream(httpx.AsyncByteStream):
    """Async body stream that has not been read yet, as from a real server."""

    def __init__(self, content: bytes) -> None:
        self._content = content

    async def __aiter__(self):
        yield self._content


def _unread(response: httpx.Response) -> httpx.Response:
    """Rebuild a scripted reply so its body is an unconsumed stream."""
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=_UnreadStream(response.content),
    )


Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class FakeUpstream:
    """Scripted Open-WebUI stand-in that records every request it receives."""

    def __init__(self) -> None:
        self.replies: Dict[Tuple[str, str], Reply] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, reply: Reply) -> None:
        self.replies[(method, path)] = reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.get((request.method, request.url.path))
        if reply is None:
            return _unread(httpx.Response(404, text="not found"))
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return _unread(reply(request))
        return _unread(reply)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def last_json(self) -> Dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture()
def test_config() -> GatewayConfig:
    """Return a GatewayConfig pointing at the fake upstream."""
    return build_config(UPSTREAM_URL, port=18080, control_port=18081)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def gateway_app(test_config: GatewayConfig, upstream: FakeUpstream) -> FastAPI:
    """Public app wired to the fake upstream."""
    client = UpstreamClient(
        test_config.upstream_url,
        health_timeout=test_config.health_timeout,
        transport=upstream.transport,
    )
    return create_app(test_config, upstream=client)


@pytest.fixture()
def config_file(tmp_path: Path) -> Callable[[Dict], str]:
    """Write a JSON config file and return its path."""

    def _write(data: Dict) -> str:
        path = tmp_path / "gateway.json"
        path.write_text(json.dumps(data))
        return str(path)

    return _write
