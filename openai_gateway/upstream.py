"""Outbound HTTP calls to the Open-WebUI upstream.

Every call uses its own short-lived httpx.AsyncClient: there is no pooling
and no retry. Only the health probe carries a timeout; chat and passthrough
calls wait as long as the upstream takes.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

HEALTH_PATH = "/health"
CHAT_PATH = "/chat"

# Headers that describe a single hop and are recomputed on the next one.
_HOP_BY_HOP = frozenset(
    [
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    ]
)
_REQUEST_DROP = _HOP_BY_HOP | {"host", "content-length"}


class UpstreamUnavailable(Exception):
    """Raised when the upstream cannot be reached (transport-level failure)."""

    def __init__(self, url: str, cause: Exception, duration_ms: int = 0) -> None:
        self.url = url
        self.cause = cause
        self.duration_ms = duration_ms
        super().__init__("Failed to contact {}: {}".format(url, str(cause) or type(cause).__name__))


@dataclass
class UpstreamResult:
    """A fully read upstream response."""

    status_code: int
    body: bytes
    duration_ms: int


class UpstreamStream:
    """An upstream response whose body has not been read yet.

    The owning client is closed together with the response by aclose().
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient, duration_ms: int) -> None:
        self.response = response
        self.duration_ms = duration_ms
        self._client = client

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def relay_headers(self) -> List[Tuple[str, str]]:
        """Response headers to pass back to the caller, minus hop-by-hop ones."""
        return [
            (k, v)
            for k, v in self.response.headers.multi_items()
            if k.lower() not in _HOP_BY_HOP
        ]

    async def read(self) -> bytes:
        try:
            return await self.response.aread()
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()
        await self._client.aclose()


def forwardable_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop Host, Content-Length and hop-by-hop headers from an inbound request."""
    return [(k, v) for k, v in headers if k.lower() not in _REQUEST_DROP]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class UpstreamClient:
    """Issues requests against the upstream base URL.

    Args:
        base_url: Upstream base URL without a trailing slash.
        health_timeout: Timeout in seconds for the health probe.
        transport: Optional httpx transport, used by tests to stub the upstream.
    """

    def __init__(
        self,
        base_url: str,
        *,
        health_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.health_timeout = health_timeout
        self._transport = transport

    def url_for(self, path: str, query: str = "") -> str:
        url = self.base_url + path
        if query:
            url = "{}?{}".format(url, query)
        return url

    def _client(self, timeout: Optional[float]) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def post_chat(
        self, payload: Dict[str, Any], authorization: Optional[str] = None
    ) -> UpstreamResult:
        """POST a translated chat payload to ``<upstream>/chat``.

        Raises:
            UpstreamUnavailable: On any transport failure.
        """
        url = self.url_for(CHAT_PATH)
        headers = {"Content-Type": "application/json"}
        if authorization:
            headers["Authorization"] = authorization

        start = time.monotonic()
        async with self._client(timeout=None) as client:
            try:
                resp = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(url, exc, _elapsed_ms(start)) from exc
        return UpstreamResult(resp.status_code, resp.content, _elapsed_ms(start))

    async def forward(
        self,
        method: str,
        path: str,
        *,
        headers: Iterable[Tuple[str, str]] = (),
        body: bytes = b"",
        query: str = "",
    ) -> UpstreamStream:
        """Send a passthrough request and return the unread response.

        The caller owns the returned stream and must read or close it.

        Raises:
            UpstreamUnavailable: On any transport failure.
        """
        url = self.url_for(path, query)
        client = self._client(timeout=None)
        request = client.build_request(
            method, url, headers=forwardable_headers(headers), content=body or None
        )
        start = time.monotonic()
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            raise UpstreamUnavailable(url, exc, _elapsed_ms(start)) from exc
        return UpstreamStream(response, client, _elapsed_ms(start))

    async def check_health(self) -> int:
        """GET ``<upstream>/health`` with the bounded health timeout.

        Returns:
            The upstream status code.

        Raises:
            UpstreamUnavailable: If the upstream is unreachable or times out.
        """
        url = self.url_for(HEALTH_PATH)
        start = time.monotonic()
        async with self._client(timeout=self.health_timeout) as client:
            try:
                resp = await client.get(url)
            except httpx.HTTPError as exc:
                raise UpstreamUnavailable(url, exc, _elapsed_ms(start)) from exc
        return resp.status_code
