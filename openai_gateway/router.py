"""Routing: decide how an inbound request is dispatched.

There are only three destinations. The chat-completions endpoint is
translated, /healthz is answered from an upstream probe, and every other
path is forwarded to the upstream with the /v1 prefix stripped.
"""

import enum
from dataclasses import dataclass

ALLOWED_METHODS = ("GET", "POST")
VERSION_PREFIX = "/v1"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"
HEALTH_PATH = "/healthz"


class RouteKind(enum.Enum):
    CHAT = "chat"
    HEALTH = "health"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class RouteResult:
    """Resolved destination for a request."""

    kind: RouteKind
    path: str
    target_path: str

    @property
    def reshape_models(self) -> bool:
        """True when the upstream model array must be reshaped."""
        return self.kind is RouteKind.PASSTHROUGH and self.path == MODELS_PATH


class MethodNotAllowed(Exception):
    """Raised for any method other than GET or POST."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__("Method not allowed: {}".format(method))


def strip_version_prefix(path: str) -> str:
    """Remove one leading ``/v1`` path segment.

    ``/v1/models`` becomes ``/models`` and ``/v1`` becomes ``/``. Paths such
    as ``/v1beta/x`` are left alone.
    """
    if path == VERSION_PREFIX:
        return "/"
    if path.startswith(VERSION_PREFIX + "/"):
        return path[len(VERSION_PREFIX):]
    return path


def resolve_route(method: str, path: str) -> RouteResult:
    """Resolve a method and path to a route.

    Raises:
        MethodNotAllowed: If the method is not GET or POST.
    """
    if method.upper() not in ALLOWED_METHODS:
        raise MethodNotAllowed(method)

    if path == HEALTH_PATH:
        return RouteResult(RouteKind.HEALTH, path, path)
    if path == CHAT_COMPLETIONS_PATH:
        return RouteResult(RouteKind.CHAT, path, path)
    return RouteResult(RouteKind.PASSTHROUGH, path, strip_version_prefix(path))
