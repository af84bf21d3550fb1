"""Shutdown signalling and the loopback control channel.

ShutdownSignal is the only shared mutable object in the gateway. Any number
of triggers may call fire(); the first one closes the signal and every later
call is a no-op.
"""

import asyncio
import ipaddress
import logging
import threading
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from openai_gateway.telemetry import log_event

QUIT_PATH = "/quitquitquit"
QUIT_RESPONSE = "Initiating shutdown..."


class ShutdownSignal:
    """Single-fire shutdown signal.

    Args:
        on_close: Optional hook run exactly once, by the call that closes the
            signal.
    """

    def __init__(self, on_close: Optional[Callable[[str], None]] = None) -> None:
        self._event = asyncio.Event()
        self._guard = threading.Lock()
        self._reason: Optional[str] = None
        self._on_close = on_close

    @property
    def fired(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        """Label of the trigger that closed the signal, if any."""
        return self._reason

    def fire(self, reason: str) -> bool:
        """Close the signal.

        Must be called from the event loop thread.

        Returns:
            True if this call closed the signal, False if it was already closed.
        """
        with self._guard:
            if self._reason is not None:
                return False
            self._reason = reason
        if self._on_close is not None:
            self._on_close(reason)
        self._event.set()
        return True

    async def wait(self) -> str:
        """Block until the signal fires and return the trigger reason."""
        await self._event.wait()
        return self._reason or ""


def is_loopback_host(host: str) -> bool:
    """Return True for loopback addresses and ``localhost``."""
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def create_control_app(signal: ShutdownSignal) -> FastAPI:
    """Build the control application served on the loopback-only port."""
    app = FastAPI(
        title="OpenAI Gateway control",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.post(QUIT_PATH, response_class=PlainTextResponse)
    async def quit_signal(request: Request) -> PlainTextResponse:
        host = request.client.host if request.client else ""
        if not is_loopback_host(host):
            log_event("shutdown_request_refused", level=logging.WARNING, peer=host)
            return PlainTextResponse("Forbidden", status_code=403)

        log_event("shutdown_requested", source="control", peer=host)
        first = signal.fire("control")
        if not first:
            log_event("shutdown_already_in_progress", reason=signal.reason)
        return PlainTextResponse(QUIT_RESPONSE, status_code=200)

    return app
