"""Lifecycle controller for the gateway's two listeners.

States move strictly forward::

    STARTING -> RUNNING -> DRAINING -> STOPPED

The public listener and the loopback control listener are uvicorn servers
running as tasks on one event loop. Shutdown is triggered by the first of an
OS signal, a control-channel call, or a failure of the public listener. A
failing control listener is only logged. Draining shares one deadline
between both listeners and reports each outcome separately.
"""

import asyncio
import contextlib
import enum
import logging
import signal as os_signal
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence

import uvicorn
from fastapi import FastAPI

from openai_gateway.config import GatewayConfig
from openai_gateway.control import ShutdownSignal, create_control_app
from openai_gateway.telemetry import log_event

PUBLIC = "public"
CONTROL = "control"

# Grace period after forcing a listener before its task is cancelled.
_FORCE_GRACE = 1.0


class LifecycleState(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class DrainOutcome(enum.Enum):
    CLEAN = "clean"
    FORCED = "forced"
    FAILED = "failed"


@dataclass
class DrainReport:
    """Result of a full lifecycle run."""

    trigger: str
    outcomes: Dict[str, DrainOutcome]

    @property
    def ok(self) -> bool:
        """Only the public listener decides the process outcome."""
        return self.outcomes.get(PUBLIC) is DrainOutcome.CLEAN


class ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the lifecycle."""

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.ready = asyncio.Event()

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    async def startup(self, sockets: Optional[list] = None) -> None:
        await super().startup(sockets=sockets)
        if not self.should_exit:
            self.ready.set()


class Listener:
    """One named uvicorn server and the task serving it."""

    def __init__(self, name: str, app: FastAPI, host: str, port: int, graceful_timeout: float) -> None:
        self.name = name
        self.server = ListenerServer(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_config=None,
                access_log=False,
                server_header=False,
                date_header=False,
                lifespan="off",
                timeout_graceful_shutdown=graceful_timeout,
            )
        )
        self.task: Optional[asyncio.Task] = None
        self.error: Optional[BaseException] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port once bound (useful when configured with port 0)."""
        for server in getattr(self.server, "servers", None) or []:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return None

    @property
    def failed(self) -> bool:
        return self.error is not None


class GatewayLifecycle:
    """Owns the public and control listeners and the shutdown signal.

    Args:
        config: Immutable gateway configuration.
        public_app: Application served on ``config.host:config.port``.
        install_signal_handlers: Register SIGINT/SIGTERM on the running loop.
    """

    def __init__(
        self,
        config: GatewayConfig,
        public_app: FastAPI,
        *,
        install_signal_handlers: bool = True,
    ) -> None:
        self.config = config
        self.state = LifecycleState.STARTING
        self.shutdown_signal = ShutdownSignal(on_close=self._on_shutdown_fired)
        self._install_signal_handlers = install_signal_handlers
        self._reached = {state: asyncio.Event() for state in LifecycleState}
        self._reached[LifecycleState.STARTING].set()
        # uvicorn's own graceful timeout is a backstop behind the shared deadline.
        graceful = config.shutdown_timeout + _FORCE_GRACE
        self.public = Listener(PUBLIC, public_app, config.host, config.port, graceful)
        self.control = Listener(
            CONTROL,
            create_control_app(self.shutdown_signal),
            config.control_host,
            config.control_port,
            graceful,
        )
        self.drain_count = 0

    @property
    def listeners(self) -> Sequence[Listener]:
        return (self.public, self.control)

    def _transition(self, state: LifecycleState) -> None:
        log_event("lifecycle_transition", previous=self.state.value, state=state.value)
        self.state = state
        self._reached[state].set()

    async def wait_for_state(self, state: LifecycleState) -> None:
        """Block until the lifecycle has reached ``state``."""
        await self._reached[state].wait()

    def _on_shutdown_fired(self, reason: str) -> None:
        log_event("shutdown_triggered", reason=reason)

    def request_shutdown(self, reason: str) -> bool:
        """Fire the shutdown signal; repeated calls are no-ops."""
        return self.shutdown_signal.fire(reason)

    async def _serve(self, listener: Listener) -> None:
        log_event(
            "listener_starting",
            listener=listener.name,
            host=listener.server.config.host,
            port=listener.server.config.port,
        )
        try:
            await listener.server.serve()
        except (Exception, SystemExit) as exc:
            # uvicorn exits with SystemExit when it cannot bind.
            listener.error = exc
        else:
            if not self.shutdown_signal.fired:
                listener.error = RuntimeError("listener stopped unexpectedly")

        if listener.error is None:
            return
        log_event("listener_failed", level=logging.ERROR, listener=listener.name, error=listener.error)
        if listener is self.public:
            self.request_shutdown("public_listener_error")

    def _add_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> List[int]:
        installed = []
        for sig in (os_signal.SIGINT, os_signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_os_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread.
                continue
            installed.append(sig)
        return installed

    def _handle_os_signal(self, sig: int) -> None:
        log_event("os_signal_received", signal=os_signal.Signals(sig).name)
        self.request_shutdown("signal:{}".format(os_signal.Signals(sig).name))

    async def run(self) -> DrainReport:
        """Start both listeners, wait for a trigger, then drain.

        Returns:
            The DrainReport with the trigger reason and per-listener outcomes.
        """
        loop = asyncio.get_running_loop()
        installed = self._add_signal_handlers(loop) if self._install_signal_handlers else []

        log_event(
            "gateway_starting",
            forwarding_url=self.config.upstream_url,
            port=self.config.port,
            control_port=self.config.control_port,
        )
        for listener in self.listeners:
            listener.task = asyncio.create_task(self._serve(listener), name="listener-" + listener.name)

        try:
            ready = asyncio.ensure_future(self.public.server.ready.wait())
            fired = asyncio.ensure_future(self.shutdown_signal.wait())
            await asyncio.wait({ready, fired}, return_when=asyncio.FIRST_COMPLETED)
            if ready.done() and not self.shutdown_signal.fired:
                self._transition(LifecycleState.RUNNING)
            ready.cancel()
            trigger = await fired

            log_event("shutdown_started", reason=trigger)
            self._transition(LifecycleState.DRAINING)
            outcomes = await self._drain()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

        self._transition(LifecycleState.STOPPED)
        report = DrainReport(trigger=trigger, outcomes=outcomes)
        log_event(
            "shutdown_complete",
            reason=trigger,
            outcomes={name: outcome.value for name, outcome in outcomes.items()},
        )
        return report

    async def _drain(self) -> Dict[str, DrainOutcome]:
        """Stop both listeners under one shared deadline."""
        self.drain_count += 1
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.shutdown_timeout

        for listener in self.listeners:
            listener.server.should_exit = True

        outcomes: Dict[str, DrainOutcome] = {}
        for listener in self.listeners:
            outcomes[listener.name] = await self._drain_listener(listener, deadline)
        return outcomes

    async def _drain_listener(self, listener: Listener, deadline: float) -> DrainOutcome:
        if listener.task is None:
            raise RuntimeError("listener {} was never started".format(listener.name))
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            await asyncio.wait_for(asyncio.shield(listener.task), timeout=remaining)
        except asyncio.TimeoutError:
            log_event("listener_drain_timeout", level=logging.ERROR, listener=listener.name)
            listener.server.force_exit = True
            await self._terminate_in_flight(listener)
            done, _ = await asyncio.wait({listener.task}, timeout=_FORCE_GRACE)
            if not done:
                listener.task.cancel()
                await asyncio.gather(listener.task, return_exceptions=True)
            return DrainOutcome.FORCED

        if listener.failed:
            return DrainOutcome.FAILED
        log_event("listener_stopped", listener=listener.name)
        return DrainOutcome.CLEAN

    async def _terminate_in_flight(self, listener: Listener) -> None:
        """Cancel request tasks and drop connections still open past the deadline.

        force_exit makes uvicorn skip its own cancellation of request tasks,
        so it is done here.
        """
        state = listener.server.server_state
        pending = [task for task in list(state.tasks) if not task.done()]
        for task in pending:
            task.cancel()
        for connection in list(state.connections):
            transport = getattr(connection, "transport", None)
            if transport is not None and not transport.is_closing():
                transport.abort()
        if pending:
            await asyncio.wait(pending, timeout=_FORCE_GRACE)
        log_event(
            "listener_requests_terminated",
            level=logging.WARNING,
            listener=listener.name,
            cancelled=len(pending),
        )
