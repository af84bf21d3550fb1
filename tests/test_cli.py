"""Tests for the command-line entrypoint."""

import logging
from typing import Callable, Dict

import httpx
import pytest

from openai_gateway import cli, telemetry
from openai_gateway.cli import _parse_args, main, resolve_config, send_quit
from openai_gateway.config import ConfigError


def _transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def test_send_quit_success() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="Initiating shutdown...")

    assert send_quit(9123, transport=_transport(handler)) == 0
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://127.0.0.1:9123/quitquitquit"


def test_send_quit_not_running_is_success() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert send_quit(9123, transport=_transport(handler)) == 0


def test_send_quit_timeout_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    assert send_quit(9123, transport=_transport(handler)) == 1


def test_send_quit_unexpected_status_fails() -> None:
    assert send_quit(9123, transport=_transport(lambda r: httpx.Response(403))) == 1


def test_resolve_config_flags_override_env() -> None:
    args = _parse_args(["serve", "--port", "9000", "--open-webui-url", "http://flag/api"])
    env: Dict[str, str] = {"OPEN_WEBUI_URL": "http://env/api", "GATEWAY_QUIT_PORT": "9001"}

    config = resolve_config(args, environ=env)

    assert config.upstream_url == "http://flag/api"
    assert config.port == 9000
    assert config.control_port == 9001


def test_resolve_config_uses_env_url() -> None:
    args = _parse_args(["serve"])
    config = resolve_config(args, environ={"OPEN_WEBUI_URL": "http://env/api"})
    assert config.upstream_url == "http://env/api"
    assert config.port == 8080


def test_resolve_config_requires_url() -> None:
    with pytest.raises(ConfigError):
        resolve_config(_parse_args(["serve"]), environ={})


def test_serve_without_url_exits_1(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPEN_WEBUI_URL", raising=False)
    assert main(["serve"]) == 1


def test_quit_port_flag() -> None:
    args = _parse_args(["quit", "--quit-port", "9555"])
    assert args.cmd == "quit"
    assert args.quit_port == 9555


def test_serve_installs_log_file_from_config_file(
    tmp_path, config_file, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A log_file set only in the JSON config still gets a file handler."""
    log_file = tmp_path / "logs" / "gw.log"
    path = config_file({"upstream_url": "http://webui/api", "log_file": str(log_file)})
    monkeypatch.setattr(telemetry.logger, "handlers", [])
    monkeypatch.delenv("OPEN_WEBUI_URL", raising=False)

    served = []

    def fake_run(coro) -> int:
        served.append(coro)
        coro.close()
        return 0

    monkeypatch.setattr(cli.asyncio, "run", fake_run)
    try:
        assert main(["serve", "--config", path]) == 0
        file_handlers = [
            h for h in telemetry.logger.handlers if isinstance(h, logging.FileHandler)
        ]
    finally:
        for handler in telemetry.logger.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()

    assert len(served) == 1
    assert [h.baseFilename for h in file_handlers] == [str(log_file)]
