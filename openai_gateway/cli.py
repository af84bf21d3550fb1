"""Command-line entrypoint: ``serve`` runs the gateway, ``quit`` stops one."""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import httpx

from openai_gateway import __version__
from openai_gateway.app import create_app
from openai_gateway.config import (
    CONTROL_HOST,
    DEFAULT_CONTROL_PORT,
    ConfigError,
    GatewayConfig,
    build_config,
    config_from_env,
    load_config,
)
from openai_gateway.control import QUIT_PATH
from openai_gateway.lifecycle import GatewayLifecycle
from openai_gateway.telemetry import log_event, setup_logging

QUIT_TIMEOUT = 5.0


def _parse_args(argv: List[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="openai-gateway",
        description="OpenAI-compatible gateway in front of an Open-WebUI chat API.",
    )
    p.add_argument("--version", action="version", version="%(prog)s " + __version__)
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="Start the gateway server.")
    serve.add_argument("--config", help="Optional JSON config file.")
    serve.add_argument(
        "--open-webui-url",
        dest="upstream_url",
        help="Open-WebUI API endpoint URL (default: OPEN_WEBUI_URL env var).",
    )
    serve.add_argument("--host", help="Address for the public listener (default 0.0.0.0).")
    serve.add_argument("--port", type=int, help="Port number to listen on (default 8080).")
    serve.add_argument(
        "--quit-port",
        dest="control_port",
        type=int,
        help="Loopback port for the quit signal server (default 8081).",
    )
    serve.add_argument(
        "--shutdown-timeout",
        type=float,
        help="Seconds to wait for in-flight requests on shutdown (default 15).",
    )
    serve.add_argument("--log-file", help="Append logs to this file as well as stdout.")
    serve.add_argument("--log-level", default=None, help="Logging level (default INFO).")

    quit_cmd = sub.add_parser("quit", help="Send a shutdown signal to a running gateway.")
    quit_cmd.add_argument(
        "--quit-port",
        type=int,
        default=DEFAULT_CONTROL_PORT,
        help="Port where the target gateway's quit server listens.",
    )

    return p.parse_args(argv)


def resolve_config(args: argparse.Namespace, environ: Optional[Dict[str, str]] = None) -> GatewayConfig:
    """Layer CLI flags over the environment and an optional config file."""
    explicit: Dict[str, Any] = {
        "upstream_url": args.upstream_url,
        "host": args.host,
        "port": args.port,
        "control_port": args.control_port,
        "shutdown_timeout": args.shutdown_timeout,
        "log_file": args.log_file,
        "log_level": args.log_level,
    }
    values = config_from_env(os.environ if environ is None else environ)
    values.update({k: v for k, v in explicit.items() if v is not None})
    if args.config:
        return load_config(args.config, **values)
    upstream_url = values.pop("upstream_url", None)
    return build_config(upstream_url, **values)


async def _serve(config: GatewayConfig) -> int:
    lifecycle = GatewayLifecycle(config, create_app(config))
    report = await lifecycle.run()
    return 0 if report.ok else 1


def serve(args: argparse.Namespace) -> int:
    try:
        config = resolve_config(args)
    except (ConfigError, FileNotFoundError) as exc:
        setup_logging(args.log_file, (args.log_level or "INFO").upper())
        log_event("startup_error", level=logging.ERROR, error=exc)
        return 1
    setup_logging(config.log_file, config.log_level)
    return asyncio.run(_serve(config))


def send_quit(quit_port: int, *, transport: Optional[httpx.BaseTransport] = None) -> int:
    """POST to a running gateway's quit endpoint.

    Returns:
        0 if the gateway accepted the request or is not running, 1 otherwise.
    """
    url = "http://{}:{}{}".format(CONTROL_HOST, quit_port, QUIT_PATH)
    log_event("quit_sending", url=url)
    with httpx.Client(timeout=QUIT_TIMEOUT, transport=transport) as client:
        try:
            resp = client.post(url)
        except httpx.TimeoutException as exc:
            log_event("quit_timeout", level=logging.ERROR, url=url, timeout=QUIT_TIMEOUT, error=exc)
            return 1
        except httpx.ConnectError as exc:
            log_event("quit_target_not_running", url=url, error=exc)
            return 0
        except httpx.HTTPError as exc:
            log_event("quit_failed", level=logging.ERROR, url=url, error=exc)
            return 1

    if resp.status_code != 200:
        log_event("quit_failed", level=logging.ERROR, url=url, status_code=resp.status_code)
        return 1
    log_event("quit_sent", url=url)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    if args.cmd == "quit":
        setup_logging()
        return send_quit(args.quit_port)
    return serve(args)
