"""Configuration loader for the OpenAI gateway.

The gateway is configured once at startup. Values come from a JSON config
file, the environment, or explicit keyword arguments (the CLI). The result
is a frozen GatewayConfig that every component receives at construction
time and only ever reads.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

DEFAULT_PORT = 8080
DEFAULT_CONTROL_PORT = 8081
DEFAULT_SHUTDOWN_TIMEOUT = 15.0
DEFAULT_HEALTH_TIMEOUT = 5.0

CONTROL_HOST = "127.0.0.1"


class ConfigError(ValueError):
    """Raised when the gateway configuration is missing or invalid."""


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable runtime configuration shared by all request handlers."""

    upstream_url: str
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    control_port: int = DEFAULT_CONTROL_PORT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @property
    def control_host(self) -> str:
        """The control listener is always bound to loopback."""
        return CONTROL_HOST


def _check_port(name: str, value: int, allow_zero: bool = True) -> int:
    low = 0 if allow_zero else 1
    if not low <= value <= 65535:
        raise ConfigError("{} must be between {} and 65535, got {}".format(name, low, value))
    return value


def build_config(
    upstream_url: Optional[str],
    *,
    host: str = "0.0.0.0",
    port: int = DEFAULT_PORT,
    control_port: int = DEFAULT_CONTROL_PORT,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    log_file: Optional[str] = None,
    log_level: str = "INFO",
) -> GatewayConfig:
    """Validate raw settings and return a GatewayConfig.

    Port 0 is accepted for both listeners and asks the OS for a free port.

    Raises:
        ConfigError: If the upstream URL is missing or a value is out of range.
    """
    if not upstream_url or not upstream_url.strip():
        raise ConfigError("--open-webui-url is required")
    upstream_url = upstream_url.strip().rstrip("/")
    if not upstream_url.startswith(("http://", "https://")):
        raise ConfigError("upstream URL must start with http:// or https://: {}".format(upstream_url))

    port = _check_port("port", int(port))
    control_port = _check_port("control_port", int(control_port))
    if port and port == control_port:
        raise ConfigError("port and control_port must differ ({})".format(port))

    shutdown_timeout = float(shutdown_timeout)
    health_timeout = float(health_timeout)
    if shutdown_timeout <= 0:
        raise ConfigError("shutdown_timeout must be positive")
    if health_timeout <= 0:
        raise ConfigError("health_timeout must be positive")

    return GatewayConfig(
        upstream_url=upstream_url,
        host=host,
        port=port,
        control_port=control_port,
        shutdown_timeout=shutdown_timeout,
        health_timeout=health_timeout,
        log_file=log_file,
        log_level=log_level.upper(),
    )


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read gateway settings from environment variables.

    Only variables that are set are returned, so the result can be layered
    under explicit arguments.
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    if env.get("OPEN_WEBUI_URL"):
        values["upstream_url"] = env["OPEN_WEBUI_URL"]
    try:
        if env.get("GATEWAY_PORT"):
            values["port"] = int(env["GATEWAY_PORT"])
        if env.get("GATEWAY_QUIT_PORT"):
            values["control_port"] = int(env["GATEWAY_QUIT_PORT"])
        if env.get("GATEWAY_SHUTDOWN_TIMEOUT"):
            values["shutdown_timeout"] = float(env["GATEWAY_SHUTDOWN_TIMEOUT"])
    except ValueError as exc:
        raise ConfigError("invalid gateway environment variable: {}".format(exc)) from exc
    return values


def load_config(path: Union[str, Path], **overrides: Any) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

    Keys mirror the GatewayConfig fields. Keyword overrides that are not
    None take precedence over the file.

    Args:
        path: Path to the JSON config file.

    Returns:
        A validated GatewayConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            raw: Dict[str, Any] = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError("Config file {} is not valid JSON: {}".format(path, exc)) from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config file {} must contain a JSON object".format(path))

    raw.update({k: v for k, v in overrides.items() if v is not None})
    upstream_url = raw.pop("upstream_url", None)
    known = set(GatewayConfig.__dataclass_fields__) - {"upstream_url"}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError("Unknown config keys: {}".format(", ".join(sorted(unknown))))
    return build_config(upstream_url, **raw)
