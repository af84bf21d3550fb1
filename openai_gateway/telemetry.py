"""Logging and telemetry for the OpenAI gateway.

Emits structured log records to stdout and, when a log file is configured,
appends them to an append-only log file.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("gateway")

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(log_file: Optional[str] = None, level: str = "INFO") -> None:
    """Configure the gateway logger with stdout and optional file handlers.

    Calling it again adjusts the level and adds a file handler for a log
    file that is not handled yet; the stdout handler is installed once.

    Args:
        log_file: Path to the append-only log file, or None for stdout only.
        level: Logging level name.
    """
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stdout_handler = logging.StreamHandler()
        stdout_handler.setFormatter(formatter)
        logger.addHandler(stdout_handler)

    if log_file:
        log_path = Path(log_file)
        if any(
            isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_path)
            for h in logger.handlers
        ):
            return
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def new_request_id() -> str:
    """Return a per-request correlation id."""
    return "gw-{}".format(uuid.uuid4().hex[:12])


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: Optional[str] = None,
    error: Optional[BaseException] = None,
    **fields: Any
) -> None:
    """Log a single structured event as one JSON line.

    Args:
        event: Short event label (e.g. "chat_completion", "shutdown_started").
        level: Logging level for the record.
        request_id: Per-request correlation id, if the event belongs to a request.
        error: Exception to attach; its type and message are recorded.
        **fields: Extra JSON-serialisable attributes.
    """
    if not logger.isEnabledFor(level):
        return

    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    if request_id:
        record["request_id"] = request_id
    record.update(fields)
    if error is not None:
        record["error"] = "{}: {}".format(type(error).__name__, error)

    logger.log(level, json.dumps(record, default=str))
