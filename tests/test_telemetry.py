"""Tests for structured logging."""

import json
import logging
from pathlib import Path

import pytest

from openai_gateway import telemetry


def test_log_event_writes_json_line(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(telemetry.logger, "handlers", [])
    log_file = tmp_path / "logs" / "gateway.log"

    telemetry.setup_logging(str(log_file), "INFO")
    try:
        telemetry.log_event(
            "chat_completion",
            request_id="gw-123",
            outcome="upstream_error",
            status_code=500,
            error=RuntimeError("boom"),
        )
        telemetry.log_event("noise", level=logging.DEBUG)
    finally:
        for handler in telemetry.logger.handlers:
            handler.close()

    lines = log_file.read_text().strip().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0].split("] ", 1)[1])
    assert record["event"] == "chat_completion"
    assert record["request_id"] == "gw-123"
    assert record["status_code"] == 500
    assert record["error"] == "RuntimeError: boom"
    assert "timestamp" in record


def test_request_ids_are_distinct() -> None:
    ids = {telemetry.new_request_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("gw-") and len(i) == 15 for i in ids)
