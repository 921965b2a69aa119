from __future__ import annotations

import json

import structlog

from stealth_relay.log import setup_logging


def test_json_output_includes_traceback(capsys) -> None:
    setup_logging("INFO", json_output=True)
    try:
        log = structlog.get_logger("test_log")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            log.error("capture_failed", message_id="m1", exc_info=True)
    finally:
        structlog.reset_defaults()

    event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])

    assert event["event"] == "capture_failed"
    assert event["message_id"] == "m1"
    assert "RuntimeError: boom" in event["exception"]


def test_console_output_by_default(capsys) -> None:
    setup_logging("DEBUG")
    try:
        structlog.get_logger("test_log").info("cleanup_started", interval_minutes=5)
    finally:
        structlog.reset_defaults()

    assert "cleanup_started" in capsys.readouterr().err
