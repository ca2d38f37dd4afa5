from __future__ import annotations

import asyncio
import json
import logging
import os

import pytest

from hostbridge.broker.core import CommandBroker
from hostbridge.logging_config import (
    BrokerJsonFormatter,
    get_request_id,
    init_logging,
    reset_request_id,
    resolve_log_dir,
    set_request_id,
)


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)


def _records(root: logging.Logger, log_path) -> list[dict]:
    for handler in root.handlers:
        handler.flush()
    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    return [json.loads(line) for line in lines]


def test_command_fields_are_top_level(tmp_path, restore_root_logger) -> None:
    log_path = init_logging(tmp_path / "logs", level="debug")
    assert log_path == (tmp_path / "logs" / "broker.log").resolve()

    token = set_request_id("req-42")
    try:
        logging.getLogger("hostbridge.test").info(
            "Command queued",
            extra={"command_id": "abc", "action": "execute", "attempt": 2},
        )
    finally:
        reset_request_id(token)

    record = _records(restore_root_logger, log_path)[-1]
    assert record["message"] == "Command queued"
    assert record["level"] == "INFO"
    assert record["request_id"] == "req-42"
    assert record["command_id"] == "abc"
    assert record["action"] == "execute"
    assert record["extra"] == {"attempt": 2}


def test_broker_timeout_is_traceable_by_command_id(
    tmp_path, restore_root_logger
) -> None:
    log_path = init_logging(tmp_path, level="DEBUG")
    broker = CommandBroker()

    response = asyncio.run(broker.submit("noop", timeout=0.05))

    records = _records(restore_root_logger, log_path)
    for_command = [r for r in records if r.get("command_id") == response.id]
    assert {r["logger"] for r in for_command} >= {
        "hostbridge.broker.core",
        "hostbridge.broker.queue",
        "hostbridge.broker.correlation",
    }
    timed_out = [r for r in for_command if r["level"] == "WARNING"]
    assert timed_out and timed_out[0]["action"] == "noop"
    assert timed_out[0]["context"] == "Edit"


def test_relative_log_dir_follows_working_directory(
    tmp_path, monkeypatch, restore_root_logger
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("HOSTBRIDGE_LOG_DIR")

    assert resolve_log_dir() == (tmp_path / "logs").resolve()
    log_path = init_logging("run-logs")
    assert log_path == (tmp_path / "run-logs" / "broker.log").resolve()
    assert "HOSTBRIDGE_LOG_FILE" not in os.environ


def test_log_dir_from_environment(tmp_path, restore_root_logger) -> None:
    # conftest points HOSTBRIDGE_LOG_DIR into tmp_path
    log_path = init_logging()
    assert log_path.parent == (tmp_path / "logs").resolve()


def test_init_logging_replaces_handlers(tmp_path, restore_root_logger) -> None:
    init_logging(tmp_path)
    init_logging(tmp_path)
    assert len(restore_root_logger.handlers) == 2


def test_unknown_level_falls_back_to_info(tmp_path, restore_root_logger) -> None:
    init_logging(tmp_path, level="chatty")
    assert restore_root_logger.level == logging.INFO


def test_formatter_repr_for_unserialisable_extra() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
    record.payload = object()
    record.context = object()
    data = json.loads(BrokerJsonFormatter().format(record))
    assert data["extra"]["payload"].startswith("<object object")
    assert data["context"].startswith("<object object")


def test_request_id_context_resets() -> None:
    assert get_request_id() is None
    token = set_request_id("outer")
    assert get_request_id() == "outer"
    reset_request_id(token)
    assert get_request_id() is None
