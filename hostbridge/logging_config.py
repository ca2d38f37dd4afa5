"""
JSON-lines logging for the broker process.

Every record becomes one JSON object. The correlation fields broker modules
pass through ``extra`` (``command_id``, ``action``, ``context``) are lifted
to top-level keys so a command can be followed across the queue, the
correlation table and the HTTP layer with a single filter. The id of the
HTTP request being served, when there is one, is stamped as ``request_id``.
"""

from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

DEFAULT_LOG_FILE = "broker.log"
ENV_LOG_DIR = "HOSTBRIDGE_LOG_DIR"

# extras promoted next to "message" instead of nested under "extra"
COMMAND_FIELDS: tuple[str, ...] = ("command_id", "action", "context")

_REQUEST_ID: ContextVar[str | None] = ContextVar("hostbridge_request_id", default=None)

# attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id"}


class BrokerJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        for key in COMMAND_FIELDS:
            if key in extras:
                entry[key] = _jsonable(extras.pop(key))
        if extras:
            entry["extra"] = {key: _jsonable(value) for key, value in extras.items()}

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack"] = record.stack_info
        return json.dumps(entry, ensure_ascii=True)


class RequestIdFilter(logging.Filter):
    """Copy the current request id onto records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _REQUEST_ID.get()
        return True


def _level(name: str) -> int:
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else logging.INFO


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)
    return value


def set_request_id(value: str | None) -> Token:
    return _REQUEST_ID.set(value)


def get_request_id() -> str | None:
    return _REQUEST_ID.get()


def reset_request_id(token: Token) -> None:
    try:
        _REQUEST_ID.reset(token)
    except (RuntimeError, ValueError):
        # token minted in another context (threadpool hop)
        pass


def resolve_log_dir(log_dir: str | os.PathLike[str] | None = None) -> Path:
    """
    Directory for ``broker.log``: the argument, else ``$HOSTBRIDGE_LOG_DIR``,
    else ``logs``. Relative paths are taken from the working directory, as
    the JSON config file is.
    """
    raw = log_dir or os.getenv(ENV_LOG_DIR) or "logs"
    return Path(raw).expanduser().resolve()


def init_logging(
    log_dir: str | os.PathLike[str] | None = None,
    *,
    level: str = "INFO",
    filename: str = DEFAULT_LOG_FILE,
) -> Path:
    """Replace the root handlers with a rotating JSON file and a JSON stream.

    Safe to call twice (CLI, then app factory): the second call leaves one
    file handler and one stream handler.
    """
    base = resolve_log_dir(log_dir)
    base.mkdir(parents=True, exist_ok=True)
    log_path = base / filename

    root = logging.getLogger()
    root.setLevel(_level(level))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = BrokerJsonFormatter()
    file_handler = RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    stream_handler = logging.StreamHandler()
    for handler in (file_handler, stream_handler):
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    return log_path


__all__ = [
    "BrokerJsonFormatter",
    "COMMAND_FIELDS",
    "RequestIdFilter",
    "get_request_id",
    "init_logging",
    "reset_request_id",
    "resolve_log_dir",
    "set_request_id",
]
