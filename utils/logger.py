# utils/logger.py
# Leaderboard Scoring — Structured JSON logger used by every module.
# Imports from: nothing internal. Loads .env before any level is read.

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

from dotenv import load_dotenv

# LogRecord attributes that are never copied into the JSON payload
_RESERVED_ATTRS: frozenset[str] = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "component", "taskName",
})

load_dotenv()

DEFAULT_LOG_LEVEL: str = "INFO"


class JSONFormatter(logging.Formatter):
    """
    Renders a record as one JSON line:
    timestamp, level, component, event, then every structured field.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level":     record.levelname,
            "component": getattr(record, "component", record.name),
            "event":     record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ScoringLogger:
    """
    Event-style logger: the message is a snake_case event name and every
    keyword argument becomes a JSON field.

        log = get_logger("scoring.rate_limiter")
        log.warning("points_rejected", student_id="s1", reason="cooldown")
    """

    def __init__(self, component: str) -> None:
        self.component = component
        self._logger = logging.getLogger(f"leaderboard.{component}")

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter())
            self._logger.addHandler(handler)
            # Resolved per logger, not at import time
            self._logger.setLevel(os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper())
            self._logger.propagate = False

    def _emit(self, level: int, event: str, fields: dict[str, Any]) -> None:
        fields["component"] = self.component
        self._logger.log(level, event, extra=fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields)

    def exception(self, event: str, **fields: Any) -> None:
        """ERROR level with the active traceback attached."""
        fields["traceback"] = traceback.format_exc()
        self._emit(logging.ERROR, event, fields)


def get_logger(component: str) -> ScoringLogger:
    """Every module obtains its logger here, named after its dotted path."""
    return ScoringLogger(component)
