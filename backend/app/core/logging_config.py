"""
logging_config.py — Log output for the alert engine.

The same records render two ways:

    production   one JSON object per line, alert fields grouped under "alert"
    otherwise    one coloured line per record, e.g.

        09:14:02 INFO     [3f2a9c1e] <ALR-1A2B3C4D5E6F planned> backend.app.alerts.pipeline: Plan attached

Request context (request_id, client_ip, endpoint, method) is set by
RequestLoggingMiddleware through ``set_request_context``. Alert context
travels on the record itself:

    logger.info("Plan attached", extra={"alert_id": alert_id, "state": "planned"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, TextIO

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

# Record attributes describing the alert a line is about
ALERT_FIELDS = ("alert_id", "alert_type", "state", "event", "attempt", "priority_score")
# Record attributes describing the HTTP exchange
HTTP_FIELDS = ("status_code", "endpoint", "duration_ms")

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

HANDLER_NAME = "relief-alert-engine"


def set_request_context(**values: Any) -> None:
    """Replace the request context. Call with no arguments to clear it."""
    _request_context.set(values)


def _present(record: logging.LogRecord, names: Iterable[str]) -> Dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in names
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request = _request_context.get()
        if request:
            entry["request"] = request
        alert = _present(record, ALERT_FIELDS)
        if alert:
            entry["alert"] = alert
        entry.update(_present(record, HTTP_FIELDS))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Single-line output for local runs; colour only on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def _level(self, record: logging.LogRecord) -> str:
        label = f"{record.levelname:8s}"
        code = self.LEVEL_COLORS.get(record.levelno)
        if not self.color or code is None:
            return label
        return f"\033[{code}m{label}\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        parts = [self.formatTime(record, "%H:%M:%S"), self._level(record)]

        request_id = _request_context.get().get("request_id")
        if request_id:
            parts.append(f"[{request_id[:8]}]")

        alert_id = getattr(record, "alert_id", None)
        if alert_id:
            state = getattr(record, "state", None)
            parts.append(f"<{alert_id} {state}>" if state else f"<{alert_id}>")

        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Install the engine's handler on the root logger.

    Calling it again replaces the engine's previous handler. Handlers
    installed by anything else (uvicorn, pytest's caplog) stay in place.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)

    stream = stream or sys.stdout
    handler = logging.StreamHandler(stream)
    handler.set_name(HANDLER_NAME)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        is_tty = hasattr(stream, "isatty") and stream.isatty()
        handler.setFormatter(PrettyFormatter(color=is_tty))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
