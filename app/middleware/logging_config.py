"""
Structured logging configuration.

- Development / testing: single-line colored output
- Production: one JSON object per line (log aggregator compatible)
- LOG_LEVEL overrides the level, LOG_FORMAT ("json" / "readable") the format
- Every record emitted inside a request carries request_id / workspace_id
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Request-scoped attributes copied into JSON output when present
_CONTEXT_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "workspace_id",
)

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "httpx", "httpcore")


class RequestContextFilter(logging.Filter):
    """Attach request_id / workspace_id to records logged during a request.

    Values passed explicitly via ``extra=`` are left alone.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        if getattr(record, "workspace_id", None) is None:
            record.workspace_id = (request.view_args or {}).get("wid")
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        workspace_id = getattr(record, "workspace_id", None)
        if workspace_id is not None:
            line += f" (ws={workspace_id})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _select_formatter(is_prod: bool) -> logging.Formatter:
    fmt = os.getenv("LOG_FORMAT", "").strip().lower()
    if fmt == "json" or (not fmt and is_prod):
        return JSONFormatter()
    return ReadableFormatter(use_color=sys.stderr.isatty())


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Level defaults to INFO in production and DEBUG otherwise. Calling this
    again (one app per test session, several in scripts) replaces the
    previous handler instead of stacking a second one.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_select_formatter(is_prod))
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info(
            "Logging configured: level=%s format=%s",
            level_name, type(handler.formatter).__name__,
        )
