"""
Logging setup for the lifecycle engine.

Two output formats share one root handler:
  - readable: one coloured line per record, with the workflow context
    (operation, project, milestone, remote/shadow source) appended
  - json:     one object per line for log shipping

Format and level come from LOG_FORMAT / LOG_LEVEL (app config first, then the
environment). Without LOG_FORMAT, debug and testing apps log readable lines and
everything else logs JSON.

Services pass workflow context through ``extra=``; only keys named in
``CONTEXT_FIELDS`` are emitted.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone


CONTEXT_FIELDS = (
    "operation",
    "project_id",
    "milestone_id",
    "source",
    "status",
    "duration_ms",
    "error_kind",
)


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line records for local work.

    Shadow-store writes are tagged ``SHADOW`` so fallbacks stand out.
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    SHADOW_TAG = "\033[35mSHADOW\033[0m "
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = _context(record)
        tag = self.SHADOW_TAG if context.pop("source", None) == "shadow" else ""
        duration = context.pop("duration_ms", None)
        suffix = " ".join(f"{key}={value}" for key, value in context.items())

        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {tag}{record.name}: {record.getMessage()}"
        if suffix:
            line += f" [{suffix}]"
        if duration is not None:
            line += f" ({duration}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _setting(app, key: str, default: str) -> str:
    return str(app.config.get(key) or os.getenv(key) or default)


def configure_logging(app):
    """Install the root handler for ``app``.

    Safe to call once per ``create_app()``: the root handler list is reset
    each time.
    """
    is_testing = app.config.get("TESTING", False)
    is_local = app.config.get("DEBUG", False) or is_testing

    level_name = _setting(app, "LOG_LEVEL", "DEBUG" if is_local else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = _setting(app, "LOG_FORMAT", "readable" if is_local else "json").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # HTTP client and SQL echo stay at WARNING; adapter calls are logged by the gateway
    for name in ("urllib3", "requests", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging ready: level=%s format=%s adapter=%s",
                        level_name, fmt, app.config.get("ADAPTER_BASE_URL"))
