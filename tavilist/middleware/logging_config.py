"""
Structured logging configuration.

- Development / testing: readable colored lines on stderr
- Production: one JSON object per line (log aggregator compatible)
- LOG_LEVEL env variable overrides the level

Every handler carries a RedactingFilter: signature images travel as
base64 data URLs and provider keys sit in headers, and neither may reach
a log line even when a message interpolates a raw payload.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

# LogRecord attributes copied into JSON output when a call passes them via extra=
_EXTRA_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "project_id",
    "stage_id",
    "event_type",
)

_DATA_URL_RE = re.compile(r"data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]{16,}")
_KEY_RE = re.compile(r"(?i)(apikey|api_key|authorization|bearer)([\"':=\s]+)([A-Za-z0-9._\-]{8,})")


def redact(text: str) -> str:
    text = _DATA_URL_RE.sub("data:image/<redacted>", text)
    return _KEY_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}<redacted>", text)


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message in place; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update({
            key: getattr(record, key)
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        })
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = "".join(
            f" {key}={getattr(record, key)}"
            for key in ("project_id", "stage_id")
            if getattr(record, key, None) is not None
        )
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{tags}{dur_str}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single root handler for the Flask app.

    Production → JSONFormatter, otherwise ReadableFormatter. LOG_LEVEL
    defaults to INFO in production and DEBUG elsewhere.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RedactingFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session app; avoid stacking handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine", "PIL", "reportlab"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
