"""
Structured logging: JSON for cloud aggregators, readable format for dev.
Configured from env (LOG_LEVEL, LOG_JSON). Credentials passed through
`extra` are redacted before they reach any handler.
"""

import json
import logging
import sys
from typing import Any

from core.config import get_settings

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

SENSITIVE_KEYS = frozenset(
    {"token", "access_token", "refresh_token", "authorization", "password", "secret"}
)
REDACTED = "[REDACTED]"


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger with app-level config applied.
    Use logger.info("event", extra={"key": "value"}) for structured fields.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    settings = get_settings()
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    handler.addFilter(_RedactFilter())
    if settings.LOG_JSON:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_KeyValueFormatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields supplied via `extra=` on the logging call."""
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class _RedactFilter(logging.Filter):
    """Mask credential-bearing extra fields. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in extra_fields(record):
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, REDACTED)
        return True


class _KeyValueFormatter(logging.Formatter):
    """Human-readable line with extra fields appended as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = extra_fields(record)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON for CloudWatch, Datadog, etc."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        # Merge extra dict into top level for structured search
        log_obj.update(extra_fields(record))
        return json.dumps(log_obj, default=str)
