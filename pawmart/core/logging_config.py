"""
Logging setup for PawMart

Every record carries the id of the HTTP request it was emitted under, so
a checkout, its stock reservation and the eventual payment callback can
be followed through the logs. Production writes one JSON object per line;
anything else gets a readable text line.

Level and format come from settings (LOG_LEVEL, LOG_FORMAT) and default
by ENVIRONMENT.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pawmart.core.config import settings

__all__ = [
    "setup_logging",
    "set_request_id",
    "get_request_id",
    "reset_request_id",
    "RequestIdFilter",
    "JsonFormatter",
    "TEXT_FORMAT",
]

_request_id: ContextVar[Optional[str]] = ContextVar("pawmart_request_id", default=None)

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s"

# Chatty client libraries kept at WARNING regardless of the app level
_QUIET_LOGGERS = ("uvicorn.access", "boto3", "botocore", "urllib3", "httpx")

# Present on every LogRecord; everything else arrived through `extra=`
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "request_id"}


def set_request_id(request_id: str):
    """Bind `request_id` to the running task; returns the token for `reset_request_id`."""
    return _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def reset_request_id(token) -> None:
    _request_id.reset(token)


class RequestIdFilter(logging.Filter):

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _defaults() -> tuple:
    production = settings.ENVIRONMENT == "production"
    level = settings.LOG_LEVEL or ("INFO" if production else "DEBUG")
    log_format = settings.LOG_FORMAT or ("json" if production else "text")
    return level, log_format


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> logging.Handler:
    """
    Replace the root handlers with one stdout handler and return it.

    Unknown level names fall back to INFO.
    """
    default_level, default_format = _defaults()
    level = (level or default_level).upper()
    log_format = (log_format or default_format).lower()

    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging configured: level={logging.getLevelName(numeric_level)}, "
              f"format={log_format}, env={settings.ENVIRONMENT}")
    return handler
