"""
Logging Configuration

JSON lines in production, a plain text format everywhere else.

Records may carry tenant_id, user_id and request_id as ``extra`` fields.
The JSON formatter lifts them to top-level keys so log aggregation can
filter per organization; the text format appends the tenant when set.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

EXTRA_FIELDS = ("tenant_id", "user_id", "request_id", "path", "method")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s%(tenant_suffix)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if getattr(record, "security_event", False):
            entry["security_event"] = True
            entry["event_type"] = record.event_type
            entry["details"] = record.details

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        tenant_id = getattr(record, "tenant_id", None)
        record.tenant_suffix = f" [tenant={tenant_id}]" if tenant_id else ""
        return super().format(record)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure the root logger with a single stdout handler.

    Safe to call more than once; earlier handlers are replaced.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else TextFormatter())
    root.addHandler(handler)

    # Per-request access lines and SQL echo are too noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log a security-relevant event at WARNING.

    Event types in use:
    - failed_login: wrong credentials, inactive account, wrong organization
    - tenant_mismatch: a session used on another organization's host
    - tenant_isolation_violation: query or write outside the bound scope
    - rate_limit_exceeded: per-organization request budget spent

    Never pass passwords or session tokens in ``details``.
    """
    extra = {
        "security_event": True,
        "event_type": event_type,
        "details": details,
    }
    if details.get("tenant_id"):
        extra["tenant_id"] = details["tenant_id"]
    if details.get("user_id"):
        extra["user_id"] = details["user_id"]
    logger.warning(f"SECURITY EVENT: {event_type}", extra=extra)
