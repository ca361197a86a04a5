"""
Logging setup for the Synth backend.

Everything logs through the "synth" logger tree. Production emits one JSON
object per line; development gets a single readable line per record.

Request correlation lives in two context variables: the request id (set by
RequestIdMiddleware) and the acting user (set once the caller is
authenticated). RequestIdFilter copies both onto every record that does not
carry them already.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "synth"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_ctx_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}
_CONTEXT_ATTRS = ("request_id", "user_id")

# Header and field names whose values never reach a log line
_SENSITIVE_KEYS = frozenset({"authorization", "stripe-signature", "token", "secret", "api_key", "password"})

MAX_FIELD_LENGTH = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def get_user_id() -> Optional[str]:
    return user_id_ctx_var.get()


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label so request logs aggregate cleanly."""
    if latency_ms is None:
        return "unknown"
    for limit, label in ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms")):
        if latency_ms < limit:
            return label
    return ">=1000ms"


def redact(key: str, value: Any) -> Any:
    if key.lower() in _SENSITIVE_KEYS:
        return "[redacted]"
    return value


def truncate(value: Any, limit: int = MAX_FIELD_LENGTH) -> Any:
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    text = value if isinstance(value, str) else repr(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured fields passed via `extra`, redacted, context ids excluded."""
    return {
        key: redact(key, value)
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and key not in _CONTEXT_ATTRS
    }


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class RequestIdFilter(logging.Filter):
    """Fill request_id and user_id from context when a record lacks them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        if getattr(record, "user_id", None) is None:
            record.user_id = get_user_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "user_id": getattr(record, "user_id", None),
        }
        payload.update(record_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(record), record.levelname, f"[{record.name}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        user_id = getattr(record, "user_id", None)
        if user_id:
            parts.append(f"[user={user_id}]")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in record_fields(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> logging.Logger:
    """Install one stdout handler on the "synth" logger. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    # caplog reads records from the root logger
    logger.propagate = True

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    return logger


def log_event(level: str, msg: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    """Log `msg` with keyword fields as structured extras, each value truncated."""
    target = logger or logging.getLogger(LOGGER_NAME)
    extra = {key: truncate(value) for key, value in fields.items() if value is not None}
    target.log(logging.getLevelName(level.upper()), msg, extra=extra)
