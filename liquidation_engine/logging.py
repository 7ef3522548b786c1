"""
Structured logging configuration for the liquidation engine.

Provides consistent logging format across all modules with:
- JSON structured output for production
- Human-readable output for development
- Redaction of destination addresses and credentials
- Request ID tracking across the async workflow
"""

import json
import logging
import sys
from collections import deque
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Liquidation request currently being driven by this task
current_request_id: ContextVar[str | None] = ContextVar("current_request_id", default=None)

REDACTED_FIELDS = {
    "password",
    "api_key",
    "apikey",
    "secret",
    "token",
    "authorization",
    "credential",
    "private_key",
    "address",
    "account_number",
    "iban",
}


def redact_sensitive(data: Any, depth: int = 0) -> Any:
    """
    Recursively redact sensitive fields from data structures.

    Args:
        data: Data to redact (dict, list, or scalar)
        depth: Current recursion depth (prevents infinite recursion)

    Returns:
        Data with sensitive fields replaced with "[REDACTED]"
    """
    if depth > 10:
        return data

    if isinstance(data, dict):
        return {
            k: (
                "[REDACTED]"
                if any(redact in str(k).lower().replace("-", "_") for redact in REDACTED_FIELDS)
                else redact_sensitive(v, depth + 1)
            )
            for k, v in data.items()
        }
    elif isinstance(data, list):
        return [redact_sensitive(item, depth + 1) for item in data]
    return data


def mask_address(address: str | None) -> str:
    """Mask a destination address for log output, keeping the last 4 chars."""
    if not address:
        return ""
    if len(address) <= 4:
        return "****"
    return f"****{address[-4:]}"


class LiquidationFormatter(logging.Formatter):
    """
    Formatter adding an ISO timestamp and the active request id.

    In JSON mode each record is one object per line; extra fields passed via
    ``extra=`` are redacted before they are emitted.
    """

    TEXT_FORMAT = "%(timestamp)s | %(levelname)-8s | %(name)s | %(request_prefix)s%(message)s"

    def __init__(self, json_output: bool = False):
        super().__init__(self.TEXT_FORMAT)
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        record.timestamp = datetime.now(UTC).isoformat()
        request_id = current_request_id.get()
        record.request_prefix = f"[{request_id}] " if request_id else ""

        if not self.json_output:
            return super().format(record)

        payload: dict[str, Any] = {
            "timestamp": record.timestamp,
            "level": record.levelname,
            "logger": record.name,
            "request_id": request_id,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = redact_sensitive(context)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class InMemoryHandler(logging.Handler):
    """Ring buffer of recent records for the /logs endpoint."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.logs: deque[dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.logs.append(
                {
                    "timestamp": getattr(record, "timestamp", None) or datetime.now(UTC).isoformat(),
                    "level": record.levelname,
                    "level_no": record.levelno,
                    "logger": record.name,
                    "request_id": current_request_id.get(),
                    "message": record.getMessage(),
                }
            )
        except Exception:
            self.handleError(record)


_in_memory_handler = InMemoryHandler()

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Configure root logging for the engine process.

    Args:
        level: Logging level name
        json_output: Emit one JSON object per line (production)

    Returns:
        The configured root logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)

    formatter = LiquidationFormatter(json_output=json_output)
    for handler in (logging.StreamHandler(sys.stdout), _in_memory_handler):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)


def get_in_memory_logs(level: str = "INFO", limit: int = 50) -> list[dict[str, Any]]:
    """Get filtered logs from memory."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    filtered = [log for log in _in_memory_handler.logs if log["level_no"] >= numeric_level]
    return filtered[-limit:]


def set_request_id(request_id: str) -> None:
    """Set the current request ID for log correlation."""
    current_request_id.set(request_id)


def clear_request_id() -> None:
    """Clear the current request ID."""
    current_request_id.set(None)
