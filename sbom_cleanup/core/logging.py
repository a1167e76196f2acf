"""Structured logging configuration for the SBOM cleanup worker."""

import json
import logging
import re
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional, Set

from sbom_cleanup.core.time import utcnow

# Context variable for cycle-scoped data
cycle_context: ContextVar[Dict[str, Any]] = ContextVar("cycle_context", default={})

# Keys whose values should be redacted in logs
SENSITIVE_KEYS: Set[str] = {
    "authorization",
    "token",
    "release_api_token",
    "password",
}

# Keys holding connection strings (password component is masked)
CONNECTION_KEYS: Set[str] = {
    "database_url",
    "connection_string",
    "sbom_db_connection_string",
}

# user:password@ in URLs
_URL_PASSWORD_PATTERN = re.compile(r"(://[^:/@\s]+:)[^@\s]+(@)")
# Password=...; in key/value connection strings
_KV_PASSWORD_PATTERN = re.compile(r"(password=)[^;\s]*", re.IGNORECASE)


def _redact_value(value: Any) -> str:
    """Redact a sensitive value, keeping a short prefix/suffix of long tokens."""
    if not isinstance(value, str):
        return "[REDACTED]"

    # Short secrets (<12 chars): fully mask
    if len(value) < 12:
        return "<REDACTED>"

    return f"{value[:3]}***{value[-3:]}"


def redact_connection_string(value: str) -> str:
    """Mask the password component of a URL or key/value connection string."""
    if not isinstance(value, str):
        return value
    out = _URL_PASSWORD_PATTERN.sub(r"\1***\2", value)
    return _KV_PASSWORD_PATTERN.sub(r"\1***", out)


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Redacts:
    - Authorization / token values
    - Passwords embedded in connection strings
    """
    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if key_lower in SENSITIVE_KEYS:
                redacted[key] = _redact_value(value)
            elif key_lower in CONNECTION_KEYS:
                redacted[key] = redact_connection_string(value)
            else:
                redacted[key] = redact_sensitive_data(value)
        return redacted
    elif isinstance(data, list):
        return [redact_sensitive_data(item) for item in data]
    return data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": utcnow().strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = cycle_context.get()
        if ctx:
            log_data["cycle_id"] = ctx.get("cycle_id")

        # Add extra data if provided (with sensitive data redacted)
        if hasattr(record, "data") and record.data:
            log_data["data"] = redact_sensitive_data(record.data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",   # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console."""
        color = self.COLORS.get(record.levelname, "")
        timestamp = utcnow().strftime("%Y-%m-%d %H:%M:%S")

        ctx = cycle_context.get()
        cycle_id = (ctx.get("cycle_id") or "-")[:8] if ctx else "-"

        message = f"{timestamp} | {color}{record.levelname:8}{self.RESET} | {cycle_id} | {record.name} | {record.getMessage()}"

        if hasattr(record, "data") and record.data:
            message += f" | {redact_sensitive_data(record.data)}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that accepts a structured ``data`` payload."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Process log message with context."""
        extra = kwargs.get("extra", {})
        if "data" in kwargs:
            extra["data"] = kwargs.pop("data")
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: Dict[str, ContextLogger] = {}


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger."""
    if name not in _loggers:
        logger = logging.getLogger(name)
        _loggers[name] = ContextLogger(logger, {})
    return _loggers[name]


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure process logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_output:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    # File handler (always JSON)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
