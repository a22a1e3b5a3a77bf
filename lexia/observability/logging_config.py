"""
Structured logging configuration for Lexia.

Uses Python's built-in logging with a JSONFormatter. Production gets
structured JSON output; every other environment gets colored text.

Environments:
- production: JSON to stdout (machine-readable)
- development/staging/test: Colored text to stderr (human-readable)

Usage:
    from lexia.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from LEXIA_ENV

    logger = logging.getLogger(__name__)
    logger.info("intent_classified", extra={
        "intent": "procedural_query",
        "confidence": 0.25,
    })
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Request Trace Context ────────────────────────────────────────────

# ContextVar rather than thread-local: requests share one event loop thread.
_trace_id_var: ContextVar[Optional[str]] = ContextVar("lexia_trace_id", default=None)


def set_trace_id(trace_id: str) -> None:
    """
    Set the current request trace_id.

    Called by the pipeline once the controller has produced a decision,
    so that every log record emitted for that request carries it.
    """
    _trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    """Get the current trace_id, or None outside a request."""
    return _trace_id_var.get()


def clear_trace_id() -> None:
    """Clear the trace_id from the current context."""
    _trace_id_var.set(None)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects the request trace_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        trace_id = get_trace_id()
        if trace_id and not hasattr(record, "trace_id"):
            record.trace_id = trace_id  # type: ignore[attr-defined]
        return True


# ─── JSON Formatter (Production) ──────────────────────────────────────


_STANDARD_FIELDS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    Outputs log records as single-line JSON objects.

    Output format:
        {"timestamp": "...", "level": "INFO", "logger": "lexia.llm.orchestrator",
         "message": "stream_fallback_used", "trace_id": "lexia-...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "trace_id"):
            entry["trace_id"] = record.trace_id

        for key, value in record.__dict__.items():
            if key in _STANDARD_FIELDS or key.startswith("_") or key == "trace_id":
                continue
            try:
                json.dumps(value)
                entry[key] = value
            except (TypeError, ValueError):
                entry[key] = str(value)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ─── Dev Formatter (Local Development) ────────────────────────────────


class DevFormatter(logging.Formatter):
    """
    Colorful, human-readable logs for local development.

    Format: [HH:MM:SS] LEVEL logger: message [key=value key=value]
    """

    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    _EXTRA_KEYS = (
        "trace_id", "intent", "provider", "model",
        "tool_name", "duration_ms", "user_id", "case_id",
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        timestamp = self.formatTime(record, "%H:%M:%S")

        extras = []
        for key in self._EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                extras.append(f"{key}={value}")

        extra_str = f" [{' '.join(extras)}]" if extras else ""

        formatted = (
            f"{self.RESET}[{timestamp}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}{extra_str}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


# ─── Configuration ────────────────────────────────────────────────────


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Configure the root logger based on environment.

    Args:
        env: Override environment. If None, reads from LEXIA_ENV
             (defaults to "development").
        level: Log level (default: INFO).
    """
    env = env or os.environ.get("LEXIA_ENV", "development").lower().strip()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())

    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "openai", "anthropic", "supabase", "hpack"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
