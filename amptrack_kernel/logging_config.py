"""
Structured JSON logging for the document kernel.

Every line is one JSON object.  Request-scoped fields (the engine call's
correlation id, the acting user, the document being worked on, the payment
event being applied) live in a single context map and are merged into each
line, so a document's history can be followed across services and worker
threads without passing ids through every call.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "document_context",
    "with_log_context",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import functools
import json
import logging
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, copy_context
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

T = TypeVar("T")

# Emitted in this order, ahead of per-line extras.
CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "document_id",
    "document_number",
    "event_id",
)

_context: ContextVar[Mapping[str, str] | None] = ContextVar("amptrack_log_context", default=None)


class LogContext:
    """Request-scoped log fields, local to the current thread or task."""

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> dict[str, str]:
        current = dict(_context.get() or {})
        for name, value in fields.items():
            if name in CONTEXT_FIELDS and value is not None:
                current[name] = str(value)
        return current

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields. None values and unknown names are ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        current = _context.get() or {}
        return {name: current[name] for name in CONTEXT_FIELDS if name in current}

    @classmethod
    def clear(cls) -> None:
        _context.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a block; the previous map is restored on exit."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


def document_context(document: Any):
    """Bind the id and number of a document row or snapshot."""
    return LogContext.bind(
        document_id=getattr(document, "id", None),
        document_number=getattr(document, "document_number", None),
    )


def with_log_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Wrap ``fn`` so it runs with the caller's log context, e.g. on a worker thread."""
    ctx = copy_context()

    @functools.wraps(fn)
    def run(*args: Any, **kwargs: Any) -> T:
        return ctx.run(fn, *args, **kwargs)

    return run


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """UUIDs, dates, amounts and status enums as strings."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        # Context wins over a same-named extra
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Kernel errors keep their context as attributes; surface them as exc_* keys."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "amptrack"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the amptrack namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the amptrack logger (first call wins).

    ``level`` accepts a number or a name in any case, as read from
    AMPTRACK_LOG_LEVEL.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = level.upper()
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    logger.propagate = True
