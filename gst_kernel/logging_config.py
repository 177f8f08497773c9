"""
Structured JSON logging for the GST ledger kernel.

Every record is one JSON object per line.  Request-scoped fields (the
operation's correlation id, tenant and actor, and the document or return
being worked on) live in ``LogContext`` and are merged into each record, so
a single ``grep tenant_id=...`` reconstructs everything one tenant did.

Usage::

    logger = get_logger("services.allocation")
    with LogContext.bind(tenant_id=actor.tenant_id, actor_id=actor.actor_id):
        logger.info("allocation_created", extra={"amount": amount})
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "gst_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "tenant_id",
    "actor_id",
    "document_id",
    "return_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"gst_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields, safe across threads and asyncio tasks.

    Values are stored as strings; UUIDs and other ids may be passed as is.
    Unknown field names raise ``TypeError``.
    """

    @staticmethod
    def _var(name: str) -> ContextVar[str | None]:
        try:
            return _context_vars[name]
        except KeyError:
            raise TypeError(f"Unknown log context field: {name}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields; None values are ignored."""
        for name, value in fields.items():
            if value is not None:
                cls._var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _context_vars.items()
            if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Context manager: set fields on entry, restore previous values on exit."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = LogContext._var(name)
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """
    One JSON line per record.

    Keys: ts, level, logger, message, the LogContext fields, every ``extra=``
    field, and for exceptions exc_type, exc_message, exc_code (LedgerError
    subclasses), exc_<attribute> for each public attribute, and traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for key, val in vars(exc).items():
            if not key.startswith("_") and key != "code":
                fields[f"exc_{key}"] = val
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the gst_kernel namespace, e.g. ``gst_kernel.services.sequence``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the gst_kernel logger.

    Idempotent: only the first call has an effect until ``reset_logging()``.
    ``level`` accepts a number or a name such as "debug".
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level.upper() if isinstance(level, str) else level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Drop handlers and configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
