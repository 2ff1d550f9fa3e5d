"""
Structured JSON logging for the contract kernel.

Every line is one JSON object.  Fields bound through LogContext (the
correlation ID of the registry call, the contract, the actor, the
operation name and the idempotency key) are merged into each line, so
all lines of one unit of work can be grouped by correlation_id.

Kernel errors logged with exc_info contribute their code and structured
attributes as exc_* fields.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from contract_kernel.exceptions import LandContractError

CONTEXT_FIELDS = (
    "correlation_id",
    "operation",
    "contract_id",
    "actor_id",
    "idempotency_key",
)

_LOGGER_PREFIX = "contract_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"contract_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name}") from None


class LogContext:
    """Operation-scoped log fields, held in contextvars (thread and task safe)."""

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields.  None values leave the field unchanged."""
        for name, value in fields.items():
            var = _var(name)
            if value is not None:
                var.set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Non-None context fields, in CONTEXT_FIELDS order."""
        return {
            name: value
            for name in CONTEXT_FIELDS
            if (value := _context_vars[name].get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """
        Context manager: set fields on entry, restore the previous values on exit.

        Usage:
            with LogContext.bind(correlation_id=str(uuid4()), operation="liquidate_contract"):
                ...
        """
        for name in fields:
            _var(name)
        return _BoundContext(fields)


class _BoundContext:

    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[str, Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                self._tokens.append((name, _context_vars[name].set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for name, token in reversed(self._tokens):
            _context_vars[name].reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, LandContractError):
        fields["exc_code"] = exc.code
        for key, value in vars(exc).items():
            if not key.startswith("_"):
                fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        # extra= fields; bound context wins on a name clash
        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the contract_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the contract_kernel logger.  Idempotent."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(h)


def reset_logging() -> None:
    """Remove the JSON handlers and allow configure_logging again. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    for h in list(kernel_logger.handlers):
        if isinstance(h.formatter, StructuredFormatter):
            kernel_logger.removeHandler(h)
    kernel_logger.setLevel(logging.WARNING)
