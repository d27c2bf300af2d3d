"""
Module: ledger_kernel.logging_config
Responsibility: One JSON object per log line, carrying the tenant, actor and
    operation the line was emitted under.
Architecture position: Kernel root.  Imported by every service; imports
    nothing from the kernel.

Every record is emitted with:
    ts, level, logger, message
    the fields bound through LogContext.bind() at the time of the call
    anything passed via extra=
    exc_* fields when a LedgerKernelError is attached (code, quantities,
        account codes ...), plus the formatted traceback
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

NAMESPACE = "ledger_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound_fields: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_fields", default=_EMPTY)


class LogContext:
    """
    Operation-scoped fields merged into every record.

    Held in a single ContextVar so a nested bind() shadows outer values and
    restores them on exit, per thread and per task.
    """

    FIELDS = frozenset(
        {
            "correlation_id",
            "tenant_id",
            "location_id",
            "actor_id",
            "entry_id",
            "operation_key",
        }
    )

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[Mapping[str, str]]:
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise KeyError(f"Unknown log context field(s): {sorted(unknown)}")

        merged = dict(_bound_fields.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _bound_fields.set(MappingProxyType(merged))
        try:
            yield _bound_fields.get()
        finally:
            _bound_fields.reset(token)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound_fields.get())

    @classmethod
    def clear(cls) -> None:
        _bound_fields.set(_EMPTY)


# Attributes every LogRecord carries; anything else on a record came from extra=.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single line of JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``ledger_kernel.<name>``."""
    return logging.getLogger(f"{NAMESPACE}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``ledger_kernel`` logger.

    Only the first call has an effect until reset_logging() is called.
    The namespace does not propagate to the root logger.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        namespace_logger = logging.getLogger(NAMESPACE)
        namespace_logger.setLevel(level)
        namespace_logger.propagate = False
        namespace_logger.addHandler(target)
        _installed_handler = target


def reset_logging() -> None:
    """Detach the installed handler (tests)."""
    global _installed_handler
    with _state_lock:
        namespace_logger = logging.getLogger(NAMESPACE)
        if _installed_handler is not None:
            namespace_logger.removeHandler(_installed_handler)
            _installed_handler = None
        namespace_logger.setLevel(logging.WARNING)
