"""
Pure domain layer.

Value objects, DTOs and calculations with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.  Time comes from an
injected Clock.
"""

from ledger_kernel.domain.audit import (
    AuditAction,
    AuditFailure,
    AuditFailureLog,
    AuditRecord,
    AuditRecorder,
    InMemoryAuditRecorder,
    LoggingAuditRecorder,
)
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.dtos import (
    AccountNode,
    AccountRecord,
    CostLayerRecord,
    EntryStatus,
    JournalEntryRecord,
    JournalLineRecord,
    LineSpec,
)
from ledger_kernel.domain.fifo import (
    AverageCost,
    ConsumptionResult,
    ConsumptionStep,
    LayerPosition,
    plan_fifo_consumption,
)
from ledger_kernel.domain.money import MoneyAmount, format_major
from ledger_kernel.domain.references import EntryReference, ReferenceKind

__all__ = [
    # Money
    "MoneyAmount",
    "format_major",
    # Context and references
    "OperationContext",
    "EntryReference",
    "ReferenceKind",
    # DTOs
    "AccountNode",
    "AccountRecord",
    "CostLayerRecord",
    "EntryStatus",
    "JournalEntryRecord",
    "JournalLineRecord",
    "LineSpec",
    # FIFO
    "AverageCost",
    "ConsumptionResult",
    "ConsumptionStep",
    "LayerPosition",
    "plan_fifo_consumption",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Audit
    "AuditAction",
    "AuditFailure",
    "AuditFailureLog",
    "AuditRecord",
    "AuditRecorder",
    "InMemoryAuditRecorder",
    "LoggingAuditRecorder",
]
