"""
Audit -- records reported to the external AuditRecorder.

Responsibility:
    Defines AuditRecord (what the kernel reports after a successful
    mutation), the AuditRecorder protocol it is reported to, and two
    shipped recorders: InMemoryAuditRecorder (tests, embedding) and
    LoggingAuditRecorder (structured log sink).

Architecture position:
    Kernel > Domain.  Storage of audit records is an external concern;
    the kernel only produces them.

Invariants enforced:
    - Records are produced only for committed mutations (dispatch happens
      after commit, see services/unit_of_work.py).
    - A recorder failure is reported to a failure handler; it is never
      dropped and never undoes the committed mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Protocol, runtime_checkable

from ledger_kernel.logging_config import get_logger


class AuditAction(str, Enum):
    """Mutations reported to the audit recorder."""

    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_REACTIVATED = "account_reactivated"
    ACCOUNT_REPARENTED = "account_reparented"
    ENTRY_POSTED = "entry_posted"
    ENTRY_VOIDED = "entry_voided"
    LAYER_CREATED = "layer_created"
    LAYERS_CONSUMED = "layers_consumed"


def _freeze(state: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    return MappingProxyType(dict(state)) if state is not None else None


@dataclass(frozen=True)
class AuditRecord:
    """
    One audited mutation:
    (entity_type, entity_id, action, before_state, after_state, actor, timestamp).
    """

    tenant_id: str
    entity_type: str
    entity_id: str
    action: AuditAction
    before_state: Mapping[str, Any] | None
    after_state: Mapping[str, Any] | None
    actor: str
    timestamp: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "before_state", _freeze(self.before_state))
        object.__setattr__(self, "after_state", _freeze(self.after_state))


@runtime_checkable
class AuditRecorder(Protocol):
    """External collaborator that stores audit records."""

    def record(self, record: AuditRecord) -> None:
        ...


@dataclass(frozen=True)
class AuditFailure:
    """A record the recorder could not accept, with the reason."""

    record: AuditRecord
    error: Exception


class InMemoryAuditRecorder:
    """Keeps records in a list.  Suitable for tests and single-process embedding."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> list[AuditAction]:
        return [r.action for r in self.records]

    def for_entity(self, entity_type: str, entity_id: str) -> list[AuditRecord]:
        return [
            r for r in self.records
            if r.entity_type == entity_type and r.entity_id == entity_id
        ]


class LoggingAuditRecorder:
    """Writes each record as a structured log line under ledger_kernel.audit."""

    def __init__(self) -> None:
        self._logger = get_logger("audit")

    def record(self, record: AuditRecord) -> None:
        self._logger.info(
            "audit_record",
            extra={
                "audit_tenant_id": record.tenant_id,
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "action": record.action.value,
                "before_state": dict(record.before_state) if record.before_state else None,
                "after_state": dict(record.after_state) if record.after_state else None,
                "actor": record.actor,
                "timestamp": record.timestamp,
            },
        )


@dataclass
class AuditFailureLog:
    """Default failure channel: logs at ERROR and keeps the failures for inspection."""

    failures: list[AuditFailure] = field(default_factory=list)

    def __call__(self, failure: AuditFailure) -> None:
        self.failures.append(failure)
        get_logger("audit").error(
            "audit_record_failed",
            extra={
                "entity_type": failure.record.entity_type,
                "entity_id": failure.record.entity_id,
                "action": failure.record.action.value,
                "error_type": type(failure.error).__name__,
                "error": str(failure.error),
            },
        )
