"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    write-side service.  A service receives a SQLAlchemy ``Session`` and
    uses ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The caller
      (UnitOfWork, TransactionOrchestrator or a test) owns both.
    - Audit records are buffered in the AuditOutbox, never sent directly
      to a recorder, so nothing is reported for a rolled-back mutation.
"""

from abc import ABC
from typing import Any, Mapping

from sqlalchemy.orm import Session

from ledger_kernel.domain.audit import AuditAction, AuditRecord
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.services.audit_outbox import AuditOutbox


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide report queries -- those belong in selectors/.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_outbox: AuditOutbox | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._outbox = audit_outbox if audit_outbox is not None else AuditOutbox()

    @property
    def audit_outbox(self) -> AuditOutbox:
        return self._outbox

    def _audit(
        self,
        ctx: OperationContext,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> None:
        self._outbox.add(
            AuditRecord(
                tenant_id=ctx.tenant_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                before_state=before,
                after_state=after,
                actor=ctx.actor_id,
                timestamp=self._clock.now(),
            )
        )
