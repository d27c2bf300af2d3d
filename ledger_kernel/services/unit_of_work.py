"""
UnitOfWork -- one transaction, one audit dispatch.

Responsibility:
    Opens a session for one OperationContext, exposes the kernel services
    bound to it, commits or rolls back as a whole, translates lost-update
    failures into OptimisticLockError, and dispatches buffered audit records
    only after a successful commit.

Architecture position:
    Kernel > Services.  The transaction boundary used by the orchestrator
    and by callers composing kernel services directly.

Invariants enforced:
    - Full commit or full rollback.  Any exception inside the block rolls
      back every flushed change of every service.
    - StaleDataError (version column mismatch) and unique-key
      IntegrityError are surfaced as OptimisticLockError after rollback.
      Nothing is retried here; the caller retries with its natural key.
    - Audit records reach the recorder only after commit.  Recorder
      failures go to on_audit_failure and never undo the commit.

Usage:
    with UnitOfWork(session_factory, ctx) as uow:
        uow.chart.create(ctx, "1000", "Cash", "asset")
        uow.ledger.create_entry(ctx, day, "Opening", lines)
    # committed here; audit dispatched
"""

from __future__ import annotations

import re
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.domain.audit import (
    AuditFailure,
    AuditFailureLog,
    AuditRecorder,
    LoggingAuditRecorder,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.exceptions import OptimisticLockError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.inventory_selector import InventorySelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.fifo_costing import FIFOCostingEngine
from ledger_kernel.services.ledger_service import LedgerService

logger = get_logger("services.unit_of_work")

_PG_UNIQUE_VIOLATION = "23505"
_STALE_TABLE = re.compile(r"table '([\w.]+)'")
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: ([\w]+)\.")


def _unique_violation_table(exc: IntegrityError) -> str | None:
    """Table name of a unique-key violation, or None for other integrity errors."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) == _PG_UNIQUE_VIOLATION:
        diag = getattr(orig, "diag", None)
        return getattr(diag, "table_name", None) or "unknown"
    match = _SQLITE_UNIQUE.search(str(orig))
    if match:
        return match.group(1)
    return None


def translate_concurrency_error(exc: BaseException) -> OptimisticLockError | None:
    """The OptimisticLockError for a lost-update failure, or None if ``exc`` is not one."""
    if isinstance(exc, StaleDataError):
        match = _STALE_TABLE.search(str(exc))
        return OptimisticLockError(match.group(1) if match else "unknown", str(exc))
    if isinstance(exc, IntegrityError):
        table = _unique_violation_table(exc)
        if table is not None:
            return OptimisticLockError(table, str(exc.orig))
    return None


class UnitOfWork:
    """
    Transaction scope for one operation.

    Contract:
        Used as a context manager.  Normal exit commits; an exception rolls
        back and propagates (translated when it is a concurrency failure).
        ``chart``, ``ledger`` and ``fifo`` share the session and the audit
        outbox; ``ledger_selector`` and ``inventory`` read through the
        same session, so they see the operation's own uncommitted writes.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        ctx: OperationContext,
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        on_audit_failure: Callable[[AuditFailure], None] | None = None,
        block_deactivation_with_open_balance: bool = False,
    ):
        self._session_factory = session_factory
        self.ctx = ctx
        self._clock = clock or SystemClock()
        self._recorder = audit_recorder if audit_recorder is not None else LoggingAuditRecorder()
        self._on_audit_failure = on_audit_failure if on_audit_failure is not None else AuditFailureLog()
        self._block_deactivation = block_deactivation_with_open_balance
        self._log_scope = None
        self._finished = False
        self.session: Session | None = None
        self.outbox = AuditOutbox()

    def __enter__(self) -> UnitOfWork:
        self._log_scope = LogContext.bind(**self.ctx.log_fields())
        self._log_scope.__enter__()

        self.session = self._session_factory()
        self.chart = ChartOfAccountsService(
            self.session,
            clock=self._clock,
            audit_outbox=self.outbox,
            block_deactivation_with_open_balance=self._block_deactivation,
        )
        self.ledger = LedgerService(self.session, clock=self._clock, audit_outbox=self.outbox)
        self.fifo = FIFOCostingEngine(self.session, clock=self._clock, audit_outbox=self.outbox)
        self.ledger_selector = LedgerSelector(self.session)
        self.inventory = InventorySelector(self.session)
        return self

    def commit(self) -> None:
        """
        Commit, then dispatch audit records.

        Raises:
            OptimisticLockError: a concurrent writer won; everything was
                rolled back.
        """
        try:
            self.session.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.rollback()
            translated = translate_concurrency_error(exc)
            if translated is None:
                raise
            raise translated from exc

        self._finished = True
        logger.debug("unit_of_work_committed", extra={"audit_records": len(self.outbox)})
        self.outbox.dispatch(self._recorder, self._on_audit_failure)

    def rollback(self) -> None:
        self.session.rollback()
        self._finished = True
        dropped = self.outbox.discard()
        logger.info("unit_of_work_rolled_back", extra={"audit_records_dropped": dropped})

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                if not self._finished:
                    self.commit()
                return False

            if not self._finished:
                self.rollback()
            translated = translate_concurrency_error(exc)
            if translated is not None:
                raise translated from exc
            return False
        finally:
            self.session.close()
            self._log_scope.__exit__(None, None, None)
