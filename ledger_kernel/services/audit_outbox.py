"""
AuditOutbox -- buffer of audit records awaiting commit.

Services append an AuditRecord for every mutation they flush.  The records
stay in the outbox until the owning unit of work commits; only then are
they handed to the AuditRecorder.  A rollback discards them, so a recorder
never hears about a mutation that did not happen.
"""

from collections.abc import Callable

from ledger_kernel.domain.audit import AuditFailure, AuditRecord, AuditRecorder
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.audit_outbox")


class AuditOutbox:
    """Pending audit records for one transaction."""

    def __init__(self) -> None:
        self._pending: list[AuditRecord] = []

    def add(self, record: AuditRecord) -> None:
        self._pending.append(record)

    @property
    def pending(self) -> tuple[AuditRecord, ...]:
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def discard(self) -> int:
        """Drop pending records after a rollback.  Returns how many were dropped."""
        count = len(self._pending)
        self._pending.clear()
        return count

    def dispatch(
        self,
        recorder: AuditRecorder,
        on_failure: Callable[[AuditFailure], None],
    ) -> int:
        """
        Hand every pending record to the recorder, in order.

        A record the recorder rejects is passed to ``on_failure`` and
        dispatch continues with the next one.  An error raised by
        ``on_failure`` itself is logged at ERROR and does not stop dispatch;
        the transaction has already committed.  Returns the number of
        records the recorder accepted.
        """
        records, self._pending = self._pending, []
        delivered = 0
        for record in records:
            try:
                recorder.record(record)
            except Exception as exc:
                self._report(on_failure, AuditFailure(record=record, error=exc))
                continue
            delivered += 1

        logger.debug(
            "audit_dispatched",
            extra={"delivered": delivered, "failed": len(records) - delivered},
        )
        return delivered

    @staticmethod
    def _report(on_failure: Callable[[AuditFailure], None], failure: AuditFailure) -> None:
        try:
            on_failure(failure)
        except Exception:
            logger.error(
                "audit_failure_handler_failed",
                exc_info=True,
                extra={
                    "entity_type": failure.record.entity_type,
                    "entity_id": failure.record.entity_id,
                    "action": failure.record.action.value,
                    "error_type": type(failure.error).__name__,
                    "error": str(failure.error),
                },
            )
