"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.fifo_costing import FIFOCostingEngine
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.sequence_service import SequenceCounter, SequenceService
from ledger_kernel.services.unit_of_work import UnitOfWork, translate_concurrency_error

__all__ = [
    "AuditOutbox",
    "ChartOfAccountsService",
    "FIFOCostingEngine",
    "LedgerService",
    "SequenceCounter",
    "SequenceService",
    "UnitOfWork",
    "translate_concurrency_error",
]
