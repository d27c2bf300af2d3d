"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.cost_layer import CostLayer, LayerConsumption
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.operation import OperationRecord

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "JournalEntry",
    "JournalLine",
    "CostLayer",
    "LayerConsumption",
    "OperationRecord",
]
