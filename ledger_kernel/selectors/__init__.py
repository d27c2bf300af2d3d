"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.inventory_selector import (
    ConsumptionRow,
    InventorySelector,
    InventoryValuationRow,
)
from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    AccountLedger,
    AccountLedgerLine,
    LedgerSelector,
    TrialBalanceRow,
)

__all__ = [
    "AccountBalance",
    "AccountLedger",
    "AccountLedgerLine",
    "ConsumptionRow",
    "InventorySelector",
    "InventoryValuationRow",
    "LedgerSelector",
    "TrialBalanceRow",
]
