"""
Ledger services - business operations composed over the ledger kernel.

Each operation is one transaction and is idempotent on its natural key.
"""

from ledger_services.transaction_orchestrator import (
    OperationKind,
    PostingResult,
    PurchaseAccounts,
    PurchaseLineItem,
    PurchaseResult,
    SaleAccounts,
    SaleLineItem,
    SaleResult,
    SaleReversalResult,
    TransactionOrchestrator,
    TransferResult,
    WriteOffAccounts,
    WriteOffResult,
)

__all__ = [
    "OperationKind",
    "PostingResult",
    "PurchaseAccounts",
    "PurchaseLineItem",
    "PurchaseResult",
    "SaleAccounts",
    "SaleLineItem",
    "SaleResult",
    "SaleReversalResult",
    "TransactionOrchestrator",
    "TransferResult",
    "WriteOffAccounts",
    "WriteOffResult",
]
