"""
Ledger Kernel - double-entry bookkeeping and FIFO inventory costing.

A multi-tenant, append-only ledger with:
- Integer minor-unit money (no floats anywhere)
- Balanced, sequentially numbered journal entries
- Void by reversal (posted rows are never rewritten or deleted)
- FIFO cost layers with all-or-nothing consumption
- Audit dispatch after commit
"""

__version__ = "0.1.0"
