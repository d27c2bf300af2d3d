"""
Module: ledger_kernel.models.operation
Responsibility: Idempotency ledger for orchestrated business operations.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, kind, natural_key) is unique.  A second insert for the
      same key fails with IntegrityError, which the unit of work reports as
      a concurrency conflict; the caller's retry then replays.
    - The row is written in the same transaction as the operation's
      stock movements and entry, so it exists if and only if that
      operation committed.
    - entry_id is NULL for operations that moved stock without any money
      amount (transfers, zero-cost receipts and write-offs).  Replays of
      those are rebuilt from the layer and consumption rows.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TenantScopedBase, UUIDString


class OperationRecord(TenantScopedBase):
    """A committed orchestrated operation, keyed by the caller's natural key."""

    __tablename__ = "operation_records"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "kind", "natural_key", name="uq_operation_tenant_kind_key"
        ),
        Index("idx_operation_entry", "entry_id"),
    )

    # sale, purchase, sale_reversal, income, expense, write_off, transfer
    kind: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )

    natural_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<OperationRecord {self.tenant_id}/{self.kind}:{self.natural_key}>"
