"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines -- the
    single source of financial truth in this system.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - (tenant_id, entry_number) is unique; numbers come from SequenceService.
    - Every line has exactly one positive side and a zero on the other
      (CHECK constraint ck_journal_line_one_side).
    - Entries are immutable after insert except for the void fields
      (is_voided, voided_at, void_reason, reversed_by_id); lines are
      immutable outright (ORM listeners in db/immutability.py).
    - Optimistic concurrency: version_id is bumped on every UPDATE, so two
      sessions voiding the same entry cannot both succeed.

Failure modes:
    - IntegrityError on duplicate (tenant_id, entry_number).
    - ImmutabilityViolationError on UPDATE/DELETE outside the void fields.
    - StaleDataError (translated to OptimisticLockError) on a lost update.

Audit relevance:
    JournalEntry and JournalLine rows are the authoritative financial record.
    A voided entry stays in place, linked to its reversing entry; nothing is
    ever deleted.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntry(TenantScopedBase):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Contract:
        An entry is inserted together with all of its lines in one flush.
        The only permitted mutation afterwards is the one-way void
        transition performed by LedgerService.void_entry.

    Guarantees:
        - entry_number is unique and monotonically increasing per tenant.
        - A voided entry always carries reversed_by_id; a reversing entry
          always carries reversal_of_id.

    Non-goals:
        - Balance is not checked at the ORM level; LedgerService validates
          it before the entry is built.  is_balanced is a read-side check.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number", name="uq_journal_tenant_number"),
        Index("idx_journal_tenant_date", "tenant_id", "entry_date"),
        Index("idx_journal_reference", "tenant_id", "reference_kind", "reference_id"),
    )

    entry_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    # Closed reference union, stored as (kind, opaque id)
    reference_kind: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    reference_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Opaque branch key; no access control is applied to it here
    location_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    # Void fields -- the only mutable part of a posted entry
    is_voided: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    void_reason: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    reversed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on reversing entries only
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version_id}

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="save-update, merge",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    def __repr__(self) -> str:
        state = "voided" if self.is_voided else "posted"
        return f"<JournalEntry {self.tenant_id}#{self.entry_number} {state}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> int:
        return sum(line.debit for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class JournalLine(TenantScopedBase):
    """
    Individual debit or credit line within a journal entry.

    Contract:
        Exactly one of debit/credit is positive, the other is zero.  Amounts
        are integer minor units.  Lines are never updated or deleted.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_journal_line_one_side",
        ),
        UniqueConstraint("entry_id", "line_seq", name="uq_journal_line_seq"),
        Index("idx_line_account", "account_id"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    credit: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # Line sequence within entry (for deterministic ordering)
    line_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    memo: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    entry: Mapped["JournalEntry"] = relationship(
        back_populates="lines",
    )

    account: Mapped["Account"] = relationship(
        back_populates="journal_lines",
        lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<JournalLine #{self.line_seq} Dr {self.debit} Cr {self.credit}>"

    @property
    def signed_amount(self) -> int:
        """Debits positive, credits negative."""
        return self.debit - self.credit
