"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the tenant's Chart of Accounts -- the
    target of every journal line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, code) is unique.
    - account_type and normal_balance never change once the account exists
      (db/immutability.py).
    - Accounts referenced by journal lines are never deleted; they are
      deactivated instead.
    - parent_code is a key reference into the same tenant's chart, not an
      object pointer.  Acyclicity is checked by ChartOfAccountsService.
"""

from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedBase

if TYPE_CHECKING:
    from ledger_kernel.models.journal import JournalLine


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Side on which an account's balance is positive."""

    DEBIT = "debit"
    CREDIT = "credit"


class Account(TenantScopedBase):
    """
    Chart of Accounts entry -- a single node in the tenant's ledger structure.

    Contract:
        code is unique within the tenant.  normal_balance is derived from
        account_type at creation and never changes.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_parent", "tenant_id", "parent_code"),
        Index("idx_account_tenant_active", "tenant_id", "is_active"),
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(
        String(20),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        String(10),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Parent account code within the same tenant (NULL = root)
    parent_code: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    journal_lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.tenant_id}/{self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
