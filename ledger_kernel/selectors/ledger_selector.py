"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- trial balance, account balance,
    account ledger with running balance, and the global debit/credit check.
Architecture position: Kernel > Selectors.  May import from models/,
    domain DTOs and selectors/base.py.

Invariants enforced:
    - No stored balances.  Every figure is summed from journal lines at
      query time.
    - Voided entries are counted together with their reversing entries.
      The pair nets to zero from the void date onward, while a balance as
      of an earlier date still shows the original posting.
    - total_debits_credits() returns equal totals for any consistent ledger.

Failure modes:
    - Returns zero balances or empty lists when nothing is posted.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.references import EntryReference
from ledger_kernel.models.account import Account, NormalBalance
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.base import BaseSelector


def _plain(value) -> str:
    return value.value if isinstance(value, Enum) else value


def _normal_signed(normal_balance: str, debit_total: int, credit_total: int) -> int:
    if _plain(normal_balance) == NormalBalance.DEBIT.value:
        return debit_total - credit_total
    return credit_total - debit_total


@dataclass(frozen=True)
class TrialBalanceRow:
    """A single row in a trial balance report."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    normal_balance: str
    debit_total: int
    credit_total: int

    @property
    def net(self) -> int:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total

    @property
    def balance(self) -> int:
        """Balance signed by the account's normal side."""
        return _normal_signed(self.normal_balance, self.debit_total, self.credit_total)


@dataclass(frozen=True)
class AccountBalance:
    """Debit and credit totals for one account."""

    account_code: str
    normal_balance: str
    debit_total: int
    credit_total: int
    line_count: int

    @property
    def balance(self) -> int:
        return _normal_signed(self.normal_balance, self.debit_total, self.credit_total)


@dataclass(frozen=True)
class AccountLedgerLine:
    """One line of an account ledger, with the balance after it."""

    entry_id: UUID
    entry_number: int
    entry_date: date
    description: str
    reference: EntryReference | None
    line_id: UUID
    debit: int
    credit: int
    memo: str | None
    running_balance: int
    entry_voided: bool
    is_reversal: bool


@dataclass(frozen=True)
class AccountLedger:
    """Ordered ledger lines for one account over a date range."""

    account_code: str
    account_name: str
    normal_balance: str
    date_from: date | None
    date_to: date | None
    opening_balance: int
    lines: tuple[AccountLedgerLine, ...]

    @property
    def closing_balance(self) -> int:
        if self.lines:
            return self.lines[-1].running_balance
        return self.opening_balance


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries -- the authoritative balance computation.

    Contract:
        All queries are scoped to one tenant and optionally cut off at
        entry_date <= as_of.  Results are ordered by account code, or by
        (entry_date, entry_number, line_seq) for ledgers.
    """

    @staticmethod
    def _sums():
        debit_sum = func.coalesce(func.sum(JournalLine.debit), 0).label("debit_total")
        credit_sum = func.coalesce(func.sum(JournalLine.credit), 0).label("credit_total")
        return debit_sum, credit_sum

    def trial_balance(self, tenant_id: str, as_of: date | None = None) -> list[TrialBalanceRow]:
        """
        Debit and credit totals per account as of a date.

        Postconditions: one row per account with at least one line, ordered
            by account code.  Sum of debit_total equals sum of credit_total.
        """
        debit_sum, credit_sum = self._sums()

        query = (
            select(
                Account.id.label("account_id"),
                Account.code.label("account_code"),
                Account.name.label("account_name"),
                Account.account_type,
                Account.normal_balance,
                debit_sum,
                credit_sum,
            )
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
            .join(Account, JournalLine.account_id == Account.id)
            .where(JournalEntry.tenant_id == tenant_id)
            .group_by(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
            )
            .order_by(Account.code)
        )

        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)

        return [
            TrialBalanceRow(
                account_id=row.account_id,
                account_code=row.account_code,
                account_name=row.account_name,
                account_type=_plain(row.account_type),
                normal_balance=_plain(row.normal_balance),
                debit_total=int(row.debit_total),
                credit_total=int(row.credit_total),
            )
            for row in self.session.execute(query).all()
        ]

    def account_balance(
        self,
        tenant_id: str,
        account_code: str,
        as_of: date | None = None,
    ) -> AccountBalance | None:
        """
        Totals for one account, or None if the account does not exist.

        An existing account with no lines yields zero totals.
        """
        account = self.session.execute(
            select(Account.id, Account.normal_balance).where(
                Account.tenant_id == tenant_id,
                Account.code == account_code,
            )
        ).one_or_none()
        if account is None:
            return None

        debit_sum, credit_sum = self._sums()
        query = (
            select(debit_sum, credit_sum, func.count(JournalLine.id).label("line_count"))
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalLine.account_id == account.id,
            )
        )
        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)

        row = self.session.execute(query).one()
        return AccountBalance(
            account_code=account_code,
            normal_balance=_plain(account.normal_balance),
            debit_total=int(row.debit_total),
            credit_total=int(row.credit_total),
            line_count=int(row.line_count),
        )

    def account_ledger(
        self,
        tenant_id: str,
        account_code: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> AccountLedger | None:
        """
        Ordered lines for one account over [date_from, date_to] with a
        running balance signed by the account's normal side.

        The opening balance covers everything dated before date_from.
        Returns None if the account does not exist.
        """
        account = self.session.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.code == account_code,
            )
        ).scalar_one_or_none()
        if account is None:
            return None
        normal = _plain(account.normal_balance)

        opening = 0
        if date_from is not None:
            debit_sum, credit_sum = self._sums()
            row = self.session.execute(
                select(debit_sum, credit_sum)
                .select_from(JournalLine)
                .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
                .where(
                    JournalEntry.tenant_id == tenant_id,
                    JournalLine.account_id == account.id,
                    JournalEntry.entry_date < date_from,
                )
            ).one()
            opening = _normal_signed(normal, int(row.debit_total), int(row.credit_total))

        query = (
            select(JournalLine, JournalEntry)
            .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalLine.account_id == account.id,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.entry_number, JournalLine.line_seq)
        )
        if date_from is not None:
            query = query.where(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            query = query.where(JournalEntry.entry_date <= date_to)

        running = opening
        lines = []
        for line, entry in self.session.execute(query).all():
            running += _normal_signed(normal, line.debit, line.credit)
            lines.append(
                AccountLedgerLine(
                    entry_id=entry.id,
                    entry_number=entry.entry_number,
                    entry_date=entry.entry_date,
                    description=entry.description,
                    reference=EntryReference.from_columns(entry.reference_kind, entry.reference_id),
                    line_id=line.id,
                    debit=line.debit,
                    credit=line.credit,
                    memo=line.memo,
                    running_balance=running,
                    entry_voided=entry.is_voided,
                    is_reversal=entry.reversal_of_id is not None,
                )
            )

        return AccountLedger(
            account_code=account.code,
            account_name=account.name,
            normal_balance=normal,
            date_from=date_from,
            date_to=date_to,
            opening_balance=opening,
            lines=tuple(lines),
        )

    def total_debits_credits(self, tenant_id: str, as_of: date | None = None) -> tuple[int, int]:
        """
        Total debits and credits across all of a tenant's lines.

        The read-side check of the double-entry invariant: both values are
        equal for a consistent ledger.
        """
        debit_sum, credit_sum = self._sums()
        query = (
            select(debit_sum, credit_sum)
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
            .where(JournalEntry.tenant_id == tenant_id)
        )
        if as_of is not None:
            query = query.where(JournalEntry.entry_date <= as_of)

        row = self.session.execute(query).one()
        return int(row.debit_total), int(row.credit_total)

    def unbalanced_entries(self, tenant_id: str) -> list[int]:
        """Entry numbers whose lines do not balance.  Empty for a sound ledger."""
        query = (
            select(JournalEntry.entry_number)
            .join(JournalLine, JournalLine.entry_id == JournalEntry.id)
            .where(JournalEntry.tenant_id == tenant_id)
            .group_by(JournalEntry.id, JournalEntry.entry_number)
            .having(func.sum(JournalLine.debit) != func.sum(JournalLine.credit))
            .order_by(JournalEntry.entry_number)
        )
        return list(self.session.execute(query).scalars().all())
