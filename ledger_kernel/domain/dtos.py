"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the service boundary:
    LineSpec (posting input), JournalLineRecord / JournalEntryRecord
    (posted output), AccountRecord / AccountNode (chart reads) and
    CostLayerRecord (inventory reads).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the service and selector layers.

Invariants enforced:
    - LineSpec carries exactly one positive side and a zero on the other.
    - Records are frozen; callers never receive live ORM objects, so a
      returned entry is a complete snapshot with all of its lines.

Failure modes:
    - InvalidLineError from LineSpec when both or neither side is positive,
      or either side is negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.domain.references import EntryReference
from ledger_kernel.exceptions import InvalidLineError

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.cost_layer import CostLayer as CostLayerModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


class EntryStatus(str, Enum):
    """
    Status of a journal entry.

    Contract:
        POSTED is the only initial state (reached by create_entry);
        VOIDED is terminal (reached by void_entry).  No other transitions.
    """

    POSTED = "posted"
    VOIDED = "voided"


@dataclass(frozen=True, slots=True)
class LineSpec:
    """
    One requested journal line: an account code and a debit or a credit.

    Use the ``debit`` / ``credit`` factories at call sites.
    """

    account_code: str
    debit: MoneyAmount
    credit: MoneyAmount
    memo: str | None = None

    def __post_init__(self) -> None:
        debit, credit = self.debit.minor, self.credit.minor
        if debit < 0 or credit < 0 or (debit > 0) == (credit > 0):
            raise InvalidLineError(self.account_code, debit, credit)

    @classmethod
    def debit_line(cls, account_code: str, amount: MoneyAmount, memo: str | None = None) -> LineSpec:
        return cls(account_code, amount, MoneyAmount.zero(), memo)

    @classmethod
    def credit_line(cls, account_code: str, amount: MoneyAmount, memo: str | None = None) -> LineSpec:
        return cls(account_code, MoneyAmount.zero(), amount, memo)

    @property
    def is_debit(self) -> bool:
        return self.debit.is_positive

    def swapped(self) -> LineSpec:
        """The same line with debit and credit exchanged."""
        return LineSpec(self.account_code, self.credit, self.debit, self.memo)


@dataclass(frozen=True, slots=True)
class JournalLineRecord:
    """A persisted journal line."""

    line_id: UUID
    line_seq: int
    account_code: str
    debit: MoneyAmount
    credit: MoneyAmount
    memo: str | None

    @property
    def signed_amount(self) -> MoneyAmount:
        """Debits positive, credits negative."""
        return self.debit.subtract(self.credit)

    def as_spec(self) -> LineSpec:
        return LineSpec(self.account_code, self.debit, self.credit, self.memo)


@dataclass(frozen=True, slots=True)
class JournalEntryRecord:
    """
    Immutable snapshot of a journal entry and all of its lines.
    """

    entry_id: UUID
    tenant_id: str
    entry_number: int
    entry_date: date
    description: str
    reference: EntryReference | None
    location_id: str | None
    status: EntryStatus
    voided_at: datetime | None
    void_reason: str | None
    reversed_by_id: UUID | None
    reversal_of_id: UUID | None
    lines: tuple[JournalLineRecord, ...]

    @property
    def voided(self) -> bool:
        return self.status == EntryStatus.VOIDED

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> MoneyAmount:
        return MoneyAmount.sum_of(line.debit for line in self.lines)

    @property
    def total_credits(self) -> MoneyAmount:
        return MoneyAmount.sum_of(line.credit for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def to_audit_dict(self) -> dict:
        return {
            "entry_number": self.entry_number,
            "entry_date": self.entry_date.isoformat(),
            "description": self.description,
            "reference": str(self.reference) if self.reference else None,
            "status": self.status.value,
            "reversed_by_id": str(self.reversed_by_id) if self.reversed_by_id else None,
            "reversal_of_id": str(self.reversal_of_id) if self.reversal_of_id else None,
            "lines": [
                {
                    "account_code": line.account_code,
                    "debit": line.debit.minor,
                    "credit": line.credit.minor,
                }
                for line in self.lines
            ],
        }

    @classmethod
    def from_model(cls, entry: JournalEntryModel) -> JournalEntryRecord:
        lines = tuple(
            JournalLineRecord(
                line_id=line.id,
                line_seq=line.line_seq,
                account_code=line.account.code,
                debit=MoneyAmount(line.debit),
                credit=MoneyAmount(line.credit),
                memo=line.memo,
            )
            for line in sorted(entry.lines, key=lambda ln: ln.line_seq)
        )
        return cls(
            entry_id=entry.id,
            tenant_id=entry.tenant_id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            description=entry.description,
            reference=EntryReference.from_columns(entry.reference_kind, entry.reference_id),
            location_id=entry.location_id,
            status=EntryStatus.VOIDED if entry.is_voided else EntryStatus.POSTED,
            voided_at=entry.voided_at,
            void_reason=entry.void_reason,
            reversed_by_id=entry.reversed_by_id,
            reversal_of_id=entry.reversal_of_id,
            lines=lines,
        )


@dataclass(frozen=True, slots=True)
class AccountRecord:
    """Read-only view of a chart-of-accounts entry."""

    account_id: UUID
    tenant_id: str
    code: str
    name: str
    account_type: str
    normal_balance: str
    parent_code: str | None
    is_active: bool

    def to_audit_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "parent_code": self.parent_code,
            "is_active": self.is_active,
        }

    @classmethod
    def from_model(cls, account: AccountModel) -> AccountRecord:
        return cls(
            account_id=account.id,
            tenant_id=account.tenant_id,
            code=account.code,
            name=account.name,
            account_type=account.account_type.value
            if isinstance(account.account_type, Enum)
            else account.account_type,
            normal_balance=account.normal_balance.value
            if isinstance(account.normal_balance, Enum)
            else account.normal_balance,
            parent_code=account.parent_code,
            is_active=account.is_active,
        )


@dataclass(frozen=True, slots=True)
class AccountNode:
    """One node of the chart-of-accounts tree."""

    account: AccountRecord
    children: tuple[AccountNode, ...] = ()

    def walk(self):
        """Depth-first iteration over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True, slots=True)
class CostLayerRecord:
    """Read-only view of a FIFO cost layer."""

    layer_id: UUID
    tenant_id: str
    product_id: str
    location_id: str
    layer_seq: int
    original_quantity: int
    quantity_remaining: int
    unit_cost: MoneyAmount
    received_at: datetime
    source: EntryReference | None

    @property
    def remaining_value(self) -> MoneyAmount:
        return self.unit_cost.multiply_by_integer(self.quantity_remaining)

    @property
    def is_depleted(self) -> bool:
        return self.quantity_remaining == 0

    @classmethod
    def from_model(cls, layer: CostLayerModel) -> CostLayerRecord:
        return cls(
            layer_id=layer.id,
            tenant_id=layer.tenant_id,
            product_id=layer.product_id,
            location_id=layer.location_id,
            layer_seq=layer.layer_seq,
            original_quantity=layer.original_quantity,
            quantity_remaining=layer.quantity_remaining,
            unit_cost=MoneyAmount(layer.unit_cost),
            received_at=layer.received_at,
            source=EntryReference.from_columns(layer.source_kind, layer.source_id),
        )
