"""
EntryReference -- closed tagged union of business-event references.

A journal entry or cost layer may point back at the business event that
produced it.  The set of kinds is closed; the identifier is opaque to the
kernel.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ReferenceKind(str, Enum):
    """Known originators of ledger and inventory records."""

    SALE = "sale"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    MANUAL_ENTRY = "manual_entry"


@dataclass(frozen=True, slots=True)
class EntryReference:
    """Reference to the business event behind an entry or layer."""

    kind: ReferenceKind
    ref_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ReferenceKind):
            object.__setattr__(self, "kind", ReferenceKind(self.kind))
        if not self.ref_id:
            raise ValueError("EntryReference requires a non-empty ref_id")

    @classmethod
    def sale(cls, sale_id: str) -> EntryReference:
        return cls(ReferenceKind.SALE, str(sale_id))

    @classmethod
    def purchase(cls, purchase_id: str) -> EntryReference:
        return cls(ReferenceKind.PURCHASE, str(purchase_id))

    @classmethod
    def adjustment(cls, adjustment_id: str) -> EntryReference:
        return cls(ReferenceKind.ADJUSTMENT, str(adjustment_id))

    @classmethod
    def transfer(cls, transfer_id: str) -> EntryReference:
        return cls(ReferenceKind.TRANSFER, str(transfer_id))

    @classmethod
    def manual(cls, entry_key: str) -> EntryReference:
        return cls(ReferenceKind.MANUAL_ENTRY, str(entry_key))

    @classmethod
    def from_columns(cls, kind: str | None, ref_id: str | None) -> EntryReference | None:
        """Rebuild from the two persisted columns (both NULL means no reference)."""
        if kind is None or ref_id is None:
            return None
        return cls(ReferenceKind(kind), ref_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.ref_id}"
