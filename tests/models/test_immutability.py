"""
Tests for ORM-level immutability of posted records.

Verifies that a flush which would rewrite history is refused before any
SQL reaches the database:
- journal lines and posted entry fields are frozen; delete is refused
- voided entries are terminal
- cost layers only ever decrease; delete is refused
- accounts keep code and type; referenced accounts cannot be deleted
"""

from datetime import date

import pytest
from sqlalchemy import select

from ledger_kernel.db.immutability import (
    immutability_listeners_registered,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.models import Account, CostLayer, JournalEntry, JournalLine, LayerConsumption

DAY = date(2024, 2, 1)


@pytest.fixture
def posted(ledger, ctx, standard_accounts, session):
    record = ledger.create_entry(
        ctx,
        DAY,
        "rent",
        [
            LineSpec.debit_line("6100-Rent", MoneyAmount(1000)),
            LineSpec.credit_line("1000-Cash", MoneyAmount(1000)),
        ],
    )
    return session.get(JournalEntry, record.entry_id)


class TestRegistration:
    def test_registered_and_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()
        assert immutability_listeners_registered()

    def test_guards_can_be_lifted_and_restored(self, posted, session):
        unregister_immutability_listeners()
        try:
            assert not immutability_listeners_registered()
            posted.lines[0].memo = "annotated while unguarded"
            session.flush()
        finally:
            register_immutability_listeners()

        assert immutability_listeners_registered()
        posted.lines[0].memo = "again"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestJournalImmutability:
    def test_line_amount_cannot_change(self, posted, session):
        line = posted.lines[0]
        line.debit = 999

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "JournalLine"

    def test_line_cannot_be_deleted(self, posted, session):
        session.delete(posted.lines[0])
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_entry_description_cannot_change(self, posted, session):
        posted.description = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_entry_cannot_be_deleted(self, posted, session):
        session.delete(posted)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_void_fields_alone_are_refused(self, posted, session):
        posted.void_reason = "sneaky"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_voided_entry_is_terminal(self, posted, ledger, ctx, session):
        ledger.void_entry(ctx, posted.id, "mistake")
        posted.void_reason = "a different story"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_bookkeeping_fields_may_change(self, posted, session):
        posted.updated_by = "reviewer"
        session.flush()


class TestCostLayerImmutability:
    @pytest.fixture
    def layer(self, fifo, ctx, session):
        record = fifo.add_layer(ctx, "P", "L", 10, MoneyAmount(500))
        return session.get(CostLayer, record.layer_id)

    def test_quantity_cannot_increase(self, layer, session):
        layer.quantity_remaining = 11
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unit_cost_cannot_change(self, layer, session):
        layer.unit_cost = 1
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_layer_cannot_be_deleted(self, layer, session):
        session.delete(layer)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_decrease_is_allowed(self, layer, session):
        layer.quantity_remaining = 4
        session.flush()

    def test_consumption_rows_are_frozen(self, fifo, ctx, layer, session):
        fifo.consume_layers(ctx, "P", "L", 2)
        row = session.execute(select(LayerConsumption)).scalars().one()
        row.quantity = 1

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAccountImmutability:
    def test_code_cannot_change(self, standard_accounts, session):
        account = session.get(Account, standard_accounts["1000-Cash"].account_id)
        account.code = "1001-Cash"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_rename_is_allowed(self, standard_accounts, session):
        account = session.get(Account, standard_accounts["1000-Cash"].account_id)
        account.name = "Cash on Hand"
        session.flush()

    def test_referenced_account_cannot_be_deleted(self, posted, session):
        rent_line = session.execute(
            select(JournalLine).where(JournalLine.entry_id == posted.id).order_by(JournalLine.line_seq)
        ).scalars().first()
        session.delete(rent_line.account)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unreferenced_account_can_be_deleted(self, standard_accounts, session):
        session.delete(session.get(Account, standard_accounts["2000-Payable"].account_id))
        session.flush()
