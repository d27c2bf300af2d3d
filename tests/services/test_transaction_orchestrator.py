"""
Tests for TransactionOrchestrator -- business operations end to end.

Covers:
- record_income / record_expense: posting and replay on the natural key
- record_purchase: layers and inventory entry in one commit
- record_sale: revenue and COGS lines, all-or-nothing when any line is
  short, replay returns the original consumption
- record_sale_reversal: entry voided, stock returned as new layers at the
  consumed costs, replay, unknown sale, sale voided by other means
- record_stock_write_off, including stock carried at zero cost
- zero-amount sales and reversals commit without a journal entry
- record_stock_transfer: destination layers at the source costs in FIFO
  order, no entry, replay, all-or-nothing on shortage, validation
- audit dispatch after commit, nothing dispatched on rollback, recorder
  failures routed to the failure channel, a failing failure handler logged
"""

from datetime import UTC, date, datetime, timedelta

import pytest

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.domain.references import EntryReference
from ledger_kernel.exceptions import (
    EmptyEntryError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    OperationAlreadyReversedError,
    OperationNotFoundError,
    UnknownAccountError,
)
from ledger_services.transaction_orchestrator import (
    PurchaseLineItem,
    SaleAccounts,
    SaleLineItem,
    TransactionOrchestrator,
)

DAY_1 = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)


def balance(orchestrator, ctx, code):
    with orchestrator.unit_of_work(ctx) as uow:
        return uow.chart.get_balance(ctx, code)


def stock(orchestrator, ctx, product, location="main"):
    with orchestrator.unit_of_work(ctx) as uow:
        return [
            (layer.quantity_remaining, layer.unit_cost.minor)
            for layer in uow.fifo.get_layers(ctx, product, location, include_depleted=True)
        ]


@pytest.fixture
def stocked(orchestrator, ctx, committed_chart, purchase_accounts):
    """Widgets: 10 @ 500 on day 1, 5 @ 600 on day 2."""
    orchestrator.record_purchase(
        ctx, "PO-1", [PurchaseLineItem("widget", 10, MoneyAmount(500))], purchase_accounts, received_at=DAY_1
    )
    orchestrator.record_purchase(
        ctx,
        "PO-2",
        [PurchaseLineItem("widget", 5, MoneyAmount(600))],
        purchase_accounts,
        received_at=DAY_1 + timedelta(days=1),
    )


class TestIncomeAndExpense:
    def test_income(self, orchestrator, ctx, committed_chart):
        result = orchestrator.record_income(ctx, "INC-1", MoneyAmount(15050), "4000-Revenue", "1000-Cash")

        assert not result.replayed
        assert result.entry.reference == EntryReference.manual("INC-1")
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(15050)
        assert balance(orchestrator, ctx, "4000-Revenue") == MoneyAmount(15050)

    def test_income_replay_posts_nothing(self, orchestrator, ctx, committed_chart):
        first = orchestrator.record_income(ctx, "INC-1", MoneyAmount(15050), "4000-Revenue", "1000-Cash")
        again = orchestrator.record_income(ctx, "INC-1", MoneyAmount(15050), "4000-Revenue", "1000-Cash")

        assert again.replayed
        assert again.entry.entry_id == first.entry.entry_id
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(15050)

    def test_expense(self, orchestrator, ctx, committed_chart):
        orchestrator.record_income(ctx, "INC-1", MoneyAmount(10000), "4000-Revenue", "1000-Cash")
        orchestrator.record_expense(ctx, "EXP-1", MoneyAmount(2500), "6100-Rent", "1000-Cash")

        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(7500)
        assert balance(orchestrator, ctx, "6100-Rent") == MoneyAmount(2500)

    def test_same_key_different_kinds_are_independent(self, orchestrator, ctx, committed_chart):
        orchestrator.record_income(ctx, "X-1", MoneyAmount(100), "4000-Revenue", "1000-Cash")
        expense = orchestrator.record_expense(ctx, "X-1", MoneyAmount(40), "6100-Rent", "1000-Cash")

        assert not expense.replayed

    def test_failure_rolls_back_and_allows_retry(self, orchestrator, ctx, committed_chart):
        with pytest.raises(UnknownAccountError):
            orchestrator.record_income(ctx, "INC-9", MoneyAmount(100), "4999-Typo", "1000-Cash")

        result = orchestrator.record_income(ctx, "INC-9", MoneyAmount(100), "4000-Revenue", "1000-Cash")
        assert not result.replayed

    def test_parse_amount(self, orchestrator):
        assert orchestrator.parse_amount("150.50") == MoneyAmount(15050)


class TestPurchase:
    def test_purchase_creates_layers_and_entry(self, orchestrator, ctx, committed_chart, purchase_accounts):
        result = orchestrator.record_purchase(
            ctx,
            "PO-1",
            [
                PurchaseLineItem("widget", 10, MoneyAmount(500)),
                PurchaseLineItem("gadget", 2, MoneyAmount(1250)),
            ],
            purchase_accounts,
            received_at=DAY_1,
        )

        assert result.total_cost == MoneyAmount(7500)
        assert [layer.product_id for layer in result.layers] == ["widget", "gadget"]
        assert result.entry.entry_date == date(2024, 1, 1)
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount(7500)
        assert balance(orchestrator, ctx, "2000-Payable") == MoneyAmount(7500)

    def test_purchase_replay(self, orchestrator, ctx, committed_chart, purchase_accounts):
        items = [PurchaseLineItem("widget", 10, MoneyAmount(500))]
        first = orchestrator.record_purchase(ctx, "PO-1", items, purchase_accounts)
        again = orchestrator.record_purchase(ctx, "PO-1", items, purchase_accounts)

        assert again.replayed
        assert [l.layer_id for l in again.layers] == [l.layer_id for l in first.layers]
        assert again.total_cost == MoneyAmount(5000)
        assert stock(orchestrator, ctx, "widget") == [(10, 500)]

    def test_empty_purchase(self, orchestrator, ctx, committed_chart, purchase_accounts):
        with pytest.raises(EmptyEntryError):
            orchestrator.record_purchase(ctx, "PO-0", [], purchase_accounts)

    def test_zero_cost_receipt_creates_layers_without_entry(
        self, orchestrator, ctx, committed_chart, purchase_accounts
    ):
        result = orchestrator.record_purchase(
            ctx, "PO-free", [PurchaseLineItem("sample", 3, MoneyAmount(0))], purchase_accounts
        )
        again = orchestrator.record_purchase(
            ctx, "PO-free", [PurchaseLineItem("sample", 3, MoneyAmount(0))], purchase_accounts
        )

        assert result.entry is None
        assert result.total_cost == MoneyAmount.zero()
        assert again.replayed
        assert again.entry is None
        assert [l.layer_id for l in again.layers] == [l.layer_id for l in result.layers]
        assert stock(orchestrator, ctx, "sample") == [(3, 0)]
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount.zero()


class TestSale:
    def test_sale_posts_revenue_and_cogs(self, orchestrator, ctx, stocked, sale_accounts):
        result = orchestrator.record_sale(
            ctx, "S-1", [SaleLineItem("widget", 12, MoneyAmount(900))], sale_accounts, sale_date=date(2024, 1, 5)
        )

        assert result.revenue == MoneyAmount(10800)
        assert result.cost_of_goods_sold == MoneyAmount(6200)
        assert [(s.quantity, s.unit_cost.minor) for s in result.consumptions[0].steps] == [(10, 500), (2, 600)]
        assert result.entry.is_balanced
        assert result.entry.entry_date == date(2024, 1, 5)

        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(10800)
        assert balance(orchestrator, ctx, "4000-Revenue") == MoneyAmount(10800)
        assert balance(orchestrator, ctx, "5000-COGS") == MoneyAmount(6200)
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount(8000 - 6200)
        assert stock(orchestrator, ctx, "widget") == [(0, 500), (3, 600)]

    def test_shortage_on_any_line_consumes_nothing(self, orchestrator, ctx, stocked, sale_accounts, audit_recorder):
        audited_before = len(audit_recorder.records)

        with pytest.raises(InsufficientStockError) as exc_info:
            orchestrator.record_sale(
                ctx,
                "S-2",
                [
                    SaleLineItem("widget", 10, MoneyAmount(900)),
                    SaleLineItem("widget", 6, MoneyAmount(900)),
                ],
                sale_accounts,
            )

        assert exc_info.value.requested == 16
        assert stock(orchestrator, ctx, "widget") == [(10, 500), (5, 600)]
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount.zero()
        assert len(audit_recorder.records) == audited_before

    def test_failed_posting_restores_layers(self, orchestrator, ctx, stocked):
        broken = SaleAccounts("1000-Cash", "4000-Revenue", "5999-Missing", "1200-Inventory")
        with pytest.raises(UnknownAccountError):
            orchestrator.record_sale(ctx, "S-3", [SaleLineItem("widget", 3, MoneyAmount(900))], broken)

        assert stock(orchestrator, ctx, "widget") == [(10, 500), (5, 600)]

    def test_sale_replay(self, orchestrator, ctx, stocked, sale_accounts):
        items = [SaleLineItem("widget", 12, MoneyAmount(900))]
        first = orchestrator.record_sale(ctx, "S-1", items, sale_accounts)
        again = orchestrator.record_sale(ctx, "S-1", items, sale_accounts)

        assert again.replayed
        assert again.entry.entry_id == first.entry.entry_id
        assert again.revenue == first.revenue
        assert again.cost_of_goods_sold == first.cost_of_goods_sold
        assert again.consumptions == first.consumptions
        assert stock(orchestrator, ctx, "widget") == [(0, 500), (3, 600)]

    def test_free_goods_post_only_cogs(self, orchestrator, ctx, stocked, sale_accounts):
        result = orchestrator.record_sale(ctx, "S-free", [SaleLineItem("widget", 1, MoneyAmount(0))], sale_accounts)

        assert {line.account_code for line in result.entry.lines} == {"5000-COGS", "1200-Inventory"}

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError):
            SaleLineItem("widget", 1, MoneyAmount(-1))

    def test_empty_sale(self, orchestrator, ctx, stocked, sale_accounts):
        with pytest.raises(EmptyEntryError):
            orchestrator.record_sale(ctx, "S-0", [], sale_accounts)


class TestSaleReversal:
    def test_reversal_voids_entry_and_restocks_at_consumed_cost(
        self, orchestrator, ctx, stocked, sale_accounts, deterministic_clock
    ):
        sale = orchestrator.record_sale(ctx, "S-1", [SaleLineItem("widget", 12, MoneyAmount(900))], sale_accounts)
        deterministic_clock.advance(days=1)

        result = orchestrator.record_sale_reversal(ctx, "S-1", "customer return")

        assert result.original_entry.entry_id == sale.entry.entry_id
        assert result.original_entry.voided
        assert result.reversal_entry.reversal_of_id == sale.entry.entry_id
        assert [(l.original_quantity, l.unit_cost.minor) for l in result.restocked_layers] == [(10, 500), (2, 600)]
        assert all(l.source == EntryReference.sale("S-1") for l in result.restocked_layers)

        # Original layers stay depleted; stock comes back as new layers
        assert stock(orchestrator, ctx, "widget") == [(0, 500), (3, 600), (10, 500), (2, 600)]
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount.zero()
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount(8000)

    def test_reversal_replay(self, orchestrator, ctx, stocked, sale_accounts):
        orchestrator.record_sale(ctx, "S-1", [SaleLineItem("widget", 2, MoneyAmount(900))], sale_accounts)
        first = orchestrator.record_sale_reversal(ctx, "S-1", "return")
        again = orchestrator.record_sale_reversal(ctx, "S-1", "return")

        assert again.replayed
        assert again.reversal_entry.entry_id == first.reversal_entry.entry_id
        assert [l.layer_id for l in again.restocked_layers] == [l.layer_id for l in first.restocked_layers]

    def test_unknown_sale(self, orchestrator, ctx, committed_chart):
        with pytest.raises(OperationNotFoundError):
            orchestrator.record_sale_reversal(ctx, "S-404", "return")

    def test_sale_voided_directly(self, orchestrator, ctx, stocked, sale_accounts):
        sale = orchestrator.record_sale(ctx, "S-1", [SaleLineItem("widget", 2, MoneyAmount(900))], sale_accounts)
        orchestrator.void_entry(ctx, sale.entry.entry_id, "keyed twice")

        with pytest.raises(OperationAlreadyReversedError):
            orchestrator.record_sale_reversal(ctx, "S-1", "return")


class TestWriteOff:
    def test_write_off(self, orchestrator, ctx, stocked, write_off_accounts):
        result = orchestrator.record_stock_write_off(ctx, "ADJ-1", "widget", 11, write_off_accounts)

        assert result.consumption.total_cost == MoneyAmount(5600)
        assert result.entry.reference == EntryReference.adjustment("ADJ-1")
        assert balance(orchestrator, ctx, "6900-Shrinkage") == MoneyAmount(5600)
        assert stock(orchestrator, ctx, "widget") == [(0, 500), (4, 600)]

    def test_write_off_replay(self, orchestrator, ctx, stocked, write_off_accounts):
        first = orchestrator.record_stock_write_off(ctx, "ADJ-1", "widget", 3, write_off_accounts)
        again = orchestrator.record_stock_write_off(ctx, "ADJ-1", "widget", 3, write_off_accounts)

        assert again.replayed
        assert again.consumption == first.consumption
        assert stock(orchestrator, ctx, "widget") == [(7, 500), (5, 600)]

    def test_zero_cost_stock_is_written_off_without_entry(
        self, orchestrator, ctx, committed_chart, purchase_accounts, write_off_accounts
    ):
        orchestrator.record_purchase(
            ctx,
            "PO-1",
            [PurchaseLineItem("widget", 5, MoneyAmount(500)), PurchaseLineItem("sample", 3, MoneyAmount(0))],
            purchase_accounts,
        )

        result = orchestrator.record_stock_write_off(ctx, "ADJ-1", "sample", 3, write_off_accounts)
        again = orchestrator.record_stock_write_off(ctx, "ADJ-1", "sample", 3, write_off_accounts)

        assert result.entry is None
        assert result.consumption.total_quantity == 3
        assert again.replayed
        assert again.entry is None
        assert again.consumption == result.consumption
        assert stock(orchestrator, ctx, "sample") == [(0, 0)]
        assert balance(orchestrator, ctx, "6900-Shrinkage") == MoneyAmount.zero()
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount(2500)


class TestZeroAmountSales:
    @pytest.fixture
    def samples(self, orchestrator, ctx, committed_chart, purchase_accounts):
        orchestrator.record_purchase(ctx, "PO-S", [PurchaseLineItem("sample", 3, MoneyAmount(0))], purchase_accounts)

    def test_giveaway_of_free_stock_posts_nothing(self, orchestrator, ctx, samples, sale_accounts):
        result = orchestrator.record_sale(ctx, "S-gift", [SaleLineItem("sample", 2, MoneyAmount(0))], sale_accounts)
        again = orchestrator.record_sale(ctx, "S-gift", [SaleLineItem("sample", 2, MoneyAmount(0))], sale_accounts)

        assert result.entry is None
        assert result.cost_of_goods_sold == MoneyAmount.zero()
        assert again.replayed
        assert again.consumptions == result.consumptions
        assert stock(orchestrator, ctx, "sample") == [(1, 0)]

    def test_giveaway_reversal_restocks_without_entries(self, orchestrator, ctx, samples, sale_accounts):
        orchestrator.record_sale(ctx, "S-gift", [SaleLineItem("sample", 2, MoneyAmount(0))], sale_accounts)

        result = orchestrator.record_sale_reversal(ctx, "S-gift", "returned unopened")
        again = orchestrator.record_sale_reversal(ctx, "S-gift", "returned unopened")

        assert result.original_entry is None
        assert result.reversal_entry is None
        assert [(l.original_quantity, l.unit_cost.minor) for l in result.restocked_layers] == [(2, 0)]
        assert again.replayed
        assert stock(orchestrator, ctx, "sample") == [(1, 0), (2, 0)]


class TestStockTransfer:
    def test_destination_layers_keep_source_cost_and_fifo_order(
        self, orchestrator, ctx, stocked, sale_accounts, deterministic_clock
    ):
        result = orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 12, "main", "annex")

        assert [(s.quantity, s.unit_cost.minor) for s in result.consumption.steps] == [(10, 500), (2, 600)]
        assert [(l.original_quantity, l.unit_cost.minor) for l in result.received_layers] == [(10, 500), (2, 600)]
        assert [l.location_id for l in result.received_layers] == ["annex", "annex"]
        assert result.received_layers[0].layer_seq < result.received_layers[1].layer_seq
        assert all(l.received_at.replace(tzinfo=UTC) == deterministic_clock.now() for l in result.received_layers)
        assert all(l.source == EntryReference.transfer("TR-1") for l in result.received_layers)
        assert result.total_cost == MoneyAmount(6200)

        assert stock(orchestrator, ctx, "widget", "main") == [(0, 500), (3, 600)]
        assert stock(orchestrator, ctx, "widget", "annex") == [(10, 500), (2, 600)]
        assert balance(orchestrator, ctx, "1200-Inventory") == MoneyAmount(8000)

        sale = orchestrator.record_sale(
            ctx, "S-annex", [SaleLineItem("widget", 11, MoneyAmount(900), location_id="annex")], sale_accounts
        )
        assert sale.cost_of_goods_sold == MoneyAmount(10 * 500 + 600)

    def test_shortage_moves_nothing(self, orchestrator, ctx, stocked):
        with pytest.raises(InsufficientStockError) as exc_info:
            orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 16, "main", "annex")

        assert exc_info.value.available == 15
        assert stock(orchestrator, ctx, "widget", "main") == [(10, 500), (5, 600)]
        assert stock(orchestrator, ctx, "widget", "annex") == []

        retry = orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 15, "main", "annex")
        assert not retry.replayed

    def test_same_location_is_rejected(self, orchestrator, ctx, stocked):
        with pytest.raises(InvalidTransferError):
            orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 1, "main", "main")
        with pytest.raises(InvalidTransferError):
            orchestrator.record_stock_transfer(ctx, "TR-2", "widget", 1, None, "main")

        assert stock(orchestrator, ctx, "widget", "main") == [(10, 500), (5, 600)]

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_is_rejected(self, orchestrator, ctx, stocked, quantity):
        with pytest.raises(InvalidQuantityError):
            orchestrator.record_stock_transfer(ctx, "TR-1", "widget", quantity, "main", "annex")

    def test_transfer_replay(self, orchestrator, ctx, stocked):
        first = orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 4, "main", "annex")
        again = orchestrator.record_stock_transfer(ctx, "TR-1", "widget", 4, "main", "annex")

        assert again.replayed
        assert again.consumption == first.consumption
        assert [l.layer_id for l in again.received_layers] == [l.layer_id for l in first.received_layers]
        assert stock(orchestrator, ctx, "widget", "annex") == [(4, 500)]


class TestAuditDispatch:
    def test_records_delivered_after_commit(self, orchestrator, ctx, committed_chart, audit_recorder):
        audit_recorder.records.clear()

        orchestrator.record_income(ctx, "INC-1", MoneyAmount(100), "4000-Revenue", "1000-Cash")

        assert audit_recorder.actions() == [AuditAction.ENTRY_POSTED]
        assert audit_recorder.records[0].tenant_id == ctx.tenant_id

    def test_nothing_delivered_on_rollback(self, orchestrator, ctx, committed_chart, audit_recorder):
        audit_recorder.records.clear()

        with pytest.raises(UnknownAccountError):
            orchestrator.record_income(ctx, "INC-1", MoneyAmount(100), "4999-Typo", "1000-Cash")

        assert audit_recorder.records == []

    def test_recorder_failure_does_not_undo_commit(
        self, session_factory, ctx, deterministic_clock, audit_failures, committed_chart
    ):
        class BrokenRecorder:
            def record(self, record):
                raise ConnectionError("audit store offline")

        orchestrator = TransactionOrchestrator(
            session_factory,
            clock=deterministic_clock,
            audit_recorder=BrokenRecorder(),
            on_audit_failure=audit_failures,
        )

        result = orchestrator.record_income(ctx, "INC-1", MoneyAmount(100), "4000-Revenue", "1000-Cash")

        assert not result.replayed
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(100)
        assert len(audit_failures.failures) == 1
        assert isinstance(audit_failures.failures[0].error, ConnectionError)

    def test_failing_failure_handler_is_logged(
        self, session_factory, ctx, deterministic_clock, committed_chart, captured_logs
    ):
        class BrokenRecorder:
            def record(self, record):
                raise ConnectionError("audit store offline")

        def pager(failure):
            raise RuntimeError("pager unreachable")

        orchestrator = TransactionOrchestrator(
            session_factory,
            clock=deterministic_clock,
            audit_recorder=BrokenRecorder(),
            on_audit_failure=pager,
        )

        result = orchestrator.record_income(ctx, "INC-1", MoneyAmount(100), "4000-Revenue", "1000-Cash")

        assert not result.replayed
        assert balance(orchestrator, ctx, "1000-Cash") == MoneyAmount(100)
        errors = [r for r in captured_logs() if r["message"] == "audit_failure_handler_failed"]
        assert len(errors) == 1
        assert errors[0]["level"] == "ERROR"
        assert errors[0]["error_type"] == "ConnectionError"
