"""
ledger_services.transaction_orchestrator -- business operations as single units of work.

Responsibility:
    Composes FIFOCostingEngine and LedgerService into the operations a
    business front end calls: sales and their reversals, purchases, stock
    write-offs and transfers between locations, income, expenses and
    plain voids.  Each call is one transaction and is idempotent on a
    caller-supplied natural key.

Architecture position:
    Services -- stateful orchestration over the kernel.  The only layer
    that opens transactions on behalf of business callers.

Invariants enforced:
    - All-or-nothing: inventory movements, the journal entry and the
      idempotency record commit together or not at all.  A sale that
      cannot be fully costed leaves every layer untouched.
    - Idempotence: a natural key that already committed returns the
      prior result with replayed=True and posts nothing.  Two racing
      first attempts cannot both commit; the loser gets
      OptimisticLockError and replays on retry.
    - Sale reversals never restore the consumed layers.  They create new
      layers at the unit costs recorded when the sale consumed stock,
      keeping layer history append-only.
    - Stock movements whose money amounts are all zero (zero-cost
      receipts and write-offs, transfers) commit without a journal entry;
      the result carries entry=None.
    - No internal retry of any kind.

Failure modes:
    - Every kernel error propagates unchanged after rollback.
    - OperationNotFoundError: reversal of a sale that was never recorded.
    - OperationAlreadyReversedError: the sale's entry was voided outside
      record_sale_reversal, so its stock can no longer be returned.

Audit relevance:
    Audit records buffered by the kernel services are dispatched once,
    after commit, to the configured AuditRecorder.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ledger_config.settings import LedgerSettings
from ledger_kernel.db.engine import build_engine, create_tables
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.audit import AuditFailure, AuditRecorder
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.dtos import CostLayerRecord, JournalEntryRecord, LineSpec
from ledger_kernel.domain.fifo import ConsumptionResult, ConsumptionStep, validate_quantity
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.domain.references import EntryReference, ReferenceKind
from ledger_kernel.exceptions import (
    EmptyEntryError,
    InsufficientStockError,
    InvalidTransferError,
    OperationAlreadyReversedError,
    OperationNotFoundError,
)
from ledger_kernel.logging_config import LogContext, configure_logging, get_logger
from ledger_kernel.models.operation import OperationRecord
from ledger_kernel.selectors.inventory_selector import ConsumptionRow
from ledger_kernel.services.unit_of_work import UnitOfWork

logger = get_logger("orchestrator")


class OperationKind(str, Enum):
    """Idempotency namespaces; a natural key is unique within its kind."""

    SALE = "sale"
    PURCHASE = "purchase"
    SALE_REVERSAL = "sale_reversal"
    INCOME = "income"
    EXPENSE = "expense"
    WRITE_OFF = "write_off"
    TRANSFER = "transfer"


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class SaleLineItem:
    """One sold product line.  location_id falls back to the context's branch."""

    product_id: str
    quantity: int
    unit_price: MoneyAmount
    location_id: str | None = None

    def __post_init__(self) -> None:
        validate_quantity(self.quantity)
        if self.unit_price.is_negative:
            raise ValueError(f"unit_price must be non-negative, got {self.unit_price}")

    @property
    def amount(self) -> MoneyAmount:
        return self.unit_price.multiply_by_integer(self.quantity)


@dataclass(frozen=True)
class PurchaseLineItem:
    """One received product line."""

    product_id: str
    quantity: int
    unit_cost: MoneyAmount
    location_id: str | None = None

    def __post_init__(self) -> None:
        validate_quantity(self.quantity)

    @property
    def amount(self) -> MoneyAmount:
        return self.unit_cost.multiply_by_integer(self.quantity)


@dataclass(frozen=True)
class SaleAccounts:
    """Account codes a sale posts to."""

    cash_or_receivable: str
    revenue: str
    cost_of_goods_sold: str
    inventory: str


@dataclass(frozen=True)
class PurchaseAccounts:
    inventory: str
    cash_or_payable: str


@dataclass(frozen=True)
class WriteOffAccounts:
    loss_expense: str
    inventory: str


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SaleResult:
    sale_id: str
    entry: JournalEntryRecord | None
    revenue: MoneyAmount
    cost_of_goods_sold: MoneyAmount
    consumptions: tuple[ConsumptionResult, ...]
    replayed: bool = False


@dataclass(frozen=True)
class PurchaseResult:
    purchase_id: str
    entry: JournalEntryRecord | None
    layers: tuple[CostLayerRecord, ...]
    total_cost: MoneyAmount
    replayed: bool = False


@dataclass(frozen=True)
class SaleReversalResult:
    sale_id: str
    original_entry: JournalEntryRecord | None
    reversal_entry: JournalEntryRecord | None
    restocked_layers: tuple[CostLayerRecord, ...]
    replayed: bool = False


@dataclass(frozen=True)
class PostingResult:
    """Result of a single-entry operation (income, expense)."""

    natural_key: str
    entry: JournalEntryRecord
    replayed: bool = False


@dataclass(frozen=True)
class WriteOffResult:
    adjustment_id: str
    entry: JournalEntryRecord | None
    consumption: ConsumptionResult
    replayed: bool = False


@dataclass(frozen=True)
class TransferResult:
    """
    Stock moved between two locations of one tenant.

    received_layers mirror consumption.steps one to one: same quantity and
    unit cost, in the order the source layers were drained.
    """

    transfer_id: str
    consumption: ConsumptionResult
    received_layers: tuple[CostLayerRecord, ...]
    replayed: bool = False

    @property
    def total_cost(self) -> MoneyAmount:
        return self.consumption.total_cost


def _group_consumptions(rows: Sequence[ConsumptionRow]) -> tuple[ConsumptionResult, ...]:
    grouped: dict[tuple[str, str], list[ConsumptionStep]] = defaultdict(list)
    for row in rows:
        grouped[(row.product_id, row.location_id)].append(
            ConsumptionStep(row.layer_id, row.quantity, MoneyAmount(row.unit_cost))
        )
    return tuple(
        ConsumptionResult(product_id, location_id, tuple(steps))
        for (product_id, location_id), steps in grouped.items()
    )


# =============================================================================
# Orchestrator
# =============================================================================


class TransactionOrchestrator:
    """
    Entry point for business operations.

    Contract:
        Each public method opens its own UnitOfWork, so each call is one
        transaction.  Every call takes an explicit OperationContext; the
        tenant is never inferred.

    Non-goals:
        - No authorization: the caller has already decided the actor may
          act for the tenant and location in the context.
        - No tax or currency conversion.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        on_audit_failure: Callable[[AuditFailure], None] | None = None,
        block_deactivation_with_open_balance: bool = False,
        currency_decimal_places: int = 2,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._audit_recorder = audit_recorder
        self._on_audit_failure = on_audit_failure
        self._block_deactivation = block_deactivation_with_open_balance
        self._decimal_places = currency_decimal_places

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        clock: Clock | None = None,
        audit_recorder: AuditRecorder | None = None,
        on_audit_failure: Callable[[AuditFailure], None] | None = None,
    ) -> TransactionOrchestrator:
        """
        Build logging, the engine and the session factory from resolved settings.

        Missing tables are created; existing ones are left as they are.
        """
        configure_logging(level=settings.log_level)
        register_immutability_listeners()
        engine = build_engine(settings.database_url, echo=settings.echo_sql, **settings.pool_options)
        create_tables(engine)
        logger.info("orchestrator_configured", extra={"settings_checksum": settings.checksum})
        return cls(
            sessionmaker(bind=engine, expire_on_commit=False),
            clock=clock,
            audit_recorder=audit_recorder,
            on_audit_failure=on_audit_failure,
            block_deactivation_with_open_balance=settings.block_deactivation_with_open_balance,
            currency_decimal_places=settings.currency_decimal_places,
        )

    def unit_of_work(self, ctx: OperationContext) -> UnitOfWork:
        """A transaction scope for callers composing kernel services directly."""
        return UnitOfWork(
            self._session_factory,
            ctx,
            clock=self._clock,
            audit_recorder=self._audit_recorder,
            on_audit_failure=self._on_audit_failure,
            block_deactivation_with_open_balance=self._block_deactivation,
        )

    def parse_amount(self, value: Decimal | str | int) -> MoneyAmount:
        """Major-unit input (e.g. "150.50") to minor units at the configured precision."""
        return MoneyAmount.from_major(value, self._decimal_places)

    # ------------------------------------------------------------------
    # Idempotency ledger
    # ------------------------------------------------------------------

    @staticmethod
    def _find_operation(
        uow: UnitOfWork,
        ctx: OperationContext,
        kind: OperationKind,
        natural_key: str,
    ) -> OperationRecord | None:
        return uow.session.execute(
            select(OperationRecord).where(
                OperationRecord.tenant_id == ctx.tenant_id,
                OperationRecord.kind == kind.value,
                OperationRecord.natural_key == natural_key,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _record_operation(
        uow: UnitOfWork,
        ctx: OperationContext,
        kind: OperationKind,
        natural_key: str,
        entry_id: UUID | None,
    ) -> None:
        uow.session.add(
            OperationRecord(
                tenant_id=ctx.tenant_id,
                kind=kind.value,
                natural_key=natural_key,
                entry_id=entry_id,
                created_by=ctx.actor_id,
            )
        )
        uow.session.flush()

    @staticmethod
    def _log_replay(kind: OperationKind, natural_key: str) -> None:
        logger.info("operation_replayed", extra={"kind": kind.value, "natural_key": natural_key})

    @staticmethod
    def _entry_of(uow: UnitOfWork, ctx: OperationContext, entry_id: UUID | None) -> JournalEntryRecord | None:
        return uow.ledger.get_entry(ctx, entry_id) if entry_id is not None else None

    @staticmethod
    def _post_if_any(
        uow: UnitOfWork,
        ctx: OperationContext,
        entry_date: date,
        description: str,
        lines: list[LineSpec],
        reference: EntryReference,
    ) -> JournalEntryRecord | None:
        """Post ``lines`` as one entry; no entry when every amount was zero."""
        if not lines:
            logger.info("no_entry_for_zero_amounts", extra={"reference": str(reference)})
            return None
        return uow.ledger.create_entry(ctx, entry_date, description, lines, reference=reference)

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def record_sale(
        self,
        ctx: OperationContext,
        sale_id: str,
        line_items: Sequence[SaleLineItem],
        accounts: SaleAccounts,
        sale_date: date | None = None,
    ) -> SaleResult:
        """
        Cost and post a sale as one entry.

        Lines: Dr cash/receivable and Cr revenue for the sale amount;
        Dr cost of goods sold and Cr inventory for the FIFO cost.  A side
        whose amount is zero (free goods, zero-cost stock) is left out; when
        both are zero the stock is consumed and no entry is posted.

        Raises:
            EmptyEntryError: no line items.
            InsufficientStockError: any product/location is short,
                counting all line items for it together; nothing is
                consumed.
        """
        sale_id = str(sale_id)
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"sale:{sale_id}"):
            prior = self._find_operation(uow, ctx, OperationKind.SALE, sale_id)
            if prior is not None:
                self._log_replay(OperationKind.SALE, sale_id)
                return self._replay_sale(uow, ctx, sale_id, prior, accounts)

            if not line_items:
                raise EmptyEntryError(f"Sale {sale_id}")

            needed: dict[tuple[str, str], int] = defaultdict(int)
            for item in line_items:
                needed[(item.product_id, ctx.require_location(item.location_id))] += item.quantity
            for (product_id, location_id), quantity in needed.items():
                available = uow.fifo.available_quantity(ctx, product_id, location_id)
                if available < quantity:
                    raise InsufficientStockError(product_id, location_id, quantity, available)

            reference = EntryReference.sale(sale_id)
            consumptions = tuple(
                uow.fifo.consume_layers(
                    ctx,
                    item.product_id,
                    item.location_id,
                    item.quantity,
                    consumer=reference,
                )
                for item in line_items
            )

            revenue = MoneyAmount.sum_of(item.amount for item in line_items)
            cogs = MoneyAmount.sum_of(c.total_cost for c in consumptions)

            lines = []
            if revenue.is_positive:
                lines.append(LineSpec.debit_line(accounts.cash_or_receivable, revenue, "sale amount"))
                lines.append(LineSpec.credit_line(accounts.revenue, revenue, "sale amount"))
            if cogs.is_positive:
                lines.append(LineSpec.debit_line(accounts.cost_of_goods_sold, cogs, "cost of goods sold"))
                lines.append(LineSpec.credit_line(accounts.inventory, cogs, "cost of goods sold"))

            entry = self._post_if_any(
                uow, ctx, sale_date or self._clock.today(), f"Sale {sale_id}", lines, reference
            )
            self._record_operation(uow, ctx, OperationKind.SALE, sale_id, entry.entry_id if entry else None)

            logger.info(
                "sale_recorded",
                extra={
                    "sale_id": sale_id,
                    "entry_number": entry.entry_number if entry else None,
                    "revenue": revenue.minor,
                    "cost_of_goods_sold": cogs.minor,
                    "line_items": len(line_items),
                },
            )
            return SaleResult(sale_id, entry, revenue, cogs, consumptions)

    def _replay_sale(
        self,
        uow: UnitOfWork,
        ctx: OperationContext,
        sale_id: str,
        prior: OperationRecord,
        accounts: SaleAccounts,
    ) -> SaleResult:
        entry = self._entry_of(uow, ctx, prior.entry_id)
        lines = entry.lines if entry else ()
        revenue = MoneyAmount.sum_of(
            line.credit for line in lines if line.account_code == accounts.revenue
        )
        cogs = MoneyAmount.sum_of(
            line.debit for line in lines if line.account_code == accounts.cost_of_goods_sold
        )
        rows = uow.inventory.consumptions_for(ctx.tenant_id, ReferenceKind.SALE.value, sale_id)
        return SaleResult(sale_id, entry, revenue, cogs, _group_consumptions(rows), replayed=True)

    def record_sale_reversal(self, ctx: OperationContext, sale_id: str, reason: str) -> SaleReversalResult:
        """
        Void a recorded sale and return its stock.

        The sale entry is voided through LedgerService.void_entry.  For
        every consumption step the sale took, a new layer is created at
        that step's unit cost, received now and referencing the sale.  A
        sale that posted no entry (all amounts zero) only has its stock
        returned.

        Raises:
            OperationNotFoundError: no sale was recorded under sale_id.
            OperationAlreadyReversedError: the sale entry was voided by
                other means.
        """
        sale_id = str(sale_id)
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"sale_reversal:{sale_id}"):
            sale = self._find_operation(uow, ctx, OperationKind.SALE, sale_id)
            prior = self._find_operation(uow, ctx, OperationKind.SALE_REVERSAL, sale_id)
            if prior is not None:
                self._log_replay(OperationKind.SALE_REVERSAL, sale_id)
                restocked = uow.inventory.layers_by_source(
                    ctx.tenant_id, ReferenceKind.SALE.value, sale_id
                )
                return SaleReversalResult(
                    sale_id,
                    self._entry_of(uow, ctx, sale.entry_id),
                    self._entry_of(uow, ctx, prior.entry_id),
                    tuple(restocked),
                    replayed=True,
                )

            if sale is None:
                raise OperationNotFoundError(OperationKind.SALE.value, sale_id)

            reversal = None
            if sale.entry_id is not None:
                if uow.ledger.get_entry(ctx, sale.entry_id).voided:
                    raise OperationAlreadyReversedError(OperationKind.SALE.value, sale_id)
                reversal = uow.ledger.void_entry(ctx, sale.entry_id, reason)

            restocked = self._receive_layers(
                uow,
                ctx,
                (
                    (row.product_id, row.location_id, row.quantity, MoneyAmount(row.unit_cost))
                    for row in uow.inventory.consumptions_for(ctx.tenant_id, ReferenceKind.SALE.value, sale_id)
                ),
                received_at=self._clock.now(),
                source=EntryReference.sale(sale_id),
            )

            self._record_operation(
                uow, ctx, OperationKind.SALE_REVERSAL, sale_id, reversal.entry_id if reversal else None
            )
            original = self._entry_of(uow, ctx, sale.entry_id)

            logger.info(
                "sale_reversed",
                extra={
                    "sale_id": sale_id,
                    "reason": reason,
                    "entry_number": original.entry_number if original else None,
                    "reversal_entry_number": reversal.entry_number if reversal else None,
                    "layers_restocked": len(restocked),
                },
            )
            return SaleReversalResult(sale_id, original, reversal, restocked)

    @staticmethod
    def _receive_layers(
        uow: UnitOfWork,
        ctx: OperationContext,
        moves: Iterable[tuple[str, str, int, MoneyAmount]],
        received_at: datetime,
        source: EntryReference,
    ) -> tuple[CostLayerRecord, ...]:
        """One new layer per (product, location, quantity, unit cost), in the given order."""
        return tuple(
            uow.fifo.add_layer(
                ctx,
                product_id,
                location_id,
                quantity,
                unit_cost,
                received_at=received_at,
                source=source,
            )
            for product_id, location_id, quantity, unit_cost in moves
        )

    # ------------------------------------------------------------------
    # Purchases and stock adjustments
    # ------------------------------------------------------------------

    def record_purchase(
        self,
        ctx: OperationContext,
        purchase_id: str,
        line_items: Sequence[PurchaseLineItem],
        accounts: PurchaseAccounts,
        received_at: datetime | None = None,
    ) -> PurchaseResult:
        """
        Receive stock into new layers and post Dr inventory / Cr cash-or-payable.

        All line items share one receipt time; their layers keep the order
        of the line items.  A receipt whose total cost is zero (free
        samples) creates its layers and posts no entry.

        Raises:
            EmptyEntryError: no line items.
            InvalidCostError: a negative unit cost.
        """
        purchase_id = str(purchase_id)
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"purchase:{purchase_id}"):
            prior = self._find_operation(uow, ctx, OperationKind.PURCHASE, purchase_id)
            if prior is not None:
                self._log_replay(OperationKind.PURCHASE, purchase_id)
                layers = uow.inventory.layers_by_source(
                    ctx.tenant_id, ReferenceKind.PURCHASE.value, purchase_id
                )
                total = MoneyAmount.sum_of(
                    layer.unit_cost.multiply_by_integer(layer.original_quantity) for layer in layers
                )
                return PurchaseResult(
                    purchase_id, self._entry_of(uow, ctx, prior.entry_id), tuple(layers), total, replayed=True
                )

            if not line_items:
                raise EmptyEntryError(f"Purchase {purchase_id}")

            reference = EntryReference.purchase(purchase_id)
            received = received_at or self._clock.now()
            layers = tuple(
                uow.fifo.add_layer(
                    ctx,
                    item.product_id,
                    item.location_id,
                    item.quantity,
                    item.unit_cost,
                    received_at=received,
                    source=reference,
                )
                for item in line_items
            )
            total = MoneyAmount.sum_of(item.amount for item in line_items)

            lines = []
            if total.is_positive:
                lines = [
                    LineSpec.debit_line(accounts.inventory, total, "stock received"),
                    LineSpec.credit_line(accounts.cash_or_payable, total, "stock received"),
                ]
            entry = self._post_if_any(uow, ctx, received.date(), f"Purchase {purchase_id}", lines, reference)
            self._record_operation(
                uow, ctx, OperationKind.PURCHASE, purchase_id, entry.entry_id if entry else None
            )

            logger.info(
                "purchase_recorded",
                extra={
                    "purchase_id": purchase_id,
                    "entry_number": entry.entry_number if entry else None,
                    "total_cost": total.minor,
                    "layers": len(layers),
                },
            )
            return PurchaseResult(purchase_id, entry, layers, total)

    def record_stock_write_off(
        self,
        ctx: OperationContext,
        adjustment_id: str,
        product_id: str,
        quantity: int,
        accounts: WriteOffAccounts,
        location_id: str | None = None,
        entry_date: date | None = None,
    ) -> WriteOffResult:
        """
        Remove damaged or lost stock at FIFO cost.

        Posts Dr loss expense / Cr inventory, referenced as an adjustment.

        Raises:
            InsufficientStockError: less than ``quantity`` remains.

        Stock that carried no cost is removed without posting an entry.
        """
        adjustment_id = str(adjustment_id)
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"write_off:{adjustment_id}"):
            prior = self._find_operation(uow, ctx, OperationKind.WRITE_OFF, adjustment_id)
            if prior is not None:
                self._log_replay(OperationKind.WRITE_OFF, adjustment_id)
                rows = uow.inventory.consumptions_for(
                    ctx.tenant_id, ReferenceKind.ADJUSTMENT.value, adjustment_id
                )
                (consumption,) = _group_consumptions(rows)
                return WriteOffResult(
                    adjustment_id, self._entry_of(uow, ctx, prior.entry_id), consumption, replayed=True
                )

            reference = EntryReference.adjustment(adjustment_id)
            consumption = uow.fifo.consume_layers(
                ctx, product_id, location_id, quantity, consumer=reference
            )
            cost = consumption.total_cost

            lines = []
            if cost.is_positive:
                lines = [
                    LineSpec.debit_line(accounts.loss_expense, cost, "stock written off"),
                    LineSpec.credit_line(accounts.inventory, cost, "stock written off"),
                ]
            entry = self._post_if_any(
                uow, ctx, entry_date or self._clock.today(), f"Stock write-off {adjustment_id}", lines, reference
            )
            self._record_operation(
                uow, ctx, OperationKind.WRITE_OFF, adjustment_id, entry.entry_id if entry else None
            )

            logger.info(
                "stock_written_off",
                extra={
                    "adjustment_id": adjustment_id,
                    "product_id": product_id,
                    "quantity": quantity,
                    "cost": cost.minor,
                    "entry_number": entry.entry_number if entry else None,
                },
            )
            return WriteOffResult(adjustment_id, entry, consumption)

    def record_stock_transfer(
        self,
        ctx: OperationContext,
        transfer_id: str,
        product_id: str,
        quantity: int,
        from_location: str | None,
        to_location: str,
        transferred_at: datetime | None = None,
    ) -> TransferResult:
        """
        Move stock from one location to another at FIFO cost.

        The source is drained oldest-first; each consumed step becomes a
        new destination layer with the step's quantity and unit cost,
        received at ``transferred_at`` (default now) and referencing the
        transfer.  Inventory value is unchanged, so no entry is posted.
        from_location falls back to the context's branch.

        Raises:
            InvalidQuantityError: quantity is not a positive int.
            InvalidTransferError: source and destination are the same.
            InsufficientStockError: the source holds less than
                ``quantity``; nothing moves.
        """
        transfer_id = str(transfer_id)
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"transfer:{transfer_id}"):
            prior = self._find_operation(uow, ctx, OperationKind.TRANSFER, transfer_id)
            if prior is not None:
                self._log_replay(OperationKind.TRANSFER, transfer_id)
                rows = uow.inventory.consumptions_for(
                    ctx.tenant_id, ReferenceKind.TRANSFER.value, transfer_id
                )
                (consumption,) = _group_consumptions(rows)
                received = uow.inventory.layers_by_source(
                    ctx.tenant_id, ReferenceKind.TRANSFER.value, transfer_id
                )
                return TransferResult(transfer_id, consumption, tuple(received), replayed=True)

            validate_quantity(quantity)
            source_location = ctx.require_location(from_location)
            if not to_location or to_location == source_location:
                raise InvalidTransferError(transfer_id, source_location, to_location)

            reference = EntryReference.transfer(transfer_id)
            consumption = uow.fifo.consume_layers(
                ctx, product_id, source_location, quantity, consumer=reference
            )
            received = self._receive_layers(
                uow,
                ctx,
                ((product_id, to_location, step.quantity, step.unit_cost) for step in consumption.steps),
                received_at=transferred_at or self._clock.now(),
                source=reference,
            )
            self._record_operation(uow, ctx, OperationKind.TRANSFER, transfer_id, None)

            logger.info(
                "stock_transferred",
                extra={
                    "transfer_id": transfer_id,
                    "product_id": product_id,
                    "quantity": quantity,
                    "from_location": source_location,
                    "to_location": to_location,
                    "cost": consumption.total_cost.minor,
                },
            )
            return TransferResult(transfer_id, consumption, received)

    # ------------------------------------------------------------------
    # Income, expense and plain voids
    # ------------------------------------------------------------------

    def _record_simple(
        self,
        ctx: OperationContext,
        kind: OperationKind,
        natural_key: str,
        description: str,
        lines: list[LineSpec],
        entry_date: date | None,
    ) -> PostingResult:
        with self.unit_of_work(ctx) as uow, LogContext.bind(operation_key=f"{kind.value}:{natural_key}"):
            prior = self._find_operation(uow, ctx, kind, natural_key)
            if prior is not None:
                self._log_replay(kind, natural_key)
                return PostingResult(natural_key, uow.ledger.get_entry(ctx, prior.entry_id), replayed=True)

            entry = uow.ledger.create_entry(
                ctx,
                entry_date or self._clock.today(),
                description,
                lines,
                reference=EntryReference.manual(natural_key),
            )
            self._record_operation(uow, ctx, kind, natural_key, entry.entry_id)
            logger.info(
                f"{kind.value}_recorded",
                extra={"natural_key": natural_key, "entry_number": entry.entry_number},
            )
            return PostingResult(natural_key, entry)

    def record_income(
        self,
        ctx: OperationContext,
        income_id: str,
        amount: MoneyAmount,
        revenue_code: str,
        cash_code: str,
        entry_date: date | None = None,
        description: str | None = None,
    ) -> PostingResult:
        """Post Dr cash / Cr revenue for ``amount``."""
        income_id = str(income_id)
        lines = [
            LineSpec.debit_line(cash_code, amount),
            LineSpec.credit_line(revenue_code, amount),
        ]
        return self._record_simple(
            ctx,
            OperationKind.INCOME,
            income_id,
            description or f"Income {income_id}",
            lines,
            entry_date,
        )

    def record_expense(
        self,
        ctx: OperationContext,
        expense_id: str,
        amount: MoneyAmount,
        expense_code: str,
        cash_code: str,
        entry_date: date | None = None,
        description: str | None = None,
    ) -> PostingResult:
        """Post Dr expense / Cr cash for ``amount``."""
        expense_id = str(expense_id)
        lines = [
            LineSpec.debit_line(expense_code, amount),
            LineSpec.credit_line(cash_code, amount),
        ]
        return self._record_simple(
            ctx,
            OperationKind.EXPENSE,
            expense_id,
            description or f"Expense {expense_id}",
            lines,
            entry_date,
        )

    def void_entry(self, ctx: OperationContext, entry_id: UUID, reason: str) -> JournalEntryRecord:
        """Void one entry in its own transaction.  Returns the reversing entry."""
        with self.unit_of_work(ctx) as uow:
            return uow.ledger.void_entry(ctx, entry_id, reason)
