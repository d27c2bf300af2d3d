"""
FIFOCostingEngine -- stateful FIFO cost-layer inventory.

Responsibility:
    Appends cost layers on receipt, drains them oldest-first on
    consumption, records every consumption step, and values what remains.

Architecture position:
    Kernel > Services -- imperative shell around the pure planner in
    ledger_kernel.domain.fifo.  The planner decides; this engine locks,
    applies and persists.

Invariants enforced:
    - Layers are consumed strictly by (received_at, layer_seq); layer_seq
      comes from the tenant's durable counter, so ties resolve in
      insertion order.
    - quantity_remaining only decreases and never goes below zero.
    - A consumption either takes the whole requested quantity or changes
      nothing: the plan is computed and checked against availability
      before the first layer is touched.
    - Layers of one (tenant, product, location) are read FOR UPDATE, so
      two concurrent consumers cannot both draw the same units.  The
      optimistic version column catches any lost update that slips past.
    - Layers are never deleted; depleted layers stay at zero.

Failure modes:
    - InvalidQuantityError, InvalidCostError at add_layer.
    - InvalidQuantityError, InsufficientStockError at consume_layers.
    - OptimisticLockError (via the unit of work) on a concurrent update.

Audit relevance:
    LAYER_CREATED per new layer; LAYERS_CONSUMED per layer touched, with
    before/after remaining quantity and the consumer reference.  The
    LayerConsumption rows are the durable record of which layer fed which
    consumer.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.dtos import CostLayerRecord
from ledger_kernel.domain.fifo import (
    AverageCost,
    ConsumptionResult,
    LayerPosition,
    plan_fifo_consumption,
    validate_quantity,
)
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.domain.references import EntryReference
from ledger_kernel.exceptions import InvalidCostError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.cost_layer import CostLayer, LayerConsumption
from ledger_kernel.selectors.inventory_selector import InventorySelector
from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.fifo")

ENTITY_TYPE = "CostLayer"


class FIFOCostingEngine(BaseService):
    """
    FIFO inventory costing for one session.

    Contract:
        Every method takes an OperationContext.  Where a location argument
        is omitted the context's location is used; a location-scoped call
        without either fails with InvalidContextError.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_outbox: AuditOutbox | None = None,
    ):
        super().__init__(session, clock=clock, audit_outbox=audit_outbox)
        self._sequences = SequenceService(session)
        self._selector = InventorySelector(session)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def add_layer(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None,
        quantity: int,
        unit_cost: MoneyAmount,
        received_at: datetime | None = None,
        source: EntryReference | None = None,
    ) -> CostLayerRecord:
        """
        Append a cost layer.

        received_at defaults to the clock's now.  A layer received at the
        same instant as an existing one sorts after it.

        Raises:
            InvalidQuantityError: quantity is not a positive int.
            InvalidCostError: unit_cost is negative.
            ArithmeticOverflowError: quantity * unit_cost leaves the
                64-bit range.
        """
        validate_quantity(quantity)
        if not isinstance(unit_cost, MoneyAmount):
            unit_cost = MoneyAmount.of(unit_cost)
        if unit_cost.is_negative:
            raise InvalidCostError(unit_cost.minor)
        if not product_id:
            raise ValueError("product_id is required")
        location = ctx.require_location(location_id)

        # Reject layers whose value could not be represented
        unit_cost.multiply_by_integer(quantity)

        layer = CostLayer(
            tenant_id=ctx.tenant_id,
            product_id=product_id,
            location_id=location,
            original_quantity=quantity,
            quantity_remaining=quantity,
            unit_cost=unit_cost.minor,
            received_at=received_at or self._clock.now(),
            layer_seq=self._sequences.next_value(ctx.tenant_id, SequenceService.COST_LAYER),
            source_kind=source.kind.value if source else None,
            source_id=source.ref_id if source else None,
            created_by=ctx.actor_id,
        )
        self.session.add(layer)
        self.session.flush()

        record = CostLayerRecord.from_model(layer)
        self._audit(
            ctx,
            ENTITY_TYPE,
            layer.id,
            AuditAction.LAYER_CREATED,
            None,
            {
                "product_id": product_id,
                "location_id": location,
                "quantity": quantity,
                "unit_cost": unit_cost.minor,
                "layer_seq": layer.layer_seq,
                "source": str(source) if source else None,
            },
        )
        logger.info(
            "layer_added",
            extra={
                "product_id": product_id,
                "location_id": location,
                "layer_id": str(layer.id),
                "layer_seq": layer.layer_seq,
                "quantity": quantity,
                "unit_cost": unit_cost.minor,
            },
        )
        return record

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def _lock_open_layers(self, ctx: OperationContext, product_id: str, location_id: str) -> list[CostLayer]:
        return list(
            self.session.execute(
                select(CostLayer)
                .where(
                    CostLayer.tenant_id == ctx.tenant_id,
                    CostLayer.product_id == product_id,
                    CostLayer.location_id == location_id,
                    CostLayer.quantity_remaining > 0,
                )
                .order_by(CostLayer.received_at, CostLayer.layer_seq)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def consume_layers(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None,
        quantity: int,
        consumer: EntryReference | None = None,
    ) -> ConsumptionResult:
        """
        Draw ``quantity`` units oldest-first.

        Postconditions:
            Step quantities sum to ``quantity``; each touched layer is
            decremented by its step and one LayerConsumption row per step
            is flushed.

        Raises:
            InvalidQuantityError: quantity is not a positive int.
            InsufficientStockError: less than ``quantity`` remains; no
                layer is modified.
        """
        validate_quantity(quantity)
        location = ctx.require_location(location_id)

        layers = self._lock_open_layers(ctx, product_id, location)
        by_id = {layer.id: layer for layer in layers}
        plan = plan_fifo_consumption(
            product_id,
            location,
            [
                LayerPosition(
                    layer_id=layer.id,
                    received_at=layer.received_at,
                    layer_seq=layer.layer_seq,
                    quantity_remaining=layer.quantity_remaining,
                    unit_cost=MoneyAmount(layer.unit_cost),
                )
                for layer in layers
            ],
            quantity,
        )

        for step_seq, step in enumerate(plan.steps, start=1):
            layer = by_id[step.layer_id]
            before = layer.quantity_remaining
            layer.quantity_remaining = before - step.quantity
            layer.updated_by = ctx.actor_id

            self.session.add(
                LayerConsumption(
                    tenant_id=ctx.tenant_id,
                    layer_id=layer.id,
                    product_id=product_id,
                    location_id=location,
                    quantity=step.quantity,
                    unit_cost=step.unit_cost.minor,
                    step_seq=step_seq,
                    consumer_kind=consumer.kind.value if consumer else None,
                    consumer_id=consumer.ref_id if consumer else None,
                    created_by=ctx.actor_id,
                )
            )
            self._audit(
                ctx,
                ENTITY_TYPE,
                layer.id,
                AuditAction.LAYERS_CONSUMED,
                {"quantity_remaining": before},
                {
                    "quantity_remaining": layer.quantity_remaining,
                    "consumed": step.quantity,
                    "unit_cost": step.unit_cost.minor,
                    "consumer": str(consumer) if consumer else None,
                },
            )

        self.session.flush()

        logger.info(
            "layers_consumed",
            extra={
                "product_id": product_id,
                "location_id": location,
                "quantity": quantity,
                "layers_touched": len(plan.steps),
                "total_cost": plan.total_cost.minor,
                "consumer": str(consumer) if consumer else None,
            },
        )
        return plan

    # ------------------------------------------------------------------
    # Valuation and reads
    # ------------------------------------------------------------------

    def calculate_inventory_value(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None = None,
    ) -> MoneyAmount:
        """sum(remaining * unit_cost) over the product's layers; all locations if None."""
        _, value = self._selector.totals(ctx.tenant_id, product_id, location_id)
        return MoneyAmount(value)

    def calculate_average_cost(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None = None,
    ) -> AverageCost:
        """
        Weighted average unit cost of what remains.

        Returns AverageCost.no_cost() when nothing remains.
        """
        quantity, value = self._selector.totals(ctx.tenant_id, product_id, location_id)
        if quantity == 0:
            return AverageCost.no_cost()
        return AverageCost(total_value=MoneyAmount(value), total_quantity=quantity)

    def get_layers(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None = None,
        include_depleted: bool = False,
    ) -> list[CostLayerRecord]:
        """Layers oldest first; depleted layers only when asked for."""
        location = ctx.require_location(location_id)
        return self._selector.layers_for(ctx.tenant_id, product_id, location, include_depleted)

    def available_quantity(
        self,
        ctx: OperationContext,
        product_id: str,
        location_id: str | None = None,
    ) -> int:
        location = ctx.require_location(location_id)
        quantity, _ = self._selector.totals(ctx.tenant_id, product_id, location)
        return quantity
