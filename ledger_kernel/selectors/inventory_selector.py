"""
Module: ledger_kernel.selectors.inventory_selector
Responsibility: Read-only inventory valuation over FIFO cost layers.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Value is sum(quantity_remaining * unit_cost) over layers, computed in
      integer minor units at query time.
    - Depleted layers contribute nothing but remain visible to
      layers_for() on request.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import CostLayerRecord
from ledger_kernel.models.cost_layer import CostLayer, LayerConsumption
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class InventoryValuationRow:
    """Remaining quantity and value of one product at one location."""

    product_id: str
    location_id: str
    quantity: int
    value: int
    open_layers: int


@dataclass(frozen=True)
class ConsumptionRow:
    """A persisted consumption step, as read back for reversal or audit."""

    layer_id: UUID
    product_id: str
    location_id: str
    quantity: int
    unit_cost: int
    step_seq: int


class InventorySelector(BaseSelector):
    """Selector for stock and valuation queries."""

    def valuation(
        self,
        tenant_id: str,
        product_id: str | None = None,
        location_id: str | None = None,
    ) -> list[InventoryValuationRow]:
        """
        Remaining quantity and value per (product, location).

        Only pairs with stock on hand are returned, ordered by product then
        location.
        """
        query = (
            select(
                CostLayer.product_id,
                CostLayer.location_id,
                func.sum(CostLayer.quantity_remaining).label("quantity"),
                func.sum(CostLayer.quantity_remaining * CostLayer.unit_cost).label("value"),
                func.count(CostLayer.id).label("open_layers"),
            )
            .where(
                CostLayer.tenant_id == tenant_id,
                CostLayer.quantity_remaining > 0,
            )
            .group_by(CostLayer.product_id, CostLayer.location_id)
            .order_by(CostLayer.product_id, CostLayer.location_id)
        )
        if product_id is not None:
            query = query.where(CostLayer.product_id == product_id)
        if location_id is not None:
            query = query.where(CostLayer.location_id == location_id)

        return [
            InventoryValuationRow(
                product_id=row.product_id,
                location_id=row.location_id,
                quantity=int(row.quantity),
                value=int(row.value),
                open_layers=int(row.open_layers),
            )
            for row in self.session.execute(query).all()
        ]

    def totals(
        self,
        tenant_id: str,
        product_id: str,
        location_id: str | None = None,
    ) -> tuple[int, int]:
        """(remaining quantity, remaining value) for a product, one location or all."""
        query = select(
            func.coalesce(func.sum(CostLayer.quantity_remaining), 0),
            func.coalesce(func.sum(CostLayer.quantity_remaining * CostLayer.unit_cost), 0),
        ).where(
            CostLayer.tenant_id == tenant_id,
            CostLayer.product_id == product_id,
        )
        if location_id is not None:
            query = query.where(CostLayer.location_id == location_id)

        quantity, value = self.session.execute(query).one()
        return int(quantity), int(value)

    def layers_for(
        self,
        tenant_id: str,
        product_id: str,
        location_id: str,
        include_depleted: bool = False,
    ) -> list[CostLayerRecord]:
        """Layers for one product at one location, oldest first."""
        query = (
            select(CostLayer)
            .where(
                CostLayer.tenant_id == tenant_id,
                CostLayer.product_id == product_id,
                CostLayer.location_id == location_id,
            )
            .order_by(CostLayer.received_at, CostLayer.layer_seq)
        )
        if not include_depleted:
            query = query.where(CostLayer.quantity_remaining > 0)

        return [CostLayerRecord.from_model(layer) for layer in self.session.execute(query).scalars()]

    def layers_by_source(
        self,
        tenant_id: str,
        source_kind: str,
        source_id: str,
    ) -> list[CostLayerRecord]:
        """Every layer created for one source reference, in creation order."""
        query = (
            select(CostLayer)
            .where(
                CostLayer.tenant_id == tenant_id,
                CostLayer.source_kind == source_kind,
                CostLayer.source_id == source_id,
            )
            .order_by(CostLayer.layer_seq)
        )
        return [CostLayerRecord.from_model(layer) for layer in self.session.execute(query).scalars()]

    def consumptions_for(
        self,
        tenant_id: str,
        consumer_kind: str,
        consumer_id: str,
    ) -> list[ConsumptionRow]:
        """Consumption steps recorded for one consumer, in the order taken."""
        query = (
            select(LayerConsumption)
            .where(
                LayerConsumption.tenant_id == tenant_id,
                LayerConsumption.consumer_kind == consumer_kind,
                LayerConsumption.consumer_id == consumer_id,
            )
            .order_by(
                LayerConsumption.product_id,
                LayerConsumption.location_id,
                LayerConsumption.step_seq,
            )
        )
        return [
            ConsumptionRow(
                layer_id=row.layer_id,
                product_id=row.product_id,
                location_id=row.location_id,
                quantity=row.quantity,
                unit_cost=row.unit_cost,
                step_seq=row.step_seq,
            )
            for row in self.session.execute(query).scalars()
        ]
