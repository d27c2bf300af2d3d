"""
ledger_kernel.domain.fifo -- Pure FIFO cost-flow calculations.

Responsibility:
    Define the consumption value objects (ConsumptionStep,
    ConsumptionResult, AverageCost) and the pure planning function that
    decides how a requested quantity is drawn from an ordered set of cost
    layers.  The stateful FIFOCostingEngine applies a plan; it never
    decides one.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.

Invariants enforced:
    - Layers are drained strictly oldest-first by (received_at, layer_seq).
    - A plan's step quantities sum exactly to the requested quantity.
    - No plan is produced when availability is short; the caller gets
      InsufficientStockError before anything is mutated.
    - AverageCost has an explicit "no cost" value when nothing remains,
      never a division by zero.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from uuid import UUID

from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.exceptions import InsufficientStockError, InvalidQuantityError


def validate_quantity(quantity: object) -> int:
    """Return quantity if it is a positive int, else raise InvalidQuantityError."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(quantity)
    return quantity


@dataclass(frozen=True, slots=True)
class LayerPosition:
    """The part of a cost layer that FIFO planning needs."""

    layer_id: UUID
    received_at: datetime
    layer_seq: int
    quantity_remaining: int
    unit_cost: MoneyAmount

    @property
    def order_key(self) -> tuple[datetime, int]:
        return (self.received_at, self.layer_seq)


@dataclass(frozen=True, slots=True)
class ConsumptionStep:
    """Quantity drawn from one layer at that layer's unit cost."""

    layer_id: UUID
    quantity: int
    unit_cost: MoneyAmount

    @property
    def cost(self) -> MoneyAmount:
        return self.unit_cost.multiply_by_integer(self.quantity)


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """
    Outcome of one consume_layers call.

    Steps are ordered oldest layer first.
    """

    product_id: str
    location_id: str
    steps: tuple[ConsumptionStep, ...]

    @property
    def total_quantity(self) -> int:
        return sum(step.quantity for step in self.steps)

    @property
    def total_cost(self) -> MoneyAmount:
        return MoneyAmount.sum_of(step.cost for step in self.steps)

    def to_audit_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "steps": [
                {
                    "layer_id": str(step.layer_id),
                    "quantity": step.quantity,
                    "unit_cost": step.unit_cost.minor,
                }
                for step in self.steps
            ],
        }


@dataclass(frozen=True, slots=True)
class AverageCost:
    """
    Weighted average unit cost of the remaining quantity.

    ``is_defined`` is False when nothing remains; ``per_unit`` is then None.
    """

    total_value: MoneyAmount
    total_quantity: int

    @classmethod
    def no_cost(cls) -> AverageCost:
        return cls(MoneyAmount.zero(), 0)

    @property
    def is_defined(self) -> bool:
        return self.total_quantity > 0

    @property
    def per_unit(self) -> Decimal | None:
        """Exact ratio of minor units per unit, or None when nothing remains."""
        if not self.is_defined:
            return None
        return Decimal(self.total_value.minor) / Decimal(self.total_quantity)

    def rounded(self) -> MoneyAmount | None:
        """Average unit cost rounded half-even to a whole minor unit."""
        ratio = self.per_unit
        if ratio is None:
            return None
        return MoneyAmount(int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_EVEN)))


def fifo_order(layers: Sequence[LayerPosition]) -> list[LayerPosition]:
    """Sort layers oldest-first; layer_seq breaks received_at ties."""
    return sorted(layers, key=lambda layer: layer.order_key)


def plan_fifo_consumption(
    product_id: str,
    location_id: str,
    layers: Sequence[LayerPosition],
    quantity: int,
) -> ConsumptionResult:
    """
    Plan a FIFO draw of ``quantity`` units across ``layers``.

    Preconditions:
        quantity is a positive int.
    Postconditions:
        Returned steps sum to ``quantity`` and visit layers oldest-first,
        taking min(remaining, outstanding) from each.

    Raises:
        InvalidQuantityError: quantity is not a positive int.
        InsufficientStockError: total remaining is below quantity.
    """
    validate_quantity(quantity)

    ordered = [layer for layer in fifo_order(layers) if layer.quantity_remaining > 0]
    available = sum(layer.quantity_remaining for layer in ordered)
    if available < quantity:
        raise InsufficientStockError(
            product_id=product_id,
            location_id=location_id,
            requested=quantity,
            available=available,
        )

    steps: list[ConsumptionStep] = []
    outstanding = quantity
    for layer in ordered:
        if outstanding == 0:
            break
        take = min(layer.quantity_remaining, outstanding)
        steps.append(ConsumptionStep(layer.layer_id, take, layer.unit_cost))
        outstanding -= take

    return ConsumptionResult(product_id, location_id, tuple(steps))
