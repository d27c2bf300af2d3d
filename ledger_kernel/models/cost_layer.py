"""
Module: ledger_kernel.models.cost_layer
Responsibility: ORM persistence for FIFO cost layers and for the
    consumption steps drawn from them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - original_quantity > 0 and 0 <= quantity_remaining <= original_quantity
      (CHECK constraints).
    - unit_cost >= 0 (CHECK constraint; zero for donated/sample stock).
    - quantity_remaining is non-increasing; every other layer column is
      frozen at creation (db/immutability.py).
    - (tenant_id, layer_seq) is unique, so (received_at, layer_seq) is a
      strict total order over a tenant's layers.
    - Layers and consumption rows are never deleted.  A depleted layer
      stays with quantity_remaining = 0.

Failure modes:
    - IntegrityError on a CHECK violation.
    - StaleDataError (translated to OptimisticLockError) when two sessions
      decrement the same layer from the same starting version.

Audit relevance:
    LayerConsumption rows record which layer fed which sale, write-off or
    other consumer, at which unit cost.  Sale reversals re-create stock from
    these rows, never by restoring the original layer.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedBase, UUIDString


class CostLayer(TenantScopedBase):
    """
    One batch of stock received at a single unit cost.

    Contract:
        Created by FIFOCostingEngine.add_layer.  The only permitted update is
        a decrement of quantity_remaining by FIFOCostingEngine.consume_layers
        while the row is locked.

    Non-goals:
        - No currency column; unit_cost is in the tenant's ledger currency.
    """

    __tablename__ = "cost_layers"

    __table_args__ = (
        CheckConstraint("original_quantity > 0", name="ck_cost_layer_original_qty"),
        CheckConstraint(
            "quantity_remaining >= 0 AND quantity_remaining <= original_quantity",
            name="ck_cost_layer_remaining",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_cost_layer_unit_cost"),
        UniqueConstraint("tenant_id", "layer_seq", name="uq_cost_layer_tenant_seq"),
        # Query: FIFO walk for one product at one location
        Index(
            "idx_cost_layer_fifo",
            "tenant_id",
            "product_id",
            "location_id",
            "received_at",
            "layer_seq",
        ),
    )

    product_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    location_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    original_quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    quantity_remaining: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Minor units per unit
    unit_cost: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Tie-breaker for equal received_at; insertion order per tenant
    layer_seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    source_kind: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    source_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version_id}

    consumptions: Mapped[list["LayerConsumption"]] = relationship(
        back_populates="layer",
        lazy="select",
        order_by="LayerConsumption.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<CostLayer {self.product_id}@{self.location_id} "
            f"{self.quantity_remaining}/{self.original_quantity} x {self.unit_cost}>"
        )

    @property
    def is_depleted(self) -> bool:
        return self.quantity_remaining == 0

    @property
    def remaining_value(self) -> int:
        return self.quantity_remaining * self.unit_cost


class LayerConsumption(TenantScopedBase):
    """
    One step of a FIFO consumption: ``quantity`` units drawn from ``layer``
    at ``unit_cost`` on behalf of the consumer reference.
    """

    __tablename__ = "layer_consumptions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_layer_consumption_qty"),
        Index("idx_layer_consumption_consumer", "tenant_id", "consumer_kind", "consumer_id"),
        Index("idx_layer_consumption_layer", "layer_id"),
    )

    layer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("cost_layers.id"),
        nullable=False,
    )

    product_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    location_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    unit_cost: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Order of this step within its consume_layers call
    step_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    consumer_kind: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    consumer_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    layer: Mapped["CostLayer"] = relationship(
        back_populates="consumptions",
    )

    def __repr__(self) -> str:
        return f"<LayerConsumption {self.quantity} x {self.unit_cost} from {self.layer_id}>"
