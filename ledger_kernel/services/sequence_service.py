"""
SequenceService -- tenant-scoped monotonic sequence allocation.

Responsibility:
    Provides strictly increasing numbers per (tenant, sequence name) for
    journal entry numbers and cost layer tie-breakers.  The counter lives
    in a durable table so allocation is correct across processes and
    nodes, not only within one interpreter.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerService (entry numbers) and FIFOCostingEngine
    (layer_seq).

Invariants enforced:
    - The aggregate-max-plus-one pattern is never used; the counter row is
      the sole source of truth for the next value.
    - Allocation is one atomic ``UPDATE ... SET current_value =
      current_value + 1 ... RETURNING``.  The row lock it takes serializes
      concurrent allocations for the same tenant and name until commit.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  A rollback returns the value.

Failure modes:
    - Lock wait timeout under extreme contention (surfaces as an
      OperationalError from the driver).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from sqlalchemy import BigInteger, String, UniqueConstraint, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one named sequence for one tenant with its current value.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_sequence_tenant_name"),
    )

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Sequence name (e.g., "journal_entry", "cost_layer")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SequenceService:
    """
    Service for generating transactional, tenant-scoped sequence numbers.

    Contract:
        Accepts a tenant and a sequence name and returns the next strictly
        increasing integer for that pair.

    Guarantees:
        - No value is ever handed out twice for the same (tenant, name),
          whichever node the caller runs on.
        - Sequences of different tenants are independent.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Gapless numbering is not promised; it holds under normal
          operation because rollback also returns the value.
    """

    # Well-known sequence names
    JOURNAL_ENTRY = "journal_entry"
    COST_LAYER = "cost_layer"

    def __init__(self, session: Session):
        self._session = session

    def _ensure_counter(self, tenant_id: str, sequence_name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Sequence allocation is not supported on {dialect}")

        # Racing creators both succeed; only one row is ever written
        stmt = (
            insert(SequenceCounter)
            .values(tenant_id=tenant_id, name=sequence_name, current_value=0)
            .on_conflict_do_nothing(index_elements=["tenant_id", "name"])
        )
        self._session.execute(stmt)

    def next_value(self, tenant_id: str, sequence_name: str) -> int:
        """
        Get the next value for a tenant's named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              committed value for (tenant_id, sequence_name).
            - The counter row stays locked until the transaction completes.
        """
        stmt = (
            update(SequenceCounter)
            .where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.name == sequence_name,
            )
            .values(current_value=SequenceCounter.current_value + 1)
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        )

        value = self._session.execute(stmt).scalar_one_or_none()
        if value is None:
            self._ensure_counter(tenant_id, sequence_name)
            value = self._session.execute(stmt).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"tenant_id": tenant_id, "sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, tenant_id: str, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None if unused."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.name == sequence_name,
            )
        ).scalar_one_or_none()
