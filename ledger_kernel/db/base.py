"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map, and
    the TenantScopedBase mixin carrying tenant and audit timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated key, so
      row identity never depends on insertion order or node.
    - Integer money: int maps to BigInteger.  Monetary columns hold minor
      units; there is no Numeric/float money column anywhere.
    - Tenant scoping: every tenant-owned row carries a NOT NULL tenant_id.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Converts between Python UUID objects and their 36-character string form.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - int maps to BigInteger (minor units, sequences, quantities).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TenantScopedBase(Base):
    """
    Abstract base for tenant-owned rows with audit metadata.

    Contract:
        tenant_id is always supplied by the caller's OperationContext; the
        kernel never infers or defaults it.  created_at/updated_at and the
        actor columns are audit metadata, not financial data, so they may
        change even on otherwise immutable records.
    """

    __abstract__ = True

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    updated_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )


# Re-export UUID for convenience
UUID = PyUUID

# Columns that may change on any row without touching financial data
AUDIT_METADATA_FIELDS: frozenset[str] = frozenset({"updated_at", "updated_by"})

# Upper bound for any BIGINT-backed value (money, quantities)
BIGINT_MAX = 2**63 - 1
BIGINT_MIN = -(2**63)
