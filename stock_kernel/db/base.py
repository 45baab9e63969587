"""
Module: stock_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the portable column types (UUID, UTC
    timestamps, exact quantities) and the TrackedBase mixin for audit fields.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Exact quantities: Decimal maps to QuantityType, which is Numeric(38, 9)
      on PostgreSQL and a canonical decimal string on SQLite.  No quantity
      ever passes through a float.
    - UTC timestamps: datetime maps to UTCDateTime, which always hands back
      timezone-aware UTC values regardless of backend.

Failure modes:
    - ValueError if a non-Decimal-convertible value is bound to a quantity
      column.

Audit relevance:
    created_at / created_by_id on every tracked row identify who introduced
    it and when.  Movement rows carry their own actor column as well.
"""

from datetime import UTC, datetime
from decimal import Decimal, localcontext
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Actor recorded when a caller does not identify itself.
SYSTEM_ACTOR_ID = PyUUID(int=0)

QUANTITY_PRECISION = 38
QUANTITY_SCALE = 9


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
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


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that is always UTC on the way in and out.

    SQLite has no timezone storage, so values are written as naive UTC and
    re-tagged on load.  PostgreSQL stores TIMESTAMPTZ natively.
    Naive datetimes bound by callers are interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class QuantityType(TypeDecorator):
    """
    Exact decimal quantity.

    Contract:
        Numeric(38, 9) on PostgreSQL.  On SQLite the value is stored as a
        canonical decimal string because SQLite's NUMERIC affinity round
        trips through a double.

    Non-goals:
        Quantity columns are not compared or summed in SQL; aggregation
        happens in Python on Decimal values.
    """

    impl = Numeric(QUANTITY_PRECISION, QUANTITY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(
            Numeric(QUANTITY_PRECISION, QUANTITY_SCALE, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        with localcontext() as ctx:
            ctx.prec = QUANTITY_PRECISION
            value = value.quantize(Decimal(1).scaleb(-QUANTITY_SCALE))
        if dialect.name == "sqlite":
            return format(value, "f")
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to QuantityType (exact, 9 decimal places).
        - datetime maps to UTCDateTime (always timezone-aware UTC).
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: QuantityType(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Guarantees:
        - created_at is set on INSERT and never changes.
        - updated_at auto-updates on every UPDATE.
        - created_by_id is required (NOT NULL).
        - updated_by_id is nullable.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
        default=lambda: SYSTEM_ACTOR_ID,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


# Re-export UUID for convenience
UUID = PyUUID
