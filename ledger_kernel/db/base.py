"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the integer primary key convention, type annotation map for consistent column
    types, and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Decimal precision: type_annotation_map maps Python Decimal to
      Numeric(18, 2).  Amounts are single-currency with cent precision.
      NEVER use float for monetary amounts.
    - Timestamps are stored and returned timezone-aware in UTC, including on
      backends (SQLite) that drop the offset.
    - Audit timestamps: TrackedBase provides created_at, updated_at,
      created_by_id, and updated_by_id.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Integer, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# BIGINT on PostgreSQL; plain INTEGER on SQLite so the primary key aliases ROWID
# and autoincrements.
IdType = BigInteger().with_variant(Integer(), "sqlite")

MONEY_PRECISION = 18
MONEY_SCALE = 2


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalised to UTC.

    Guarantees:
        - process_bind_param: naive values are taken as UTC; aware values are
          converted to UTC.
        - process_result_value: values always come back aware (UTC).
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is an autoincrementing integer (tenant-scoped numeric id).
        - Decimal maps to Numeric(18, 2).
        - datetime maps to UTCDateTime, date to Date.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(MONEY_PRECISION, MONEY_SCALE),
        datetime: UTCDateTime(),
        date: Date(),
        int: IdType,
    }

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    created_at/updated_at and the actor columns are audit metadata, not
    ledger data, so they may change on otherwise protected rows.
    """

    __abstract__ = True

    # Load server-generated timestamps at flush so instances stay usable
    # after their session closes.
    __mapper_args__ = {"eager_defaults": True}

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

    created_by_id: Mapped[int] = mapped_column(nullable=False)

    updated_by_id: Mapped[int | None] = mapped_column(nullable=True)
