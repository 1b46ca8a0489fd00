"""
Module: ledger_kernel.models.document_number
Responsibility: Storage for human-readable document numbering.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Every issued number is registered once: UNIQUE (tenant_id, prefix,
      number).  This constraint, not the counter, is the final guard
      against duplicate receipts and bills.
    - One counter row per (tenant_id, prefix, year).
"""

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class DocumentNumber(Base):
    """Registry of every issued document number."""

    __tablename__ = "document_numbers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "prefix", "number", name="uq_document_number"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    number: Mapped[str] = mapped_column(String(40), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)


class SequenceCounter(Base):
    """
    Per-scope counter row.

    Row-level locking on this row serializes allocation within one
    tenant/prefix/year.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "prefix", "year", name="uq_sequence_scope"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(nullable=False)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)
