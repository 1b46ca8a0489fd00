"""
Module: ledger_kernel.models.bill
Responsibility: ORM persistence for the Bill companion of a payment and the
    references to its rendered documents.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one Bill per payment (unique payment_id).
    - bill_number unique per tenant (uq_bill_tenant_number).
    - Bill status mirrors the payment status (see lifecycle.bill_status_for).
"""

from decimal import Decimal

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, IdType, TrackedBase


class Bill(TrackedBase):
    __tablename__ = "bills"

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_bill_payment"),
        UniqueConstraint("tenant_id", "bill_number", name="uq_bill_tenant_number"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    payment_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("payments.id"), nullable=False
    )
    bill_number: Mapped[str] = mapped_column(String(40), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Bill {self.bill_number} {self.status}>"


class BillArtifact(Base):
    """A rendered receipt or bill document, stored externally."""

    __tablename__ = "bill_artifacts"

    bill_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("bills.id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    template_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
