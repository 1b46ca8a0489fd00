"""
Module: ledger_kernel.models.installment
Responsibility: ORM persistence for a payment's installment schedule.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - installment_number is 1-based and unique per payment.
    - sum(amount) over a payment's installments == payment.total at creation.
    - paid_date is set only on the transition to PAID.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import IdType, TrackedBase


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class Installment(TrackedBase):
    """One dated slice of a payment's total."""

    __tablename__ = "installments"

    __table_args__ = (
        UniqueConstraint("payment_id", "installment_number", name="uq_installment_number"),
        Index("idx_installment_due_status", "tenant_id", "status", "due_date"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    payment_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("payments.id"), nullable=False
    )
    installment_number: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Installment {self.payment_id}#{self.installment_number} "
            f"{self.amount} {self.status}>"
        )
