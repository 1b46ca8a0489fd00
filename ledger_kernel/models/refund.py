"""
Module: ledger_kernel.models.refund
Responsibility: ORM persistence for refunds against a payment.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount > 0 (CHECK constraint).
    - sum(amount) over non-cancelled refunds of a payment <= payment.total.
      Enforced by RefundLedgerService under the payment row lock; there is
      no cross-row CHECK for it.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import IdType, TrackedBase


class RefundStatus(str, Enum):
    """
    PENDING -> APPROVED | CANCELLED.  APPROVED and CANCELLED are terminal.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"


# Statuses that count against the refund cap.
ACTIVE_REFUND_STATUSES = (RefundStatus.PENDING.value, RefundStatus.APPROVED.value)


class Refund(TrackedBase):
    """Money returned (or to be returned) against one payment."""

    __tablename__ = "refunds"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_refund_amount_positive"),
        Index("idx_refund_payment_status", "payment_id", "status"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    payment_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("payments.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[int | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Refund {self.id} payment={self.payment_id} {self.amount} {self.status}>"
