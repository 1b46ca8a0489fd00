"""
Module: ledger_kernel.models.payment
Responsibility: ORM persistence for the Payment aggregate root.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - total == amount - discount + fine, never negative (computed by the
      Monetary Calculator before every write; CHECK constraint as backstop).
    - receipt_number unique per tenant (uq_payment_tenant_receipt).
    - gateway_transaction_id unique per gateway (uq_payment_gateway_txn).
    - Never physically deleted; deleted_at is the tombstone.
    - version increments on every mutation and orders the payment's log.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class Payment(TrackedBase):
    """A monetary obligation and its collection state, scoped to one tenant."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("tenant_id", "receipt_number", name="uq_payment_tenant_receipt"),
        UniqueConstraint("gateway", "gateway_transaction_id", name="uq_payment_gateway_txn"),
        CheckConstraint("total >= 0", name="ck_payment_total_non_negative"),
        CheckConstraint(
            "amount >= 0 AND discount >= 0 AND fine >= 0",
            name="ck_payment_amounts_non_negative",
        ),
        Index("idx_payment_tenant_status", "tenant_id", "status"),
        Index("idx_payment_tenant_due", "tenant_id", "due_date"),
        Index("idx_payment_student", "tenant_id", "student_id"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    receipt_number: Mapped[str] = mapped_column(String(40), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    fine: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    gateway: Mapped[str | None] = mapped_column(String(30), nullable=True)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    payment_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    student_id: Mapped[int | None] = mapped_column(nullable=True)
    guardian_id: Mapped[int | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=0)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Payment {self.receipt_number} {self.status} total={self.total}>"
