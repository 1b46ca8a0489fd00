"""
Module: ledger_kernel.models.payment_log
Responsibility: Append-only audit trail of every payment mutation.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Never updated or deleted (ORM listeners in db/immutability.py raise
      ImmutabilityViolationError).
    - payment_version is unique per payment; entries for one payment are
      strictly ordered because the version is bumped under the payment row
      lock.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, IdType


class PaymentLogAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    DELETED = "deleted"
    REFUND_CREATED = "refund_created"
    REFUND_APPROVED = "refund_approved"
    REFUND_CANCELLED = "refund_cancelled"
    INSTALLMENTS_CREATED = "installments_created"
    INSTALLMENT_PAID = "installment_paid"
    GATEWAY_SUBMITTED = "gateway_submitted"


class PaymentLog(Base):
    __tablename__ = "payment_logs"

    __table_args__ = (
        UniqueConstraint("payment_id", "payment_version", name="uq_payment_log_version"),
    )

    tenant_id: Mapped[int] = mapped_column(nullable=False)
    payment_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("payments.id"), nullable=False, index=True
    )
    payment_version: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    old_value: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    actor_id: Mapped[int | None] = mapped_column(nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentLog {self.payment_id}v{self.payment_version} {self.action}>"
