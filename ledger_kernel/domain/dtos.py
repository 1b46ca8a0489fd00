"""
DTOs -- immutable data structures that cross the kernel boundary.

Responsibility:
    RequestContext (trusted caller identity), PaymentDraft (input to payment
    creation), LifecycleEvent (what happened, queued for after-commit
    dispatch) and the read-side snapshots returned to callers.

Architecture position:
    Kernel > Domain -- pure, no ORM or database access.  from_model()
    converters are only invoked from services and selectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ledger_kernel.domain.lifecycle import PaymentStatus

if TYPE_CHECKING:
    from ledger_kernel.models.installment import Installment
    from ledger_kernel.models.payment import Payment
    from ledger_kernel.models.refund import Refund

SYSTEM_ACTOR_ID = 0


@dataclass(frozen=True)
class RequestContext:
    """
    Resolved caller identity.

    Authentication and authorization happen outside the ledger; these values
    are trusted as given.
    """

    tenant_id: int
    actor_id: int
    role: str = "admin"
    ip_address: str | None = None
    user_agent: str | None = None
    correlation_id: str | None = None

    @classmethod
    def system(cls, tenant_id: int, role: str = "system", correlation_id: str | None = None) -> RequestContext:
        """Context for changes the ledger makes on its own behalf (webhooks, sweeps)."""
        return cls(
            tenant_id=tenant_id,
            actor_id=SYSTEM_ACTOR_ID,
            role=role,
            correlation_id=correlation_id,
        )


@dataclass(frozen=True)
class PaymentDraft:
    """Input for recording a new payment."""

    amount: Decimal
    method: str
    discount: Decimal = Decimal("0")
    fine: Decimal | None = None
    payment_date: datetime | None = None
    due_date: date | None = None
    gateway: str | None = None
    status: str | None = None
    payment_type: str | None = None
    student_id: int | None = None
    guardian_id: int | None = None
    description: str | None = None
    remarks: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LifecycleEvent:
    """
    Something that happened to a payment, dispatched after commit.

    Consumers (audit sink, notifications) are fire-and-forget; a failure to
    deliver never affects the ledger.
    """

    event_type: str
    tenant_id: int
    payment_id: int
    actor_id: int | None
    occurred_at: datetime
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentView:
    """Read-only snapshot of a payment, safe to cache and hand to callers."""

    id: int
    tenant_id: int
    receipt_number: str
    amount: Decimal
    discount: Decimal
    fine: Decimal
    total: Decimal
    status: PaymentStatus
    method: str
    gateway: str | None
    gateway_transaction_id: str | None
    payment_date: datetime
    due_date: date | None
    payment_type: str | None
    student_id: int | None
    guardian_id: int | None
    remarks: str | None
    version: int
    deleted_at: datetime | None

    @classmethod
    def from_model(cls, payment: Payment) -> PaymentView:
        return cls(
            id=payment.id,
            tenant_id=payment.tenant_id,
            receipt_number=payment.receipt_number,
            amount=payment.amount,
            discount=payment.discount,
            fine=payment.fine,
            total=payment.total,
            status=PaymentStatus(payment.status),
            method=payment.method,
            gateway=payment.gateway,
            gateway_transaction_id=payment.gateway_transaction_id,
            payment_date=payment.payment_date,
            due_date=payment.due_date,
            payment_type=payment.payment_type,
            student_id=payment.student_id,
            guardian_id=payment.guardian_id,
            remarks=payment.remarks,
            version=payment.version,
            deleted_at=payment.deleted_at,
        )


@dataclass(frozen=True)
class RefundView:
    id: int
    payment_id: int
    amount: Decimal
    reason: str
    status: str
    remarks: str | None
    created_at: datetime | None
    approved_at: datetime | None
    cancelled_at: datetime | None

    @classmethod
    def from_model(cls, refund: Refund) -> RefundView:
        return cls(
            id=refund.id,
            payment_id=refund.payment_id,
            amount=refund.amount,
            reason=refund.reason,
            status=refund.status,
            remarks=refund.remarks,
            created_at=refund.created_at,
            approved_at=refund.approved_at,
            cancelled_at=refund.cancelled_at,
        )


@dataclass(frozen=True)
class InstallmentView:
    id: int
    payment_id: int
    installment_number: int
    amount: Decimal
    due_date: date
    status: str
    paid_date: datetime | None

    @classmethod
    def from_model(cls, installment: Installment) -> InstallmentView:
        return cls(
            id=installment.id,
            payment_id=installment.payment_id,
            installment_number=installment.installment_number,
            amount=installment.amount,
            due_date=installment.due_date,
            status=installment.status,
            paid_date=installment.paid_date,
        )
