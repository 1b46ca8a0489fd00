"""
Module: ledger_kernel.selectors.payment_selector
Responsibility: Read-only queries over payments and their children.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain DTOs.  Never adds, flushes, or commits.

All queries are tenant-scoped except ``find_by_gateway_transaction``, which
resolves an inbound webhook to its payment before the tenant is known.
Results are frozen DTOs, never ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.calculator import summarize_payments, to_money
from ledger_kernel.domain.dtos import InstallmentView, PaymentView, RefundView, RequestContext
from ledger_kernel.domain.lifecycle import PaymentStatus, parse_status
from ledger_kernel.exceptions import NotFoundError, ValidationError
from ledger_kernel.models.bill import Bill, BillArtifact
from ledger_kernel.models.installment import Installment
from ledger_kernel.models.payment import Payment
from ledger_kernel.models.payment_log import PaymentLog
from ledger_kernel.models.refund import Refund, RefundStatus

# Statuses still awaiting collection.
OPEN_STATUSES = (
    PaymentStatus.PENDING.value,
    PaymentStatus.UNPAID.value,
    PaymentStatus.OVERDUE.value,
    PaymentStatus.PARTIALLY_PAID.value,
)


@dataclass(frozen=True)
class PaymentFilter:
    status: str | None = None
    method: str | None = None
    gateway: str | None = None
    payment_type: str | None = None
    student_id: int | None = None
    guardian_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    include_deleted: bool = False
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True)
class PaymentLogEntry:
    payment_id: int
    payment_version: int
    action: str
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    reason: str | None
    actor_id: int | None
    ip_address: str | None
    user_agent: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class BillArtifactView:
    kind: str
    template_ref: str
    mime_type: str
    size_bytes: int
    checksum: str
    location: str | None


@dataclass(frozen=True)
class BillView:
    id: int
    payment_id: int
    bill_number: str
    total_amount: Decimal
    status: str
    description: str | None
    artifacts: tuple[BillArtifactView, ...] = ()


@dataclass(frozen=True)
class PaymentSummary:
    count: int
    total: Decimal
    refunded: Decimal
    net: Decimal
    by_status: dict[str, dict[str, Any]] = field(default_factory=dict)


class PaymentSelector:
    def __init__(self, session: Session):
        self.session = session

    def get(self, ctx: RequestContext, payment_id: int, include_deleted: bool = False) -> PaymentView:
        payment = self.session.execute(
            select(Payment).where(Payment.id == payment_id, Payment.tenant_id == ctx.tenant_id)
        ).scalar_one_or_none()
        if payment is None or (payment.deleted_at is not None and not include_deleted):
            raise NotFoundError("Payment", payment_id)
        return PaymentView.from_model(payment)

    def find_by_gateway_transaction(self, gateway: str, transaction_id: str) -> PaymentView | None:
        payment = self.session.execute(
            select(Payment).where(
                Payment.gateway == gateway,
                Payment.gateway_transaction_id == transaction_id,
            )
        ).scalar_one_or_none()
        return PaymentView.from_model(payment) if payment is not None else None

    def list(self, ctx: RequestContext, filters: PaymentFilter | None = None) -> list[PaymentView]:
        filters = filters or PaymentFilter()
        stmt = (
            self._filtered(ctx, filters)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return [PaymentView.from_model(p) for p in self.session.execute(stmt).scalars()]

    def history(self, ctx: RequestContext, payment_id: int) -> list[PaymentLogEntry]:
        """Log entries of the payment, oldest first (deleted payments included)."""
        self.get(ctx, payment_id, include_deleted=True)
        rows = self.session.execute(
            select(PaymentLog)
            .where(PaymentLog.payment_id == payment_id, PaymentLog.tenant_id == ctx.tenant_id)
            .order_by(PaymentLog.payment_version)
        ).scalars()
        return [
            PaymentLogEntry(
                payment_id=row.payment_id,
                payment_version=row.payment_version,
                action=row.action,
                old_value=row.old_value,
                new_value=row.new_value,
                reason=row.reason,
                actor_id=row.actor_id,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
                occurred_at=row.occurred_at,
            )
            for row in rows
        ]

    def refunds(self, ctx: RequestContext, payment_id: int) -> list[RefundView]:
        self.get(ctx, payment_id, include_deleted=True)
        rows = self.session.execute(
            select(Refund)
            .where(Refund.payment_id == payment_id, Refund.tenant_id == ctx.tenant_id)
            .order_by(Refund.id)
        ).scalars()
        return [RefundView.from_model(r) for r in rows]

    def installments(self, ctx: RequestContext, payment_id: int) -> list[InstallmentView]:
        self.get(ctx, payment_id, include_deleted=True)
        rows = self.session.execute(
            select(Installment)
            .where(Installment.payment_id == payment_id, Installment.tenant_id == ctx.tenant_id)
            .order_by(Installment.installment_number)
        ).scalars()
        return [InstallmentView.from_model(i) for i in rows]

    def bill(self, ctx: RequestContext, payment_id: int) -> BillView:
        bill = self.session.execute(
            select(Bill).where(Bill.payment_id == payment_id, Bill.tenant_id == ctx.tenant_id)
        ).scalar_one_or_none()
        if bill is None:
            raise NotFoundError("Bill", f"payment:{payment_id}")
        artifacts = self.session.execute(
            select(BillArtifact).where(BillArtifact.bill_id == bill.id).order_by(BillArtifact.id)
        ).scalars()
        return BillView(
            id=bill.id,
            payment_id=bill.payment_id,
            bill_number=bill.bill_number,
            total_amount=bill.total_amount,
            status=bill.status,
            description=bill.description,
            artifacts=tuple(
                BillArtifactView(
                    kind=a.kind,
                    template_ref=a.template_ref,
                    mime_type=a.mime_type,
                    size_bytes=a.size_bytes,
                    checksum=a.checksum,
                    location=a.location,
                )
                for a in artifacts
            ),
        )

    def overdue(self, ctx: RequestContext, as_of: date) -> list[PaymentView]:
        """Open payments whose due date is before ``as_of``."""
        rows = self.session.execute(
            select(Payment)
            .where(
                Payment.tenant_id == ctx.tenant_id,
                Payment.deleted_at.is_(None),
                Payment.due_date.is_not(None),
                Payment.due_date < as_of,
                Payment.status.in_(OPEN_STATUSES),
            )
            .order_by(Payment.due_date, Payment.id)
        ).scalars()
        return [PaymentView.from_model(p) for p in rows]

    def upcoming(self, ctx: RequestContext, as_of: date, days: int) -> list[PaymentView]:
        """Open payments falling due within ``days`` days of ``as_of``, inclusive."""
        if days < 0:
            raise ValidationError("must be >= 0", field="days")
        rows = self.session.execute(
            select(Payment)
            .where(
                Payment.tenant_id == ctx.tenant_id,
                Payment.deleted_at.is_(None),
                Payment.due_date.is_not(None),
                Payment.due_date >= as_of,
                Payment.due_date <= as_of + timedelta(days=days),
                Payment.status.in_(OPEN_STATUSES),
            )
            .order_by(Payment.due_date, Payment.id)
        ).scalars()
        return [PaymentView.from_model(p) for p in rows]

    def summary(self, ctx: RequestContext, filters: PaymentFilter | None = None) -> PaymentSummary:
        filters = filters or PaymentFilter()
        payments = list(self.session.execute(self._filtered(ctx, filters)).scalars())
        totals = summarize_payments(payments)

        refunded = Decimal("0.00")
        ids = [p.id for p in payments]
        if ids:
            value = self.session.execute(
                select(func.coalesce(func.sum(Refund.amount), 0)).where(
                    Refund.payment_id.in_(ids),
                    Refund.status == RefundStatus.APPROVED.value,
                )
            ).scalar_one()
            refunded = to_money(value, "refunded")

        return PaymentSummary(
            count=totals["count"],
            total=totals["total"],
            refunded=refunded,
            net=totals["total"] - refunded,
            by_status=totals["by_status"],
        )

    def _filtered(self, ctx: RequestContext, filters: PaymentFilter):
        stmt = select(Payment).where(Payment.tenant_id == ctx.tenant_id)
        if not filters.include_deleted:
            stmt = stmt.where(Payment.deleted_at.is_(None))
        if filters.status is not None:
            stmt = stmt.where(Payment.status == parse_status(filters.status).value)
        if filters.method is not None:
            stmt = stmt.where(Payment.method == filters.method)
        if filters.gateway is not None:
            stmt = stmt.where(Payment.gateway == filters.gateway)
        if filters.payment_type is not None:
            stmt = stmt.where(Payment.payment_type == filters.payment_type)
        if filters.student_id is not None:
            stmt = stmt.where(Payment.student_id == filters.student_id)
        if filters.guardian_id is not None:
            stmt = stmt.where(Payment.guardian_id == filters.guardian_id)
        if filters.date_from is not None:
            stmt = stmt.where(Payment.payment_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(Payment.payment_date <= filters.date_to)
        return stmt
