"""
RefundLedgerService -- refunds bounded by what was paid.

Responsibility:
    Records refunds against a payment and moves them through
    PENDING -> APPROVED | CANCELLED.

Architecture position:
    Kernel > Services.  Flushes only; the caller owns the transaction.

Invariants enforced:
    - sum(amount) over non-cancelled refunds of a payment <= payment.total,
      after every insert.  The check reads a fresh SUM inside the same
      transaction while the payment row is locked, so two concurrent refunds
      cannot both pass it with stale sums.  A pending refund already counts
      against the cap.
    - A payment whose approved refunds reach its total is moved to REFUNDED
      through the lifecycle policy (``status_after_refunds``).

Lock order: payment row first, then refund row.
"""

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.calculator import to_money
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import RequestContext
from ledger_kernel.domain.lifecycle import REFUNDABLE_STATUSES, PaymentStatus, status_after_refunds
from ledger_kernel.exceptions import (
    BusinessRuleError,
    InvalidAmountError,
    NotFoundError,
    OverRefundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment import Payment
from ledger_kernel.models.payment_log import PaymentLogAction
from ledger_kernel.models.refund import ACTIVE_REFUND_STATUSES, Refund, RefundStatus
from ledger_kernel.services.lifecycle_service import PaymentLifecycleService
from ledger_kernel.services.payment_log_service import PaymentLogService

logger = get_logger("services.refund")


def _refund_snapshot(refund: Refund) -> dict:
    return {
        "refund_id": refund.id,
        "amount": refund.amount,
        "reason": refund.reason,
        "status": refund.status,
    }


class RefundLedgerService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        lifecycle: PaymentLifecycleService,
        log: PaymentLogService,
        *,
        requires_approval: bool = False,
    ):
        self._session = session
        self._clock = clock
        self._lifecycle = lifecycle
        self._log = log
        self._requires_approval = requires_approval

    def create_refund(
        self,
        ctx: RequestContext,
        payment_id: int,
        amount: Decimal,
        reason: str,
        remarks: str | None = None,
    ) -> Refund:
        """
        Record a refund against ``payment_id``.

        Raises:
            NotFoundError: payment absent, soft-deleted, or another tenant's.
            ValidationError: amount not positive, above the payment total,
                or blank reason.
            BusinessRuleError: payment not in a refundable status.
            OverRefundError: existing refunds plus ``amount`` exceed the total.
        """
        amount = to_money(amount, "amount")
        if amount <= 0:
            raise InvalidAmountError("refund amount must be positive", field="amount", value=str(amount))
        if reason is None or not reason.strip():
            raise ValidationError("a refund reason is required", field="reason")

        payment = self._lifecycle.load_for_update(ctx, payment_id)

        if amount > payment.total:
            raise ValidationError(
                f"refund amount {amount} exceeds payment total {payment.total}",
                field="amount",
            )
        status = PaymentStatus(payment.status)
        if status not in REFUNDABLE_STATUSES:
            raise BusinessRuleError(
                f"payment {payment.id} is {status.value} and cannot be refunded",
                entity_id=payment.id,
            )

        existing = self.refunded_total(payment.id)
        if existing + amount > payment.total:
            logger.warning(
                "refund_rejected_over_cap",
                extra={
                    "payment_id": payment.id,
                    "requested": amount,
                    "already_refunded": existing,
                    "total": payment.total,
                },
            )
            raise OverRefundError(payment.id, amount, existing, payment.total)

        now = self._clock.now()
        approved = not self._requires_approval
        refund = Refund(
            tenant_id=ctx.tenant_id,
            payment_id=payment.id,
            amount=amount,
            reason=reason.strip(),
            remarks=remarks,
            status=(RefundStatus.APPROVED if approved else RefundStatus.PENDING).value,
            approved_at=now if approved else None,
            approved_by_id=ctx.actor_id if approved else None,
            created_by_id=ctx.actor_id,
        )
        self._session.add(refund)
        self._session.flush()

        self._log.record(
            ctx, payment, PaymentLogAction.REFUND_CREATED,
            {"refunded_total": existing},
            {**_refund_snapshot(refund), "refunded_total": existing + amount},
            reason=refund.reason,
        )
        logger.info(
            "refund_created",
            extra={
                "payment_id": payment.id,
                "refund_id": refund.id,
                "amount": amount,
                "refund_status": refund.status,
            },
        )

        if approved:
            self._apply_refund_policy(ctx, payment)
        return refund

    def approve_refund(self, ctx: RequestContext, refund_id: int) -> Refund:
        payment, refund = self._lock_refund(ctx, refund_id)
        if refund.status != RefundStatus.PENDING.value:
            raise BusinessRuleError(
                f"refund {refund.id} is {refund.status}; only pending refunds can be approved",
                entity_id=refund.id,
            )

        before = _refund_snapshot(refund)
        refund.status = RefundStatus.APPROVED.value
        refund.approved_at = self._clock.now()
        refund.approved_by_id = ctx.actor_id
        refund.updated_by_id = ctx.actor_id
        self._session.flush()

        self._log.record(ctx, payment, PaymentLogAction.REFUND_APPROVED, before, _refund_snapshot(refund))
        logger.info("refund_approved", extra={"payment_id": payment.id, "refund_id": refund.id})

        self._apply_refund_policy(ctx, payment)
        return refund

    def cancel_refund(self, ctx: RequestContext, refund_id: int, reason: str) -> Refund:
        """Cancel a pending refund; its amount stops counting against the cap."""
        if reason is None or not reason.strip():
            raise ValidationError("a cancellation reason is required", field="reason")

        payment, refund = self._lock_refund(ctx, refund_id)
        if refund.status != RefundStatus.PENDING.value:
            raise BusinessRuleError(
                f"refund {refund.id} is {refund.status}; only pending refunds can be cancelled",
                entity_id=refund.id,
            )

        before = _refund_snapshot(refund)
        refund.status = RefundStatus.CANCELLED.value
        refund.cancelled_at = self._clock.now()
        refund.cancellation_reason = reason.strip()
        refund.updated_by_id = ctx.actor_id
        self._session.flush()

        self._log.record(
            ctx, payment, PaymentLogAction.REFUND_CANCELLED, before, _refund_snapshot(refund),
            reason=refund.cancellation_reason,
        )
        logger.info("refund_cancelled", extra={"payment_id": payment.id, "refund_id": refund.id})
        return refund

    def refunded_total(
        self,
        payment_id: int,
        statuses: tuple[str, ...] = ACTIVE_REFUND_STATUSES,
    ) -> Decimal:
        """Fresh SUM of refund amounts in ``statuses`` (never cached)."""
        value = self._session.execute(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.payment_id == payment_id,
                Refund.status.in_(statuses),
            )
        ).scalar_one()
        return to_money(value, "refunded_total")

    def refundable_amount(self, payment: Payment) -> Decimal:
        return payment.total - self.refunded_total(payment.id)

    def _apply_refund_policy(self, ctx: RequestContext, payment: Payment) -> None:
        approved = self.refunded_total(payment.id, (RefundStatus.APPROVED.value,))
        target = status_after_refunds(PaymentStatus(payment.status), payment.total, approved)
        if target is not None:
            self._lifecycle.transition(ctx, payment, target, reason="refunded in full")

    def _lock_refund(self, ctx: RequestContext, refund_id: int) -> tuple[Payment, Refund]:
        payment_id = self._session.execute(
            select(Refund.payment_id).where(
                Refund.id == refund_id,
                Refund.tenant_id == ctx.tenant_id,
            )
        ).scalar_one_or_none()
        if payment_id is None:
            raise NotFoundError("Refund", refund_id)

        payment = self._lifecycle.load_for_update(ctx, payment_id)
        refund = self._session.execute(
            select(Refund)
            .where(Refund.id == refund_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        return payment, refund
