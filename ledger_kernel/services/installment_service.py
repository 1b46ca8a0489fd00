"""
InstallmentSchedulerService -- splits a payment into dated installments.

Invariants enforced:
    - sum(installment.amount) == payment.total when the schedule is created
      (``split_installments`` front-loads the remainder).
    - installment_number runs 1..count, unique per payment.
    - One schedule per payment.
    - paid_date is set only on the transition to PAID.

Paying an installment does not settle its payment; the decision lives in
``lifecycle.status_after_installments``.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.calculator import next_due_date, split_installments
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import RequestContext
from ledger_kernel.domain.lifecycle import (
    TERMINAL_STATUSES,
    PaymentStatus,
    status_after_installments,
)
from ledger_kernel.exceptions import BusinessRuleError, NotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.installment import Installment, InstallmentStatus
from ledger_kernel.models.payment_log import PaymentLogAction
from ledger_kernel.services.lifecycle_service import PaymentLifecycleService
from ledger_kernel.services.payment_log_service import PaymentLogService

logger = get_logger("services.installment")


class InstallmentSchedulerService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        lifecycle: PaymentLifecycleService,
        log: PaymentLogService,
        *,
        default_interval: str | int = "monthly",
        quantum: Decimal = Decimal("1"),
    ):
        self._session = session
        self._clock = clock
        self._lifecycle = lifecycle
        self._log = log
        self._default_interval = default_interval
        self._quantum = quantum

    def create_installments(
        self,
        ctx: RequestContext,
        payment_id: int,
        count: int,
        interval: str | int | None = None,
        first_due_date: date | None = None,
    ) -> list[Installment]:
        """
        Persist ``count`` installments for the payment.

        The first falls due on ``first_due_date``, else the payment's due
        date, else one interval from today.  The rest follow at ``interval``.
        """
        interval = interval if interval is not None else self._default_interval
        payment = self._lifecycle.load_for_update(ctx, payment_id)

        status = PaymentStatus(payment.status)
        if status in TERMINAL_STATUSES:
            raise BusinessRuleError(
                f"payment {payment.id} is {status.value}; cannot schedule installments",
                entity_id=payment.id,
            )
        existing = self._session.execute(
            select(func.count(Installment.id)).where(Installment.payment_id == payment.id)
        ).scalar_one()
        if existing:
            raise BusinessRuleError(
                f"payment {payment.id} already has an installment schedule",
                entity_id=payment.id,
            )

        amounts = split_installments(payment.total, count, self._quantum)
        first = first_due_date or payment.due_date or next_due_date(self._clock.today(), interval)

        installments = [
            Installment(
                tenant_id=ctx.tenant_id,
                payment_id=payment.id,
                installment_number=number,
                amount=amount,
                due_date=first if number == 1 else next_due_date(first, interval, number - 1),
                status=InstallmentStatus.PENDING.value,
                created_by_id=ctx.actor_id,
            )
            for number, amount in enumerate(amounts, start=1)
        ]
        self._session.add_all(installments)
        self._session.flush()

        self._log.record(
            ctx, payment, PaymentLogAction.INSTALLMENTS_CREATED,
            None,
            {
                "count": count,
                "interval": interval,
                "installments": [
                    {"number": i.installment_number, "amount": i.amount, "due_date": i.due_date}
                    for i in installments
                ],
            },
        )
        logger.info(
            "installments_created",
            extra={"payment_id": payment.id, "count": count, "total": payment.total},
        )
        return installments

    def mark_paid(self, ctx: RequestContext, installment_id: int) -> Installment:
        payment_id = self._session.execute(
            select(Installment.payment_id).where(
                Installment.id == installment_id,
                Installment.tenant_id == ctx.tenant_id,
            )
        ).scalar_one_or_none()
        if payment_id is None:
            raise NotFoundError("Installment", installment_id)

        payment = self._lifecycle.load_for_update(ctx, payment_id)
        installment = self._session.execute(
            select(Installment)
            .where(Installment.id == installment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        if installment.status == InstallmentStatus.PAID.value:
            raise BusinessRuleError(
                f"installment {installment.id} is already paid", entity_id=installment.id
            )

        before = {"installment_number": installment.installment_number, "status": installment.status}
        installment.status = InstallmentStatus.PAID.value
        installment.paid_date = self._clock.now()
        installment.updated_by_id = ctx.actor_id
        self._session.flush()

        self._log.record(
            ctx, payment, PaymentLogAction.INSTALLMENT_PAID,
            before,
            {
                "installment_number": installment.installment_number,
                "status": installment.status,
                "amount": installment.amount,
                "paid_date": installment.paid_date,
            },
        )

        paid, total = self._session.execute(
            select(
                func.count(Installment.id).filter(Installment.status == InstallmentStatus.PAID.value),
                func.count(Installment.id),
            ).where(Installment.payment_id == payment.id)
        ).one()
        target = status_after_installments(PaymentStatus(payment.status), paid, total)
        if target is not None:
            self._lifecycle.transition(ctx, payment, target, reason="installments paid")

        logger.info(
            "installment_paid",
            extra={
                "payment_id": payment.id,
                "installment_number": installment.installment_number,
                "paid_count": paid,
                "installment_count": total,
            },
        )
        return installment

    def mark_overdue(self, ctx: RequestContext, as_of: date | None = None) -> list[Installment]:
        """Move the tenant's PENDING installments due before ``as_of`` to OVERDUE."""
        as_of = as_of or self._clock.today()
        installments = list(
            self._session.execute(
                select(Installment)
                .where(
                    Installment.tenant_id == ctx.tenant_id,
                    Installment.status == InstallmentStatus.PENDING.value,
                    Installment.due_date < as_of,
                )
                .order_by(Installment.payment_id, Installment.installment_number)
                .with_for_update()
            ).scalars()
        )
        for installment in installments:
            installment.status = InstallmentStatus.OVERDUE.value
            installment.updated_by_id = ctx.actor_id
        self._session.flush()

        logger.info(
            "installments_marked_overdue",
            extra={"as_of": as_of, "count": len(installments)},
        )
        return installments
