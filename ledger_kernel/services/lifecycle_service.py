"""
PaymentLifecycleService -- creates and mutates payment records.

Responsibility:
    Owns every write to a Payment row: creation (total, late fee, receipt
    number), field updates, soft deletion and status transitions.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the unit of work
    in ledger_services owns commit/rollback.

Invariants enforced:
    - Every mutation (a) loads the row ``FOR UPDATE``, (b) applies the
      change, then (c) records it through PaymentLogService, which bumps the
      version, appends the log entry, invalidates the cache and queues the
      lifecycle event.
    - Status changes follow VALID_TRANSITIONS; setting the current status
      again is a no-op that writes nothing.
    - amount/discount/fine are frozen once a payment is settled or closed.

Failure modes:
    - NotFoundError: payment absent, soft-deleted, or another tenant's.
    - ValidationError / InvalidAmountError: malformed input.
    - ImmutableStateError: monetary edit on a settled payment.
    - InvalidTransitionError: transition not in the table.
    - BusinessRuleError: edit would break refunds or an installment schedule.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.calculator import (
    DEFAULT_CAP_RATIO,
    DEFAULT_DAILY_RATE,
    ZERO,
    calculate_late_fee,
    calculate_total,
    to_money,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import PaymentDraft, RequestContext
from ledger_kernel.domain.lifecycle import (
    MONEY_LOCKED_STATUSES,
    TERMINAL_STATUSES,
    PaymentStatus,
    initial_status,
    parse_status,
    validate_method_gateway,
    validate_transition,
)
from ledger_kernel.exceptions import (
    BusinessRuleError,
    ImmutableStateError,
    NotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.installment import Installment
from ledger_kernel.models.payment import Payment
from ledger_kernel.models.payment_log import PaymentLogAction
from ledger_kernel.models.refund import ACTIVE_REFUND_STATUSES, Refund
from ledger_kernel.services.payment_log_service import PaymentLogService, snapshot_payment
from ledger_kernel.services.sequence_service import DocumentSequenceService

if TYPE_CHECKING:
    from ledger_kernel.services.bill_service import BillService

logger = get_logger("services.lifecycle")

MONEY_FIELDS = frozenset({"amount", "discount", "fine"})

UPDATABLE_FIELDS = MONEY_FIELDS | frozenset({
    "payment_date",
    "due_date",
    "payment_type",
    "student_id",
    "guardian_id",
    "remarks",
})

# Money is frozen once settled, and on closed payments too.
_MONEY_FROZEN = MONEY_LOCKED_STATUSES | TERMINAL_STATUSES


@dataclass(frozen=True)
class StatusChange:
    payment: Payment
    previous: PaymentStatus
    current: PaymentStatus

    @property
    def changed(self) -> bool:
        return self.previous is not self.current


def _as_date(value: date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    return value


class PaymentLifecycleService:
    """
    Contract:
        Session-bound; every public mutator expects to run inside a
        transaction owned by the caller.

    Non-goals:
        - Gateway round-trips and document rendering: both happen after
          commit, in ledger_services.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        sequences: DocumentSequenceService,
        log: PaymentLogService,
        bills: "BillService | None" = None,
        *,
        receipt_prefix: str = "RCP",
        late_fee_daily_rate: Decimal = DEFAULT_DAILY_RATE,
        late_fee_cap_ratio: Decimal = DEFAULT_CAP_RATIO,
        apply_late_fee_on_create: bool = True,
    ):
        self._session = session
        self._clock = clock
        self._sequences = sequences
        self._log = log
        self._bills = bills
        self._receipt_prefix = receipt_prefix
        self._daily_rate = late_fee_daily_rate
        self._cap_ratio = late_fee_cap_ratio
        self._apply_late_fee = apply_late_fee_on_create

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_for_update(self, ctx: RequestContext, payment_id: int) -> Payment:
        """
        Lock and return the tenant's live payment.

        Raises:
            NotFoundError: absent, soft-deleted, or another tenant's.
        """
        payment = self._session.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == ctx.tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None or payment.deleted_at is not None:
            raise NotFoundError("Payment", payment_id)
        return payment

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, ctx: RequestContext, draft: PaymentDraft) -> Payment:
        method, gateway = validate_method_gateway(draft.method, draft.gateway)
        amount = to_money(draft.amount, "amount")
        discount = to_money(draft.discount, "discount")
        due_date = _as_date(draft.due_date)

        if draft.fine is not None:
            fine = to_money(draft.fine, "fine")
        elif self._apply_late_fee and due_date is not None:
            fine = calculate_late_fee(
                due_date,
                amount,
                self._clock.today(),
                daily_rate=self._daily_rate,
                cap_ratio=self._cap_ratio,
            )
        else:
            fine = ZERO

        total = calculate_total(amount, discount, fine)
        status = initial_status(gateway, draft.status)
        receipt_number = self._sequences.next_number(ctx.tenant_id, self._receipt_prefix)

        payment = Payment(
            tenant_id=ctx.tenant_id,
            receipt_number=receipt_number,
            amount=amount,
            discount=discount,
            fine=fine,
            total=total,
            payment_date=draft.payment_date or self._clock.now(),
            due_date=due_date,
            status=status.value,
            method=method.value,
            gateway=gateway.value if gateway is not None else None,
            payment_type=draft.payment_type,
            student_id=draft.student_id,
            guardian_id=draft.guardian_id,
            remarks=draft.remarks,
            version=0,
            created_by_id=ctx.actor_id,
        )
        self._session.add(payment)
        self._session.flush()

        self._log.record(ctx, payment, PaymentLogAction.CREATED, None, snapshot_payment(payment))

        logger.info(
            "payment_created",
            extra={
                "payment_id": payment.id,
                "receipt_number": receipt_number,
                "total": total,
                "fine": fine,
                "status": status.value,
                "method": method.value,
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update(self, ctx: RequestContext, payment_id: int, patch: Mapping[str, Any]) -> Payment:
        """
        Apply a partial update.

        Fields not in the patch keep their values; a patch that changes
        nothing writes nothing.  Status changes go through ``set_status``.
        """
        if "status" in patch:
            raise ValidationError("status cannot be patched; use set_status", field="status")
        unknown = sorted(set(patch) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"unknown or read-only fields: {', '.join(unknown)}")

        payment = self.load_for_update(ctx, payment_id)
        status = PaymentStatus(payment.status)

        changes = self._normalise_patch(patch)
        changes = {k: v for k, v in changes.items() if getattr(payment, k) != v}
        if not changes:
            return payment

        money_changes = sorted(MONEY_FIELDS & set(changes))
        if money_changes:
            if status in _MONEY_FROZEN:
                raise ImmutableStateError(payment.id, status.value, money_changes)
            new_total = calculate_total(
                changes.get("amount", payment.amount),
                changes.get("discount", payment.discount),
                changes.get("fine", payment.fine),
            )
            self._check_total_change(payment, new_total)
            changes["total"] = new_total

        before = snapshot_payment(payment)
        for name, value in changes.items():
            setattr(payment, name, value)
        self._log.record(ctx, payment, PaymentLogAction.UPDATED, before, snapshot_payment(payment))

        logger.info(
            "payment_updated",
            extra={"payment_id": payment.id, "fields": sorted(changes)},
        )
        return payment

    def soft_delete(self, ctx: RequestContext, payment_id: int) -> Payment:
        """Tombstone the payment; children stay as historical record."""
        payment = self.load_for_update(ctx, payment_id)
        before = snapshot_payment(payment)
        payment.deleted_at = self._clock.now()
        self._log.record(ctx, payment, PaymentLogAction.DELETED, before, snapshot_payment(payment))
        logger.info("payment_deleted", extra={"payment_id": payment.id})
        return payment

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_status(
        self,
        ctx: RequestContext,
        payment_id: int,
        new_status: str | PaymentStatus,
        reason: str | None = None,
    ) -> StatusChange:
        target = parse_status(new_status)
        payment = self.load_for_update(ctx, payment_id)
        return self.transition(ctx, payment, target, reason)

    def transition(
        self,
        ctx: RequestContext,
        payment: Payment,
        target: PaymentStatus,
        reason: str | None = None,
    ) -> StatusChange:
        """
        Move an already locked payment to ``target``.

        Raises:
            InvalidTransitionError: the table does not allow it.
        """
        current = PaymentStatus(payment.status)
        if current is target:
            return StatusChange(payment, current, current)

        validate_transition(payment.id, current, target)

        before = snapshot_payment(payment)
        payment.status = target.value
        if self._bills is not None:
            self._bills.sync_status(payment)
        self._log.record(
            ctx, payment, PaymentLogAction.STATUS_CHANGED, before, snapshot_payment(payment),
            reason=reason,
        )

        logger.info(
            "payment_status_changed",
            extra={
                "payment_id": payment.id,
                "from_status": current.value,
                "to_status": target.value,
                "reason": reason,
            },
        )
        return StatusChange(payment, current, target)

    def cancel(self, ctx: RequestContext, payment_id: int, reason: str) -> StatusChange:
        return self.set_status(ctx, payment_id, PaymentStatus.CANCELLED, _required_reason(reason))

    def void(self, ctx: RequestContext, payment_id: int, reason: str) -> StatusChange:
        return self.set_status(ctx, payment_id, PaymentStatus.VOIDED, _required_reason(reason))

    def attach_gateway_transaction(
        self,
        ctx: RequestContext,
        payment_id: int,
        transaction_id: str,
    ) -> StatusChange:
        """
        Store the processor's transaction id and move the payment to
        PROCESSING, recorded as a single log entry.
        """
        if not transaction_id:
            raise ValidationError("transaction id is required", field="gateway_transaction_id")

        payment = self.load_for_update(ctx, payment_id)
        current = PaymentStatus(payment.status)
        if current is not PaymentStatus.PROCESSING:
            validate_transition(payment.id, current, PaymentStatus.PROCESSING)

        before = snapshot_payment(payment)
        payment.gateway_transaction_id = transaction_id
        payment.status = PaymentStatus.PROCESSING.value
        if self._bills is not None:
            self._bills.sync_status(payment)
        self._log.record(
            ctx, payment, PaymentLogAction.GATEWAY_SUBMITTED, before, snapshot_payment(payment)
        )

        logger.info(
            "payment_submitted_to_gateway",
            extra={
                "payment_id": payment.id,
                "gateway": payment.gateway,
                "gateway_transaction_id": transaction_id,
            },
        )
        return StatusChange(payment, current, PaymentStatus.PROCESSING)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _normalise_patch(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for name, value in patch.items():
            if name in MONEY_FIELDS:
                changes[name] = to_money(value, name)
            elif name == "due_date":
                changes[name] = _as_date(value)
            elif name == "payment_date":
                if value is None:
                    raise ValidationError("payment_date cannot be cleared", field=name)
                changes[name] = value
            else:
                changes[name] = value
        return changes

    def _check_total_change(self, payment: Payment, new_total: Decimal) -> None:
        refunded = self._session.execute(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.payment_id == payment.id,
                Refund.status.in_(ACTIVE_REFUND_STATUSES),
            )
        ).scalar_one()
        refunded = to_money(refunded, "refunded")
        if new_total < refunded:
            raise BusinessRuleError(
                f"new total {new_total} is below refunded amount {refunded}",
                entity_id=payment.id,
            )

        has_schedule = self._session.execute(
            select(func.count(Installment.id)).where(Installment.payment_id == payment.id)
        ).scalar_one()
        if has_schedule and new_total != payment.total:
            raise BusinessRuleError(
                "total cannot change once an installment schedule exists",
                entity_id=payment.id,
            )


def _required_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("a reason is required", field="reason")
    return reason.strip()
