"""
PaymentLogService -- the single write path for payment history.

Responsibility:
    Every payment mutation ends with ``record()``, which in one step bumps
    the payment's version, appends the PaymentLog row carrying before/after
    snapshots and request metadata, invalidates the cached read of the
    payment, and queues a lifecycle event for after-commit dispatch.

Invariants enforced:
    - Log entries of one payment are strictly ordered: the caller holds the
      payment row lock, the version is bumped under it, and
      (payment_id, payment_version) is unique.
    - Log rows are append-only (see db/immutability.py).
"""

from typing import Any

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import LifecycleEvent, RequestContext
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment import Payment
from ledger_kernel.models.payment_log import PaymentLog, PaymentLogAction
from ledger_kernel.services.payment_cache import PaymentCache
from ledger_kernel.services.pending_changes import PendingChanges
from ledger_kernel.utils.hashing import to_json_safe

logger = get_logger("services.payment_log")

SNAPSHOT_FIELDS = (
    "id",
    "tenant_id",
    "receipt_number",
    "amount",
    "discount",
    "fine",
    "total",
    "status",
    "method",
    "gateway",
    "gateway_transaction_id",
    "payment_date",
    "due_date",
    "payment_type",
    "student_id",
    "guardian_id",
    "remarks",
    "deleted_at",
)


def snapshot_payment(payment: Payment) -> dict[str, Any]:
    """JSON-safe copy of the payment's ledger fields."""
    return to_json_safe({name: getattr(payment, name) for name in SNAPSHOT_FIELDS})


class PaymentLogService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        changes: PendingChanges,
        cache: PaymentCache,
    ):
        self._session = session
        self._clock = clock
        self._changes = changes
        self._cache = cache

    def record(
        self,
        ctx: RequestContext,
        payment: Payment,
        action: PaymentLogAction,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        reason: str | None = None,
    ) -> PaymentLog:
        """
        Append a log entry for ``payment``, which the caller has locked.

        Preconditions:
            The payment row was loaded with ``FOR UPDATE`` in this
            transaction (or was inserted by it).
        """
        now = self._clock.now()
        payment.version = (payment.version or 0) + 1
        payment.updated_by_id = ctx.actor_id

        entry = PaymentLog(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            payment_version=payment.version,
            action=action.value,
            old_value=to_json_safe(before) if before is not None else None,
            new_value=to_json_safe(after) if after is not None else None,
            reason=reason,
            actor_id=ctx.actor_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            correlation_id=ctx.correlation_id,
            occurred_at=now,
        )
        self._session.add(entry)
        self._session.flush()

        self._cache.invalidate(payment.tenant_id, payment.id)
        self._changes.emit(
            LifecycleEvent(
                event_type=f"payment.{action.value}",
                tenant_id=payment.tenant_id,
                payment_id=payment.id,
                actor_id=ctx.actor_id,
                occurred_at=now,
                data={
                    "receipt_number": payment.receipt_number,
                    "status": payment.status,
                    "version": payment.version,
                    "reason": reason,
                },
            )
        )

        logger.debug(
            "payment_log_appended",
            extra={
                "payment_id": payment.id,
                "payment_version": payment.version,
                "action": action.value,
            },
        )
        return entry
