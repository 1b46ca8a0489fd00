"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity       | Rule                                   | Why
-------------|----------------------------------------|------------------------------
PaymentLog   | ALWAYS immutable, never deleted        | Audit trail is append-only
Payment      | Never physically deleted               | Soft delete via deleted_at
Refund       | Never physically deleted               | Historical record of money out
Installment  | Never physically deleted               | Schedule history
Bill         | Never physically deleted               | Issued document numbers

SQLAlchemy fires before_update / before_delete while flushing; the listeners
raise ImmutabilityViolationError before any SQL reaches the database and the
surrounding transaction rolls back.

Raw SQL and bulk statements bypass these listeners.  The ledger services
never issue either against protected tables.

Usage:
    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

    # In tests that need to tamper on purpose:
    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, target, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": target.id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=target.id,
        reason=reason,
    )


def _check_payment_log_update(mapper, connection, target):
    raise _blocked(
        "PaymentLog", target, "UPDATE",
        "Payment log entries are immutable and cannot be modified",
    )


def _check_payment_log_delete(mapper, connection, target):
    raise _blocked(
        "PaymentLog", target, "DELETE",
        "Payment log entries cannot be deleted",
    )


def _make_delete_guard(entity_type: str):
    def _check_delete(mapper, connection, target):
        raise _blocked(
            entity_type, target, "DELETE",
            f"{entity_type} records are never physically deleted",
        )

    _check_delete.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check_delete


_payment_delete = _make_delete_guard("Payment")
_refund_delete = _make_delete_guard("Refund")
_installment_delete = _make_delete_guard("Installment")
_bill_delete = _make_delete_guard("Bill")


def _listener_table():
    from ledger_kernel.models import Bill, Installment, Payment, PaymentLog, Refund

    return [
        (PaymentLog, "before_update", _check_payment_log_update),
        (PaymentLog, "before_delete", _check_payment_log_delete),
        (Payment, "before_delete", _payment_delete),
        (Refund, "before_delete", _refund_delete),
        (Installment, "before_delete", _installment_delete),
        (Bill, "before_delete", _bill_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
