"""
Payment lifecycle -- state table and status-derivation policies.

State machine (initial PENDING or PAID; terminal CANCELLED, VOIDED, REFUNDED):

    PENDING        -> PROCESSING | PAID | PARTIALLY_PAID | UNPAID | OVERDUE | FAILED
    PROCESSING     -> PAID | FAILED
    UNPAID         -> PROCESSING | PAID | PARTIALLY_PAID | OVERDUE
    OVERDUE        -> PROCESSING | PAID | PARTIALLY_PAID
    PARTIALLY_PAID -> PAID | OVERDUE | REFUNDED | DISPUTED
    PAID           -> REFUNDED | DISPUTED
    FAILED         -> PENDING | PROCESSING
    DISPUTED       -> PAID | REFUNDED
    (every non-terminal state) -> CANCELLED | VOIDED

Nothing leaves a terminal state.  That is what makes a gateway success
arriving after an administrative cancel a rejected transition rather than a
race the clock decides.

The rules that derive a payment's status from its children (refunds,
installments) live in exactly one function each, so the business decision
can change without touching the table.
"""

from decimal import Decimal
from enum import Enum

from ledger_kernel.exceptions import InvalidTransitionError, ValidationError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    UNPAID = "UNPAID"
    OVERDUE = "OVERDUE"
    FAILED = "FAILED"
    DISPUTED = "DISPUTED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    VOIDED = "VOIDED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_PAYMENT = "MOBILE_PAYMENT"
    CHECK = "CHECK"
    SCHOLARSHIP = "SCHOLARSHIP"
    CRYPTO = "CRYPTO"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    INSTALLMENT = "INSTALLMENT"
    GRANT = "GRANT"


class Gateway(str, Enum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    SQUARE = "SQUARE"
    RAZORPAY = "RAZORPAY"
    PAYTM = "PAYTM"
    CASHFREE = "CASHFREE"
    CUSTOM = "CUSTOM"


class BillStatus(str, Enum):
    ISSUED = "ISSUED"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.CANCELLED,
    PaymentStatus.VOIDED,
    PaymentStatus.REFUNDED,
})

_ADMIN_EXITS = frozenset({PaymentStatus.CANCELLED, PaymentStatus.VOIDED})

VALID_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID,
        PaymentStatus.UNPAID, PaymentStatus.OVERDUE, PaymentStatus.FAILED,
    }) | _ADMIN_EXITS,
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.PAID, PaymentStatus.FAILED,
    }) | _ADMIN_EXITS,
    PaymentStatus.UNPAID: frozenset({
        PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID,
        PaymentStatus.OVERDUE,
    }) | _ADMIN_EXITS,
    PaymentStatus.OVERDUE: frozenset({
        PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID,
    }) | _ADMIN_EXITS,
    PaymentStatus.PARTIALLY_PAID: frozenset({
        PaymentStatus.PAID, PaymentStatus.OVERDUE, PaymentStatus.REFUNDED,
        PaymentStatus.DISPUTED,
    }) | _ADMIN_EXITS,
    PaymentStatus.PAID: frozenset({
        PaymentStatus.REFUNDED, PaymentStatus.DISPUTED,
    }) | _ADMIN_EXITS,
    PaymentStatus.FAILED: frozenset({
        PaymentStatus.PENDING, PaymentStatus.PROCESSING,
    }) | _ADMIN_EXITS,
    PaymentStatus.DISPUTED: frozenset({
        PaymentStatus.PAID, PaymentStatus.REFUNDED,
    }) | _ADMIN_EXITS,
    # Terminal states -- no transitions allowed
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.VOIDED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Statuses a caller may request when recording a new payment.
INITIAL_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_PAID,
    PaymentStatus.UNPAID,
    PaymentStatus.OVERDUE,
})

REFUNDABLE_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_PAID,
})

# Once settled, amount/discount/fine are frozen.
MONEY_LOCKED_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.REFUNDED,
})

# Methods that settle through an external processor, and the processors each
# one may use.  Methods absent from this map are offline.
METHOD_GATEWAYS: dict[PaymentMethod, frozenset[Gateway]] = {
    PaymentMethod.CARD: frozenset({Gateway.STRIPE, Gateway.PAYPAL, Gateway.SQUARE}),
    PaymentMethod.MOBILE_PAYMENT: frozenset({Gateway.PAYTM, Gateway.CASHFREE}),
    PaymentMethod.BANK_TRANSFER: frozenset({Gateway.CUSTOM}),
    PaymentMethod.CRYPTO: frozenset({Gateway.CUSTOM}),
    PaymentMethod.DIGITAL_WALLET: frozenset({Gateway.CUSTOM}),
}


def parse_status(value: str | PaymentStatus) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError(f"unknown payment status {value!r}", field="status") from None


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def validate_transition(payment_id: int, current: PaymentStatus, target: PaymentStatus) -> None:
    """
    Raises:
        InvalidTransitionError: if the table does not allow current -> target.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(payment_id, current.value, target.value)


def validate_method_gateway(
    method: str | PaymentMethod,
    gateway: str | Gateway | None,
) -> tuple[PaymentMethod, Gateway | None]:
    """
    Check method/gateway compatibility and return the parsed pair.

    Gateway-backed methods require one of their processors.  Offline methods
    (cash, check, scholarship, grant, installment) take no gateway.
    """
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"unknown payment method {method!r}", field="method") from None

    if gateway is not None:
        try:
            gateway = Gateway(gateway)
        except ValueError:
            raise ValidationError(f"unknown gateway {gateway!r}", field="gateway") from None

    allowed = METHOD_GATEWAYS.get(method)
    if allowed is None:
        if gateway is not None:
            raise ValidationError(
                f"method {method.value} does not use a gateway", field="gateway"
            )
    elif gateway not in allowed:
        raise ValidationError(
            f"method {method.value} requires one of "
            f"{', '.join(sorted(g.value for g in allowed))}",
            field="gateway",
        )
    return method, gateway


def initial_status(
    gateway: Gateway | None,
    requested: str | PaymentStatus | None = None,
) -> PaymentStatus:
    """
    Status a new payment starts in.

    Offline payments are collected on the spot and start PAID; gateway-backed
    payments start PENDING until the processor answers.  An explicit request
    is honoured when it is a valid starting status.
    """
    if requested is not None:
        status = parse_status(requested)
        if status not in INITIAL_STATUSES:
            raise ValidationError(
                f"payment cannot be created as {status.value}", field="status"
            )
        if gateway is not None and status is not PaymentStatus.PENDING:
            raise ValidationError(
                "gateway-backed payments start PENDING", field="status"
            )
        return status
    return PaymentStatus.PENDING if gateway is not None else PaymentStatus.PAID


def status_after_refunds(
    current: PaymentStatus,
    total: Decimal,
    approved_refunds: Decimal,
) -> PaymentStatus | None:
    """
    Status a payment should move to after its approved refund sum changed.

    Returns None for "no change".  Only a full refund flips the status; a
    partially refunded payment keeps its PAID/PARTIALLY_PAID status.
    """
    if current in REFUNDABLE_STATUSES and total > 0 and approved_refunds >= total:
        return PaymentStatus.REFUNDED
    return None


def status_after_installments(
    current: PaymentStatus,
    paid_count: int,
    total_count: int,
) -> PaymentStatus | None:
    """
    Status a payment should move to after one of its installments was paid.

    Returns None for "no change".  Paying every installment does not settle
    the parent payment; settlement stays an explicit status change.
    """
    return None


def bill_status_for(status: PaymentStatus) -> BillStatus:
    """Bill status mirroring a payment status."""
    if status is PaymentStatus.PAID:
        return BillStatus.PAID
    if status is PaymentStatus.REFUNDED:
        return BillStatus.REFUNDED
    if status in _ADMIN_EXITS:
        return BillStatus.CANCELLED
    return BillStatus.ISSUED
