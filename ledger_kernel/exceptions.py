"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the payment core must react to failures precisely: an over-refund
is a 409 the operator can explain, a malformed amount is a 400 the client can
fix, a signature mismatch on a webhook is a security event.  Parsing message
strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has an HTTP_STATUS attribute for the HTTP-facing layer
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        refunds.create_refund(ctx, payment_id, Decimal("600"), "duplicate fee")
    except OverRefundError as e:
        api_response(
            status=e.http_status,
            code=e.code,
            refundable=str(e.refundable),
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError                 400  malformed / out-of-range input
    |   +-- InvalidAmountError               negative amount or total
    |
    +-- NotFoundError                   404  absent, other tenant, soft-deleted
    |
    +-- BusinessRuleError               409  invariant violation
    |   +-- ImmutableStateError              monetary edit after settlement
    |   +-- InvalidTransitionError           state machine rejected transition
    |   +-- OverRefundError                  refund sum would exceed total
    |
    +-- ConflictError                   409  document number collision (retried)
    |
    +-- GatewayError                    502  external processor failure
    |   +-- GatewayTimeoutError              bounded timeout elapsed
    |
    +-- SecurityError                   400  webhook signature / replay mismatch
    |
    +-- ImmutabilityViolationError      500  attempted UPDATE/DELETE of history

===============================================================================
PROPAGATION
===============================================================================

- ValidationError / BusinessRuleError / NotFoundError are raised to the caller
  synchronously and roll back the surrounding transaction.
- ConflictError is retried inside the sequence service before surfacing.
- GatewayError is absorbed at the gateway boundary: the payment is left FAILED
  and the error is reported on the result object.
- Document rendering failures never raise; they are reported as a
  partial-success flag.
===============================================================================
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have `code` and `http_status` class attributes.
    """

    code: str = "LEDGER_ERROR"
    http_status: int = 500


# Validation


class ValidationError(LedgerError):
    """Input is malformed or out of range; the caller can correct it."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        self.detail = message
        super().__init__(f"{field}: {message}" if field else message)


class InvalidAmountError(ValidationError):
    """A monetary amount or derived total is negative or not a number."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, message: str, field: str | None = None, value: str | None = None):
        self.value = value
        super().__init__(message, field=field)


# Lookup


class NotFoundError(LedgerError):
    """Referenced entity is absent, soft-deleted, or belongs to another tenant."""

    code: str = "NOT_FOUND"
    http_status: int = 404

    def __init__(self, entity_type: str, entity_id: int | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Business rules


class BusinessRuleError(LedgerError):
    """A ledger invariant would be violated by the requested change."""

    code: str = "BUSINESS_RULE_VIOLATION"
    http_status: int = 409

    def __init__(self, message: str, entity_id: int | str | None = None):
        self.entity_id = entity_id
        self.detail = message
        super().__init__(message)


class ImmutableStateError(BusinessRuleError):
    """Monetary fields of a settled payment cannot be edited."""

    code: str = "IMMUTABLE_STATE"

    def __init__(self, payment_id: int, status: str, fields: list[str]):
        self.payment_id = payment_id
        self.status = status
        self.fields = fields
        super().__init__(
            f"Payment {payment_id} is {status}; cannot modify {', '.join(fields)}",
            entity_id=payment_id,
        )


class InvalidTransitionError(BusinessRuleError):
    """The payment state machine does not allow this transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, payment_id: int, from_status: str, to_status: str):
        self.payment_id = payment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payment {payment_id}: transition {from_status} -> {to_status} not allowed",
            entity_id=payment_id,
        )


class OverRefundError(BusinessRuleError):
    """The refund would push the refunded sum above the payment total."""

    code: str = "OVER_REFUND"

    def __init__(
        self,
        payment_id: int,
        requested: Decimal,
        already_refunded: Decimal,
        total: Decimal,
    ):
        self.payment_id = payment_id
        self.requested = requested
        self.already_refunded = already_refunded
        self.total = total
        self.refundable = total - already_refunded
        super().__init__(
            f"Refund of {requested} on payment {payment_id} exceeds refundable "
            f"amount {self.refundable} (total={total}, refunded={already_refunded})",
            entity_id=payment_id,
        )


# Concurrency


class ConflictError(LedgerError):
    """Document number allocation kept colliding after every retry attempt."""

    code: str = "SEQUENCE_CONFLICT"
    http_status: int = 409

    def __init__(self, tenant_id: int, prefix: str, attempts: int):
        self.tenant_id = tenant_id
        self.prefix = prefix
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique {prefix} number for tenant {tenant_id} "
            f"after {attempts} attempts"
        )


# External processor


class GatewayError(LedgerError):
    """The external payment processor failed or declined the submission."""

    code: str = "GATEWAY_ERROR"
    http_status: int = 502

    def __init__(self, gateway: str, message: str, payment_id: int | None = None):
        self.gateway = gateway
        self.payment_id = payment_id
        self.detail = message
        super().__init__(f"Gateway {gateway} error: {message}")


class GatewayTimeoutError(GatewayError):
    """The processor did not answer within the configured timeout."""

    code: str = "GATEWAY_TIMEOUT"

    def __init__(self, gateway: str, timeout_seconds: float, payment_id: int | None = None):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            gateway,
            f"no response within {timeout_seconds}s",
            payment_id=payment_id,
        )


# Security


class SecurityError(LedgerError):
    """Webhook signature is missing, wrong, or the event id was reused."""

    code: str = "SIGNATURE_MISMATCH"
    http_status: int = 400

    def __init__(self, gateway: str, reason: str):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"Webhook from {gateway} rejected: {reason}")


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempted to modify or physically delete a historical record."""

    code: str = "IMMUTABILITY_VIOLATION"
    http_status: int = 500

    def __init__(self, entity_type: str, entity_id: int | str | None, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


def http_status_for(exc: BaseException) -> int:
    """Map an exception to the status code the HTTP layer should return."""
    if isinstance(exc, LedgerError):
        return exc.http_status
    return 500
