"""Exception hierarchy: codes, HTTP mapping and structured attributes."""

from decimal import Decimal

import pytest

from ledger_kernel.exceptions import (
    BusinessRuleError,
    ConflictError,
    GatewayError,
    GatewayTimeoutError,
    ImmutableStateError,
    InvalidAmountError,
    LedgerError,
    NotFoundError,
    OverRefundError,
    SecurityError,
    ValidationError,
    http_status_for,
)


@pytest.mark.parametrize(
    "exc, status",
    [
        (ValidationError("bad"), 400),
        (InvalidAmountError("bad", field="amount"), 400),
        (NotFoundError("Payment", 1), 404),
        (BusinessRuleError("nope"), 409),
        (ImmutableStateError(1, "PAID", ["amount"]), 409),
        (OverRefundError(1, Decimal("600"), Decimal("600"), Decimal("1000")), 409),
        (ConflictError(1, "RCP", 5), 409),
        (SecurityError("STRIPE", "signature mismatch"), 400),
        (GatewayError("STRIPE", "declined"), 502),
        (GatewayTimeoutError("STRIPE", 30), 502),
        (RuntimeError("boom"), 500),
    ],
)
def test_http_status_mapping(exc, status):
    assert http_status_for(exc) == status


def test_all_ledger_errors_carry_a_code():
    for exc in (
        ValidationError("x"),
        NotFoundError("Refund", 3),
        ConflictError(1, "BILL", 5),
        SecurityError("STRIPE", "x"),
    ):
        assert isinstance(exc, LedgerError)
        assert exc.code and exc.code.isupper()


def test_over_refund_reports_refundable_remainder():
    err = OverRefundError(7, Decimal("600"), Decimal("600"), Decimal("1000"))
    assert isinstance(err, BusinessRuleError)
    assert err.refundable == Decimal("400")
    assert err.code == "OVER_REFUND"


def test_immutable_state_lists_fields():
    err = ImmutableStateError(3, "PAID", ["amount", "fine"])
    assert err.fields == ["amount", "fine"]
    assert err.status == "PAID"


def test_timeout_is_a_gateway_error():
    err = GatewayTimeoutError("STRIPE", 30, payment_id=5)
    assert isinstance(err, GatewayError)
    assert err.code == "GATEWAY_TIMEOUT"
    assert err.payment_id == 5
