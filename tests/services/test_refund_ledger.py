"""
Refund ledger.

Covers:
- Full refunds flip the payment (and its bill) to REFUNDED
- Partial refunds keep the payment status
- The refund cap: sum of non-cancelled refunds never exceeds the total
- Input validation and refundable-status rule
- The optional approval workflow (pending refunds hold the cap)
"""

from decimal import Decimal

import pytest

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.lifecycle import PaymentStatus
from ledger_kernel.exceptions import (
    BusinessRuleError,
    InvalidAmountError,
    NotFoundError,
    OverRefundError,
    ValidationError,
)
from ledger_services.payment_orchestrator import PaymentOrchestrator


@pytest.fixture
def approval_orchestrator(store, clock, renderer, audit_sink):
    return PaymentOrchestrator(
        store,
        config=LedgerConfig(refund_requires_approval=True),
        clock=clock,
        renderer=renderer,
        audit_sink=audit_sink,
    )


class TestCreateRefund:
    def test_full_refund_marks_payment_refunded(self, orchestrator, ctx, record):
        payment = record().payment

        refund = orchestrator.create_refund(ctx, payment.id, Decimal("1000"), "course withdrawn")

        assert refund.status == "APPROVED"
        assert refund.approved_at is not None
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.REFUNDED
        assert orchestrator.get_bill(ctx, payment.id).status == "REFUNDED"
        actions = [e.action for e in orchestrator.payment_history(ctx, payment.id)]
        assert actions == ["created", "refund_created", "status_changed"]

    def test_partial_refund_keeps_status(self, orchestrator, ctx, record):
        payment = record().payment

        orchestrator.create_refund(ctx, payment.id, Decimal("600"), "overcharge")

        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PAID
        refunds = orchestrator.list_refunds(ctx, payment.id)
        assert [r.amount for r in refunds] == [Decimal("600.00")]

    def test_second_refund_over_cap_rejected(self, orchestrator, ctx, record):
        payment = record().payment
        orchestrator.create_refund(ctx, payment.id, Decimal("600"), "first")

        with pytest.raises(OverRefundError) as exc_info:
            orchestrator.create_refund(ctx, payment.id, Decimal("600"), "second")

        err = exc_info.value
        assert isinstance(err, BusinessRuleError)
        assert err.http_status == 409
        assert err.refundable == Decimal("400.00")
        assert len(orchestrator.list_refunds(ctx, payment.id)) == 1

    def test_refunds_up_to_exact_total(self, orchestrator, ctx, record):
        payment = record().payment
        orchestrator.create_refund(ctx, payment.id, Decimal("600"), "first")
        orchestrator.create_refund(ctx, payment.id, Decimal("400"), "rest")
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.REFUNDED

    def test_amount_above_total_is_validation_error(self, orchestrator, ctx, record):
        payment = record().payment
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_refund(ctx, payment.id, Decimal("1000.01"), "too much")
        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount(self, orchestrator, ctx, record, amount):
        payment = record().payment
        with pytest.raises(InvalidAmountError):
            orchestrator.create_refund(ctx, payment.id, amount, "bad")

    def test_reason_required(self, orchestrator, ctx, record):
        payment = record().payment
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.create_refund(ctx, payment.id, Decimal("10"), " ")
        assert exc_info.value.field == "reason"

    def test_unpaid_payment_not_refundable(self, orchestrator, ctx, record):
        payment = record(status="UNPAID").payment
        with pytest.raises(BusinessRuleError) as exc_info:
            orchestrator.create_refund(ctx, payment.id, Decimal("10"), "nothing collected")
        assert not isinstance(exc_info.value, OverRefundError)

    def test_missing_payment(self, orchestrator, ctx):
        with pytest.raises(NotFoundError):
            orchestrator.create_refund(ctx, 12345, Decimal("10"), "ghost")


class TestApprovalWorkflow:
    def test_pending_refund_holds_the_cap(self, approval_orchestrator, ctx, make_draft):
        payment = approval_orchestrator.record_payment(ctx, make_draft()).payment

        pending = approval_orchestrator.create_refund(ctx, payment.id, Decimal("700"), "awaiting approval")

        assert pending.status == "PENDING"
        assert approval_orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PAID
        with pytest.raises(OverRefundError):
            approval_orchestrator.create_refund(ctx, payment.id, Decimal("400"), "second")

    def test_cancelled_refund_frees_the_cap(self, approval_orchestrator, ctx, make_draft):
        payment = approval_orchestrator.record_payment(ctx, make_draft()).payment
        pending = approval_orchestrator.create_refund(ctx, payment.id, Decimal("700"), "first")

        cancelled = approval_orchestrator.cancel_refund(ctx, pending.id, "raised in error")

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancelled_at is not None
        again = approval_orchestrator.create_refund(ctx, payment.id, Decimal("1000"), "correct amount")
        assert again.status == "PENDING"

    def test_approving_full_refund_flips_status(self, approval_orchestrator, ctx, make_draft):
        payment = approval_orchestrator.record_payment(ctx, make_draft()).payment
        pending = approval_orchestrator.create_refund(ctx, payment.id, Decimal("1000"), "withdrawn")

        approved = approval_orchestrator.approve_refund(ctx, pending.id)

        assert approved.status == "APPROVED"
        assert approval_orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.REFUNDED

    def test_only_pending_refunds_move(self, approval_orchestrator, ctx, make_draft):
        payment = approval_orchestrator.record_payment(ctx, make_draft()).payment
        refund = approval_orchestrator.create_refund(ctx, payment.id, Decimal("100"), "partial")
        approval_orchestrator.approve_refund(ctx, refund.id)

        with pytest.raises(BusinessRuleError):
            approval_orchestrator.approve_refund(ctx, refund.id)
        with pytest.raises(BusinessRuleError):
            approval_orchestrator.cancel_refund(ctx, refund.id, "too late")

    def test_refund_of_other_tenant_not_found(self, approval_orchestrator, ctx, other_ctx, make_draft):
        payment = approval_orchestrator.record_payment(ctx, make_draft()).payment
        refund = approval_orchestrator.create_refund(ctx, payment.id, Decimal("100"), "partial")
        with pytest.raises(NotFoundError):
            approval_orchestrator.approve_refund(other_ctx, refund.id)
