"""
Gateway submission, webhooks and reconciliation.

Covers:
- Accepted submissions move the payment to PROCESSING with a transaction id
- Declines, client errors and missing clients leave it FAILED without
  undoing the committed payment
- Timeouts leave it PROCESSING
- Webhook signature checks, idempotent replay, payload-mismatch replay
- Success arriving after an administrative cancel is rejected, not applied
- Pull-based reconciliation
"""

import time
from decimal import Decimal

import pytest

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.dtos import SYSTEM_ACTOR_ID
from ledger_kernel.domain.lifecycle import PaymentStatus
from ledger_kernel.exceptions import (
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    SecurityError,
    ValidationError,
)
from ledger_kernel.utils.hashing import sign_payload
from ledger_services.payment_orchestrator import PaymentOrchestrator

WEBHOOK_SECRET = "whsec_test_secret"


def _status_changes(orchestrator, ctx, payment_id):
    return [e for e in orchestrator.payment_history(ctx, payment_id) if e.action == "status_changed"]


class TestSubmit:
    def test_accepted_submission(self, orchestrator, ctx, card_payment, gateway_client):
        payment = card_payment.payment

        assert card_payment.gateway.accepted
        assert card_payment.gateway_error is None
        assert payment.status is PaymentStatus.PROCESSING
        assert payment.gateway_transaction_id == "txn_0001"
        assert gateway_client.requests[0].amount == Decimal("1000.00")
        assert gateway_client.requests[0].receipt_number == payment.receipt_number
        actions = [e.action for e in orchestrator.payment_history(ctx, payment.id)]
        assert actions == ["created", "gateway_submitted"]
        assert orchestrator.get_bill(ctx, payment.id).status == "ISSUED"

    def test_decline_leaves_payment_failed(self, orchestrator, ctx, record, gateway_client):
        gateway_client.mode = "decline"

        result = record(method="CARD", gateway="STRIPE")

        assert isinstance(result.gateway_error, GatewayError)
        assert result.gateway_error.detail == "card declined"
        assert result.payment.status is PaymentStatus.FAILED
        assert orchestrator.get_bill(ctx, result.payment.id).bill_number == result.bill_number

    def test_client_exception_leaves_payment_failed(self, record, gateway_client, captured_logs):
        gateway_client.mode = "error"

        result = record(method="CARD", gateway="STRIPE")

        assert result.payment.status is PaymentStatus.FAILED
        assert "processor unreachable" in result.gateway_error.detail
        assert any(r["message"] == "gateway_submit_failed" for r in captured_logs())

    def test_missing_client_is_a_gateway_error(self, record):
        result = record(method="CARD", gateway="PAYPAL")
        assert result.payment.status is PaymentStatus.FAILED
        assert isinstance(result.gateway_error, GatewayError)

    def test_timeout_leaves_payment_processing(self, store, clock, ctx, gateway_client, make_draft):
        gateway_client.mode = "slow"
        gateway_client.delay = 1.0
        orchestrator = PaymentOrchestrator(
            store,
            config=LedgerConfig(gateway_timeout_seconds=0.1),
            clock=clock,
            gateways={"STRIPE": gateway_client},
        )

        started = time.monotonic()
        result = orchestrator.record_payment(ctx, make_draft(method="CARD", gateway="STRIPE"))

        assert time.monotonic() - started < 1.0
        assert isinstance(result.gateway_error, GatewayTimeoutError)
        assert result.payment.status is PaymentStatus.PROCESSING
        assert result.payment.gateway_transaction_id is None

    def test_resubmit_after_failure(self, orchestrator, ctx, record, gateway_client):
        gateway_client.mode = "decline"
        payment = record(method="CARD", gateway="STRIPE").payment
        gateway_client.mode = "accept"

        outcome = orchestrator.submit_to_gateway(ctx, payment.id)

        assert outcome.succeeded
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PROCESSING

    def test_cash_payment_cannot_be_submitted(self, orchestrator, ctx, record):
        payment = record().payment
        with pytest.raises(ValidationError):
            orchestrator.submit_to_gateway(ctx, payment.id)


class TestWebhooks:
    def test_success_webhook_settles_payment(self, orchestrator, ctx, card_payment, signed_webhook):
        payment = card_payment.payment
        raw, signature = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        result = orchestrator.handle_webhook("stripe", raw, signature)

        assert result.applied
        assert result.outcome == "applied"
        assert result.payment_id == payment.id
        assert result.previous_status is PaymentStatus.PROCESSING
        assert result.new_status is PaymentStatus.PAID
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PAID
        assert orchestrator.get_bill(ctx, payment.id).status == "PAID"
        change = _status_changes(orchestrator, ctx, payment.id)[-1]
        assert change.actor_id == SYSTEM_ACTOR_ID
        assert change.reason == "webhook payment.succeeded"

    def test_failure_webhook(self, orchestrator, ctx, card_payment, signed_webhook):
        raw, signature = signed_webhook("evt_2", "payment.failed", card_payment.payment.gateway_transaction_id)
        result = orchestrator.handle_webhook("STRIPE", raw, signature)
        assert result.new_status is PaymentStatus.FAILED

    def test_replay_applies_once(self, orchestrator, ctx, card_payment, signed_webhook):
        payment = card_payment.payment
        raw, signature = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        first = orchestrator.handle_webhook("STRIPE", raw, signature)
        second = orchestrator.handle_webhook("STRIPE", raw, signature)

        assert first.applied
        assert not second.applied
        assert second.outcome == "applied"
        assert second.payment_id == payment.id
        assert len(_status_changes(orchestrator, ctx, payment.id)) == 1

    def test_replay_with_different_payload_rejected(self, orchestrator, card_payment, signed_webhook):
        txn = card_payment.payment.gateway_transaction_id
        orchestrator.handle_webhook("STRIPE", *signed_webhook("evt_1", "payment.succeeded", txn))

        with pytest.raises(SecurityError):
            orchestrator.handle_webhook("STRIPE", *signed_webhook("evt_1", "payment.refunded", txn))

    def test_bad_signature_changes_nothing(self, orchestrator, ctx, card_payment, signed_webhook, captured_logs):
        payment = card_payment.payment
        raw, _ = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        with pytest.raises(SecurityError) as exc_info:
            orchestrator.handle_webhook("STRIPE", raw, sign_payload("wrong-secret", raw))

        assert exc_info.value.http_status == 400
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PROCESSING
        assert any(r["message"] == "webhook_signature_rejected" for r in captured_logs())
        # The event id was not consumed by the rejected delivery.
        assert orchestrator.handle_webhook("STRIPE", raw, sign_payload(WEBHOOK_SECRET, raw)).applied

    def test_missing_signature(self, orchestrator, card_payment, signed_webhook):
        raw, _ = signed_webhook("evt_1", "payment.succeeded", card_payment.payment.gateway_transaction_id)
        with pytest.raises(SecurityError):
            orchestrator.handle_webhook("STRIPE", raw, None)

    def test_non_ascii_signature_rejected(self, orchestrator, ctx, card_payment, signed_webhook, captured_logs):
        payment = card_payment.payment
        raw, _ = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        with pytest.raises(SecurityError):
            orchestrator.handle_webhook("STRIPE", raw, "é" * 64)

        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PROCESSING
        assert any(r["message"] == "webhook_signature_rejected" for r in captured_logs())

    def test_secret_configured_under_lowercase_gateway_name(
        self, store, clock, ctx, gateway_client, make_draft, signed_webhook
    ):
        ledger = PaymentOrchestrator(
            store,
            config=LedgerConfig(webhook_secrets={"stripe": WEBHOOK_SECRET}),
            clock=clock,
            gateways={"STRIPE": gateway_client},
        )
        payment = ledger.record_payment(ctx, make_draft(method="CARD", gateway="STRIPE")).payment
        raw, signature = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        result = ledger.handle_webhook("STRIPE", raw, signature)

        assert result.applied
        assert ledger.get_payment(ctx, payment.id).status is PaymentStatus.PAID

    def test_gateway_without_secret(self, orchestrator, card_payment, signed_webhook):
        raw, signature = signed_webhook("evt_1", "payment.succeeded", "txn_x")
        with pytest.raises(SecurityError):
            orchestrator.handle_webhook("PAYPAL", raw, signature)

    def test_unknown_gateway(self, orchestrator, signed_webhook):
        raw, signature = signed_webhook("evt_1", "payment.succeeded", "txn_x")
        with pytest.raises(ValidationError):
            orchestrator.handle_webhook("acme", raw, signature)

    def test_malformed_payload(self, orchestrator):
        raw = b"not json"
        with pytest.raises(ValidationError):
            orchestrator.handle_webhook("STRIPE", raw, sign_payload(WEBHOOK_SECRET, raw))

    def test_payload_missing_transaction(self, orchestrator):
        raw = b'{"id": "evt_1", "type": "payment.succeeded", "data": {}}'
        with pytest.raises(ValidationError):
            orchestrator.handle_webhook("STRIPE", raw, sign_payload(WEBHOOK_SECRET, raw))

    def test_unknown_transaction(self, orchestrator, signed_webhook):
        raw, signature = signed_webhook("evt_9", "payment.succeeded", "txn_unknown")
        with pytest.raises(NotFoundError):
            orchestrator.handle_webhook("STRIPE", raw, signature)

    def test_success_after_cancel_is_rejected(self, orchestrator, ctx, card_payment, signed_webhook):
        payment = card_payment.payment
        orchestrator.cancel_payment(ctx, payment.id, "customer called to cancel")
        raw, signature = signed_webhook("evt_1", "payment.succeeded", payment.gateway_transaction_id)

        result = orchestrator.handle_webhook("STRIPE", raw, signature)

        assert not result.applied
        assert result.outcome == "rejected_transition"
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.CANCELLED
        assert orchestrator.handle_webhook("STRIPE", raw, signature).outcome == "rejected_transition"

    def test_unhandled_event_type_is_ignored(self, orchestrator, ctx, card_payment, signed_webhook):
        payment = card_payment.payment
        raw, signature = signed_webhook("evt_5", "payment.updated", payment.gateway_transaction_id)

        result = orchestrator.handle_webhook("STRIPE", raw, signature)

        assert result.outcome == "ignored"
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PROCESSING


class TestReconcile:
    def test_reconcile_applies_processor_status(self, orchestrator, ctx, card_payment, gateway_client):
        payment = card_payment.payment
        gateway_client.statuses[payment.gateway_transaction_id] = "succeeded"

        result = orchestrator.reconcile_payment(ctx, payment.id)

        assert result.applied
        assert result.new_status is PaymentStatus.PAID
        assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PAID

    def test_still_processing_is_not_a_change(self, orchestrator, ctx, card_payment):
        result = orchestrator.reconcile_payment(ctx, card_payment.payment.id)
        assert not result.applied
        assert result.new_status is PaymentStatus.PROCESSING

    def test_unrecognised_processor_status(self, orchestrator, ctx, card_payment, gateway_client):
        gateway_client.statuses[card_payment.payment.gateway_transaction_id] = "exploded"
        with pytest.raises(GatewayError):
            orchestrator.reconcile_payment(ctx, card_payment.payment.id)

    def test_cash_payment_has_nothing_to_reconcile(self, orchestrator, ctx, record):
        with pytest.raises(ValidationError):
            orchestrator.reconcile_payment(ctx, record().payment.id)
