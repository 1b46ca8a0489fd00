"""
ledger_services.gateway_adapter -- payment processor reconciliation.

Responsibility:
    Outbound: hand a committed payment to its processor with a bounded wait
    and record the outcome in a fresh transaction.
    Inbound: verify, de-duplicate and apply processor webhooks.

Failure handling:
    - Processor declines and client errors move the payment to FAILED and
      come back as a GatewayError inside the GatewayOutcome.  They never
      undo the payment that was already committed.
    - A timeout leaves the payment in PROCESSING; the webhook or
      ``reconcile`` settles it later.
    - A webhook with a bad signature raises SecurityError before any state
      is read or written.
    - A replayed webhook is acknowledged without a second transition.  A
      webhook whose transition the state machine rejects (success after a
      cancel) is recorded as processed and acknowledged, not applied.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.dtos import PaymentView, RequestContext
from ledger_kernel.domain.lifecycle import Gateway, PaymentStatus
from ledger_kernel.exceptions import (
    BusinessRuleError,
    GatewayError,
    GatewayTimeoutError,
    InvalidTransitionError,
    NotFoundError,
    SecurityError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.utils.hashing import hash_bytes, verify_signature
from ledger_services.interfaces import GatewayClient, GatewayRequest, GatewaySubmission
from ledger_services.results import GatewayOutcome, ReconcileResult, WebhookResult
from ledger_services.timeouts import CallTimedOut, call_with_timeout
from ledger_services.unit_of_work import UnitOfWork

logger = get_logger("services.gateway")

# Webhook event type -> payment status.
WEBHOOK_EVENT_STATUSES: dict[str, PaymentStatus] = {
    "payment.succeeded": PaymentStatus.PAID,
    "payment.failed": PaymentStatus.FAILED,
    "payment.disputed": PaymentStatus.DISPUTED,
    "payment.refunded": PaymentStatus.REFUNDED,
}

# Processor-reported transaction status -> payment status (None: no change).
PROCESSOR_STATUSES: dict[str, PaymentStatus | None] = {
    "pending": None,
    "processing": None,
    "succeeded": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "disputed": PaymentStatus.DISPUTED,
    "refunded": PaymentStatus.REFUNDED,
}

OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop"
OUTCOME_IGNORED = "ignored"
OUTCOME_REJECTED = "rejected_transition"


def parse_gateway(name: str) -> Gateway:
    try:
        return Gateway(str(name).strip().upper())
    except ValueError:
        raise ValidationError(f"unknown gateway {name!r}", field="gateway") from None


class GatewayReconciliationAdapter:
    def __init__(
        self,
        uow: UnitOfWork,
        config: LedgerConfig,
        gateways: Mapping[str, GatewayClient] | None = None,
    ):
        self._uow = uow
        self._config = config
        self._gateways = {parse_gateway(k).value: v for k, v in (gateways or {}).items()}

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def submit(self, ctx: RequestContext, payment_id: int, description: str | None = None) -> GatewayOutcome:
        """
        Submit a committed payment to its processor.

        Raises:
            NotFoundError: payment absent or another tenant's.
            ValidationError: the payment has no gateway.
        """
        with self._uow.read(ctx) as selector:
            payment = selector.get(ctx, payment_id)
        if payment.gateway is None:
            raise ValidationError(
                f"payment {payment_id} has no gateway to submit to", field="gateway"
            )

        timeout = self._config.gateway_timeout_seconds
        client = self._gateways.get(payment.gateway)
        if client is None:
            return self._record_failure(
                ctx, payment, GatewayError(payment.gateway, "no client registered", payment.id)
            )

        request = GatewayRequest(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            amount=payment.total,
            method=payment.method,
            gateway=payment.gateway,
            description=description,
        )
        with LogContext.bind(payment_id=payment.id):
            try:
                submission: GatewaySubmission = call_with_timeout(
                    client.submit, timeout, request, timeout
                )
            except CallTimedOut:
                return self._record_timeout(ctx, payment, timeout)
            except Exception as exc:
                logger.warning(
                    "gateway_submit_failed",
                    extra={"gateway": payment.gateway, "error": str(exc)},
                    exc_info=True,
                )
                return self._record_failure(
                    ctx, payment, GatewayError(payment.gateway, str(exc) or type(exc).__name__, payment.id)
                )

            if not submission.accepted or not submission.transaction_id:
                message = submission.message or "declined by processor"
                return self._record_failure(
                    ctx, payment, GatewayError(payment.gateway, message, payment.id)
                )

            with self._uow.begin(ctx) as tx:
                change = tx.lifecycle.attach_gateway_transaction(
                    ctx, payment.id, submission.transaction_id
                )
                status = change.current
            logger.info(
                "gateway_submission_accepted",
                extra={"gateway": payment.gateway, "gateway_transaction_id": submission.transaction_id},
            )
            return GatewayOutcome(
                payment_id=payment.id,
                accepted=True,
                status=status,
                transaction_id=submission.transaction_id,
                message=submission.message,
            )

    def reconcile(self, ctx: RequestContext, payment_id: int) -> ReconcileResult:
        """
        Pull the processor's view of a submitted payment and apply it.

        Raises:
            ValidationError: the payment was never accepted by a processor.
            GatewayError / GatewayTimeoutError: the status could not be read.
            InvalidTransitionError: the reported status is not reachable.
        """
        with self._uow.read(ctx) as selector:
            payment = selector.get(ctx, payment_id)
        if payment.gateway is None or payment.gateway_transaction_id is None:
            raise ValidationError(
                f"payment {payment_id} has no gateway transaction", field="gateway_transaction_id"
            )
        client = self._gateways.get(payment.gateway)
        if client is None:
            raise GatewayError(payment.gateway, "no client registered", payment.id)

        timeout = self._config.gateway_timeout_seconds
        try:
            reported = call_with_timeout(
                client.fetch_status, timeout, payment.gateway_transaction_id, timeout
            )
        except CallTimedOut:
            raise GatewayTimeoutError(payment.gateway, timeout, payment.id) from None
        except Exception as exc:
            raise GatewayError(payment.gateway, str(exc) or type(exc).__name__, payment.id) from exc

        processor_status = str(reported).strip().lower()
        if processor_status not in PROCESSOR_STATUSES:
            raise GatewayError(
                payment.gateway, f"unrecognised processor status {reported!r}", payment.id
            )
        target = PROCESSOR_STATUSES[processor_status]
        if target is None:
            return ReconcileResult(
                payment_id=payment.id,
                processor_status=processor_status,
                previous_status=payment.status,
                new_status=payment.status,
                applied=False,
            )

        with self._uow.begin(ctx) as tx:
            change = tx.lifecycle.set_status(
                ctx, payment.id, target, reason=f"reconciled: {processor_status}"
            )
        logger.info(
            "payment_reconciled",
            extra={
                "payment_id": payment.id,
                "processor_status": processor_status,
                "to_status": change.current.value,
            },
        )
        return ReconcileResult(
            payment_id=payment.id,
            processor_status=processor_status,
            previous_status=change.previous,
            new_status=change.current,
            applied=change.changed,
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_webhook(self, gateway_name: str, raw_payload: bytes, signature: str | None) -> WebhookResult:
        """
        Verify and apply one processor callback.

        The result is returned only after the transaction holding the
        status change and the processed-event record has committed.

        Raises:
            SecurityError: bad or missing signature, unknown secret, or an
                event id replayed with a different payload.
            ValidationError: unknown gateway or malformed payload.
            NotFoundError: no payment carries the transaction id.
        """
        gateway = parse_gateway(gateway_name)
        if isinstance(raw_payload, str):
            raw_payload = raw_payload.encode("utf-8")

        secret = self._config.webhook_secret(gateway.value)
        if not secret:
            logger.warning("webhook_signature_rejected", extra={"gateway": gateway.value, "reason": "no secret"})
            raise SecurityError(gateway.value, "no webhook secret configured")
        if not verify_signature(secret, raw_payload, signature):
            logger.warning(
                "webhook_signature_rejected", extra={"gateway": gateway.value, "reason": "mismatch"}
            )
            raise SecurityError(gateway.value, "signature mismatch")

        event_id, event_type, transaction_id = _parse_event(raw_payload)
        payload_hash = hash_bytes(raw_payload)

        with self._uow.begin() as tx:
            claim = tx.webhooks.claim(gateway.value, event_id, event_type, payload_hash)
            if not claim.is_new:
                if claim.record.payload_hash != payload_hash:
                    logger.warning(
                        "webhook_replay_payload_mismatch",
                        extra={"gateway": gateway.value, "event_id": event_id},
                    )
                    raise SecurityError(gateway.value, f"event {event_id} replayed with a different payload")
                logger.info(
                    "webhook_replay_ignored",
                    extra={"gateway": gateway.value, "event_id": event_id},
                )
                return WebhookResult(
                    gateway=gateway.value,
                    event_id=event_id,
                    payment_id=claim.record.payment_id,
                    previous_status=None,
                    new_status=None,
                    applied=False,
                    outcome=claim.record.outcome,
                )

            payment = tx.selector.find_by_gateway_transaction(gateway.value, transaction_id)
            if payment is None:
                raise NotFoundError("Payment", f"{gateway.value}:{transaction_id}")

            result = self._apply_event(tx, gateway.value, event_id, event_type, payment)
            tx.webhooks.finish(claim.record, payment.id, result.outcome)

        logger.info(
            "webhook_processed",
            extra={
                "gateway": gateway.value,
                "event_id": event_id,
                "event_type": event_type,
                "payment_id": result.payment_id,
                "outcome": result.outcome,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_event(self, tx, gateway: str, event_id: str, event_type: str, payment: PaymentView) -> WebhookResult:
        target = WEBHOOK_EVENT_STATUSES.get(event_type)
        ctx = RequestContext.system(payment.tenant_id)
        if target is None:
            return WebhookResult(gateway, event_id, payment.id, payment.status, payment.status, False, OUTCOME_IGNORED)

        try:
            change = tx.lifecycle.set_status(ctx, payment.id, target, reason=f"webhook {event_type}")
        except InvalidTransitionError as exc:
            logger.warning(
                "webhook_transition_rejected",
                extra={
                    "gateway": gateway,
                    "event_id": event_id,
                    "payment_id": payment.id,
                    "from_status": exc.from_status,
                    "to_status": exc.to_status,
                },
            )
            return WebhookResult(gateway, event_id, payment.id, payment.status, payment.status, False, OUTCOME_REJECTED)

        outcome = OUTCOME_APPLIED if change.changed else OUTCOME_NOOP
        return WebhookResult(gateway, event_id, payment.id, change.previous, change.current, change.changed, outcome)

    def _record_failure(self, ctx: RequestContext, payment: PaymentView, error: GatewayError) -> GatewayOutcome:
        status = payment.status
        try:
            with self._uow.begin(ctx) as tx:
                status = tx.lifecycle.set_status(
                    ctx, payment.id, PaymentStatus.FAILED, reason=error.detail
                ).current
        except BusinessRuleError:
            # A webhook or an administrative action got there first.
            logger.warning(
                "gateway_failure_not_recorded",
                extra={"payment_id": payment.id, "status": status.value},
                exc_info=True,
            )
        logger.warning(
            "gateway_submission_failed",
            extra={"payment_id": payment.id, "gateway": payment.gateway, "error": error.detail},
        )
        return GatewayOutcome(
            payment_id=payment.id, accepted=False, status=status, message=error.detail, error=error
        )

    def _record_timeout(self, ctx: RequestContext, payment: PaymentView, timeout: float) -> GatewayOutcome:
        error = GatewayTimeoutError(payment.gateway, timeout, payment.id)
        status = payment.status
        try:
            with self._uow.begin(ctx) as tx:
                status = tx.lifecycle.set_status(
                    ctx, payment.id, PaymentStatus.PROCESSING, reason="gateway timeout"
                ).current
        except BusinessRuleError:
            logger.warning(
                "gateway_timeout_not_recorded",
                extra={"payment_id": payment.id, "status": status.value},
                exc_info=True,
            )
        logger.warning(
            "gateway_submission_timed_out",
            extra={"payment_id": payment.id, "gateway": payment.gateway, "timeout_seconds": timeout},
        )
        return GatewayOutcome(
            payment_id=payment.id, accepted=False, status=status, message=error.detail, error=error
        )


def _parse_event(raw_payload: bytes) -> tuple[str, str, str]:
    try:
        body = json.loads(raw_payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"webhook payload is not valid JSON: {exc}", field="payload") from None
    if not isinstance(body, dict):
        raise ValidationError("webhook payload must be a JSON object", field="payload")

    event_id = body.get("id")
    event_type = body.get("type")
    data = body.get("data")
    transaction_id = data.get("transaction_id") if isinstance(data, dict) else None
    for name, value in (("id", event_id), ("type", event_type), ("data.transaction_id", transaction_id)):
        if not isinstance(value, str) or not value:
            raise ValidationError(f"webhook payload is missing {name}", field=name)
    return event_id, event_type, transaction_id
