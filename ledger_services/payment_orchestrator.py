"""
ledger_services.payment_orchestrator -- public entry point of the ledger.

Responsibility:
    Composes the kernel services into the operations callers use and owns
    every transaction boundary.  One call is one transaction, except where
    noted (record_payment, record_payments and bulk_set_status).

record_payment in detail:
    1. Transaction: create the payment (receipt number, total, late fee,
       initial status) and issue its bill.  Commit.
    2. Gateway payments: submit to the processor (own transaction).  A
       decline or timeout is reported in the result.
    3. Render receipt and bill (best effort, reported in the result).

Reads of single payments go through the cache; every committed mutation
invalidates the cached entry after commit.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    InstallmentView,
    PaymentDraft,
    PaymentView,
    RefundView,
    RequestContext,
)
from ledger_kernel.domain.lifecycle import PaymentStatus, parse_status
from ledger_kernel.exceptions import LedgerError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.payment_selector import (
    BillView,
    PaymentFilter,
    PaymentLogEntry,
    PaymentSummary,
)
from ledger_kernel.services.lifecycle_service import StatusChange
from ledger_kernel.services.payment_cache import InMemoryPaymentCache, PaymentCache
from ledger_services.document_assembler import BillingDocumentAssembler
from ledger_services.gateway_adapter import GatewayReconciliationAdapter
from ledger_services.interfaces import AuditSink, DocumentRenderer, GatewayClient, LoggingAuditSink
from ledger_services.outbox import OutboxDispatcher
from ledger_services.results import (
    BulkRecordResult,
    BulkStatusResult,
    DocumentOutcome,
    GatewayOutcome,
    PaymentRecordResult,
    ReconcileResult,
    StatusChangeResult,
    WebhookResult,
)
from ledger_services.unit_of_work import UnitOfWork

logger = get_logger("services.orchestrator")

# Statuses the overdue sweep moves to OVERDUE.
_SWEEPABLE = frozenset({PaymentStatus.PENDING, PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID})


def _status_result(change: StatusChange) -> StatusChangeResult:
    return StatusChangeResult(
        payment_id=change.payment.id,
        previous_status=change.previous,
        new_status=change.current,
    )


class PaymentOrchestrator:
    """
    Facade over the payment ledger.

    Contract:
        Every method takes the caller's resolved RequestContext and returns
        frozen DTOs.  Validation and business-rule errors propagate as
        LedgerError subclasses; nothing partially applied survives them.
    """

    def __init__(
        self,
        store: LedgerStore,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        gateways: Mapping[str, GatewayClient] | None = None,
        renderer: DocumentRenderer | None = None,
        audit_sink: AuditSink | None = None,
        cache: PaymentCache | None = None,
    ):
        self.config = config or LedgerConfig()
        self.clock = clock or SystemClock()
        self.cache = cache if cache is not None else InMemoryPaymentCache(self.config.cache_ttl_seconds)
        self.store = store

        register_immutability_listeners()

        outbox = OutboxDispatcher(audit_sink or LoggingAuditSink(), self.cache)
        self.uow = UnitOfWork(store, self.clock, self.config, self.cache, outbox)
        self.gateway = GatewayReconciliationAdapter(self.uow, self.config, gateways)
        self.documents = BillingDocumentAssembler(self.uow, self.config, renderer)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(self, ctx: RequestContext, draft: PaymentDraft) -> PaymentRecordResult:
        with self.uow.begin(ctx) as tx:
            payment = tx.lifecycle.create(ctx, draft)
            bill = tx.bills.issue_bill(ctx, payment, draft.description)
            view = PaymentView.from_model(payment)
            bill_number = bill.bill_number

        with LogContext.bind(payment_id=view.id):
            logger.info(
                "payment_recorded",
                extra={"receipt_number": view.receipt_number, "bill_number": bill_number},
            )

            outcome: GatewayOutcome | None = None
            if view.gateway is not None:
                outcome = self.gateway.submit(ctx, view.id, draft.description)
                view = self._read_payment(ctx, view.id)

            documents = self.documents.render_documents(ctx, view.id)

        return PaymentRecordResult(
            payment=view,
            bill_number=bill_number,
            gateway=outcome,
            documents=documents,
        )

    def record_payments(self, ctx: RequestContext, drafts: Iterable[PaymentDraft]) -> BulkRecordResult:
        """Record each draft as its own payment; one failing draft does not stop the rest."""
        created: list[PaymentRecordResult] = []
        errors: dict[int, str] = {}
        for index, draft in enumerate(drafts):
            try:
                created.append(self.record_payment(ctx, draft))
            except LedgerError as exc:
                errors[index] = exc.code
        logger.info("bulk_payments_recorded", extra={"created": len(created), "failed": len(errors)})
        return BulkRecordResult(created=tuple(created), errors=errors)

    def get_payment(self, ctx: RequestContext, payment_id: int) -> PaymentView:
        cached = self.cache.get(ctx.tenant_id, payment_id)
        if cached is not None:
            return cached
        generation = self.cache.generation(ctx.tenant_id, payment_id)
        view = self._read_payment(ctx, payment_id)
        self.cache.set(view, generation)
        return view

    def list_payments(self, ctx: RequestContext, filters: PaymentFilter | None = None) -> list[PaymentView]:
        with self.uow.read(ctx) as selector:
            return selector.list(ctx, filters)

    def payment_history(self, ctx: RequestContext, payment_id: int) -> list[PaymentLogEntry]:
        with self.uow.read(ctx) as selector:
            return selector.history(ctx, payment_id)

    def update_payment(self, ctx: RequestContext, payment_id: int, patch: Mapping[str, Any]) -> PaymentView:
        with self.uow.begin(ctx) as tx:
            payment = tx.lifecycle.update(ctx, payment_id, patch)
            tx.bills.sync_status(payment)
            return PaymentView.from_model(payment)

    def delete_payment(self, ctx: RequestContext, payment_id: int) -> PaymentView:
        with self.uow.begin(ctx) as tx:
            return PaymentView.from_model(tx.lifecycle.soft_delete(ctx, payment_id))

    def get_bill(self, ctx: RequestContext, payment_id: int) -> BillView:
        with self.uow.read(ctx) as selector:
            return selector.bill(ctx, payment_id)

    def overdue_payments(self, ctx: RequestContext, as_of: date | None = None) -> list[PaymentView]:
        with self.uow.read(ctx) as selector:
            return selector.overdue(ctx, as_of or self.clock.today())

    def upcoming_payments(
        self, ctx: RequestContext, days: int = 7, as_of: date | None = None
    ) -> list[PaymentView]:
        with self.uow.read(ctx) as selector:
            return selector.upcoming(ctx, as_of or self.clock.today(), days)

    def summary(self, ctx: RequestContext, filters: PaymentFilter | None = None) -> PaymentSummary:
        with self.uow.read(ctx) as selector:
            return selector.summary(ctx, filters)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_status(
        self,
        ctx: RequestContext,
        payment_id: int,
        new_status: str | PaymentStatus,
        reason: str | None = None,
    ) -> StatusChangeResult:
        with self.uow.begin(ctx) as tx:
            return _status_result(tx.lifecycle.set_status(ctx, payment_id, new_status, reason))

    def bulk_set_status(
        self,
        ctx: RequestContext,
        payment_ids: Iterable[int],
        new_status: str | PaymentStatus,
        reason: str | None = None,
    ) -> BulkStatusResult:
        """Apply one status to many payments, one transaction per payment."""
        target = parse_status(new_status)
        changed: list[StatusChangeResult] = []
        errors: dict[int, str] = {}
        for payment_id in dict.fromkeys(payment_ids):
            try:
                changed.append(self.set_status(ctx, payment_id, target, reason))
            except LedgerError as exc:
                errors[payment_id] = exc.code
        logger.info(
            "bulk_status_applied",
            extra={"to_status": target.value, "changed": len(changed), "failed": len(errors)},
        )
        return BulkStatusResult(changed=tuple(changed), errors=errors)

    def cancel_payment(self, ctx: RequestContext, payment_id: int, reason: str) -> StatusChangeResult:
        with self.uow.begin(ctx) as tx:
            return _status_result(tx.lifecycle.cancel(ctx, payment_id, reason))

    def void_payment(self, ctx: RequestContext, payment_id: int, reason: str) -> StatusChangeResult:
        with self.uow.begin(ctx) as tx:
            return _status_result(tx.lifecycle.void(ctx, payment_id, reason))

    def mark_overdue_payments(self, ctx: RequestContext, as_of: date | None = None) -> list[StatusChangeResult]:
        """Move open payments past their due date to OVERDUE."""
        as_of = as_of or self.clock.today()
        with self.uow.begin(ctx) as tx:
            results = [
                _status_result(tx.lifecycle.set_status(ctx, p.id, PaymentStatus.OVERDUE, reason="past due"))
                for p in tx.selector.overdue(ctx, as_of)
                if p.status in _SWEEPABLE
            ]
        logger.info("payments_marked_overdue", extra={"as_of": as_of, "count": len(results)})
        return results

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def create_refund(
        self,
        ctx: RequestContext,
        payment_id: int,
        amount: Decimal,
        reason: str,
        remarks: str | None = None,
    ) -> RefundView:
        with self.uow.begin(ctx) as tx:
            return RefundView.from_model(
                tx.refunds.create_refund(ctx, payment_id, amount, reason, remarks)
            )

    def approve_refund(self, ctx: RequestContext, refund_id: int) -> RefundView:
        with self.uow.begin(ctx) as tx:
            return RefundView.from_model(tx.refunds.approve_refund(ctx, refund_id))

    def cancel_refund(self, ctx: RequestContext, refund_id: int, reason: str) -> RefundView:
        with self.uow.begin(ctx) as tx:
            return RefundView.from_model(tx.refunds.cancel_refund(ctx, refund_id, reason))

    def list_refunds(self, ctx: RequestContext, payment_id: int) -> list[RefundView]:
        with self.uow.read(ctx) as selector:
            return selector.refunds(ctx, payment_id)

    # ------------------------------------------------------------------
    # Installments
    # ------------------------------------------------------------------

    def create_installments(
        self,
        ctx: RequestContext,
        payment_id: int,
        count: int,
        interval: str | int | None = None,
        first_due_date: date | None = None,
    ) -> list[InstallmentView]:
        with self.uow.begin(ctx) as tx:
            rows = tx.installments.create_installments(ctx, payment_id, count, interval, first_due_date)
            return [InstallmentView.from_model(i) for i in rows]

    def mark_installment_paid(self, ctx: RequestContext, installment_id: int) -> InstallmentView:
        with self.uow.begin(ctx) as tx:
            return InstallmentView.from_model(tx.installments.mark_paid(ctx, installment_id))

    def mark_overdue_installments(self, ctx: RequestContext, as_of: date | None = None) -> list[InstallmentView]:
        with self.uow.begin(ctx) as tx:
            return [InstallmentView.from_model(i) for i in tx.installments.mark_overdue(ctx, as_of)]

    def list_installments(self, ctx: RequestContext, payment_id: int) -> list[InstallmentView]:
        with self.uow.read(ctx) as selector:
            return selector.installments(ctx, payment_id)

    # ------------------------------------------------------------------
    # Gateway and documents
    # ------------------------------------------------------------------

    def submit_to_gateway(self, ctx: RequestContext, payment_id: int) -> GatewayOutcome:
        return self.gateway.submit(ctx, payment_id)

    def handle_webhook(self, gateway_name: str, raw_payload: bytes, signature: str | None) -> WebhookResult:
        return self.gateway.handle_webhook(gateway_name, raw_payload, signature)

    def reconcile_payment(self, ctx: RequestContext, payment_id: int) -> ReconcileResult:
        return self.gateway.reconcile(ctx, payment_id)

    def render_documents(self, ctx: RequestContext, payment_id: int) -> DocumentOutcome:
        return self.documents.render_documents(ctx, payment_id)

    def _read_payment(self, ctx: RequestContext, payment_id: int) -> PaymentView:
        with self.uow.read(ctx) as selector:
            return selector.get(ctx, payment_id)
