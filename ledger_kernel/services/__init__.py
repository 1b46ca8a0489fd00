"""Session-bound services for the ledger kernel (write side)."""

from ledger_kernel.services.bill_service import BillService
from ledger_kernel.services.installment_service import InstallmentSchedulerService
from ledger_kernel.services.lifecycle_service import PaymentLifecycleService, StatusChange
from ledger_kernel.services.payment_cache import InMemoryPaymentCache, NullPaymentCache, PaymentCache
from ledger_kernel.services.payment_log_service import PaymentLogService, snapshot_payment
from ledger_kernel.services.pending_changes import PendingChanges
from ledger_kernel.services.refund_service import RefundLedgerService
from ledger_kernel.services.sequence_service import (
    DocumentSequenceService,
    format_document_number,
    parse_document_number,
)
from ledger_kernel.services.webhook_service import ProcessedWebhookService, WebhookClaim

__all__ = [
    "BillService",
    "DocumentSequenceService",
    "InMemoryPaymentCache",
    "InstallmentSchedulerService",
    "NullPaymentCache",
    "PaymentCache",
    "PaymentLifecycleService",
    "PaymentLogService",
    "PendingChanges",
    "ProcessedWebhookService",
    "RefundLedgerService",
    "StatusChange",
    "WebhookClaim",
    "format_document_number",
    "parse_document_number",
    "snapshot_payment",
]
