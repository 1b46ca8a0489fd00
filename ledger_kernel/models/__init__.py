"""ORM models for the ledger kernel."""

from ledger_kernel.models.bill import Bill, BillArtifact
from ledger_kernel.models.document_number import DocumentNumber, SequenceCounter
from ledger_kernel.models.installment import Installment, InstallmentStatus
from ledger_kernel.models.payment import Payment
from ledger_kernel.models.payment_log import PaymentLog, PaymentLogAction
from ledger_kernel.models.processed_webhook import ProcessedWebhook
from ledger_kernel.models.refund import ACTIVE_REFUND_STATUSES, Refund, RefundStatus

__all__ = [
    "ACTIVE_REFUND_STATUSES",
    "Bill",
    "BillArtifact",
    "DocumentNumber",
    "Installment",
    "InstallmentStatus",
    "Payment",
    "PaymentLog",
    "PaymentLogAction",
    "ProcessedWebhook",
    "Refund",
    "RefundStatus",
    "SequenceCounter",
]
