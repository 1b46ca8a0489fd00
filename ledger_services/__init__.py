"""
ledger_services -- orchestration layer of the payment ledger.

Owns transaction boundaries, after-commit dispatch, and the boundaries to
external collaborators (payment processors, document renderer, audit sink).
"""

from ledger_services.document_assembler import BillingDocumentAssembler
from ledger_services.gateway_adapter import GatewayReconciliationAdapter
from ledger_services.interfaces import (
    AuditSink,
    DocumentRenderer,
    GatewayClient,
    GatewayRequest,
    GatewaySubmission,
    LoggingAuditSink,
    RenderedDocument,
)
from ledger_services.outbox import OutboxDispatcher
from ledger_services.payment_orchestrator import PaymentOrchestrator
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
from ledger_services.unit_of_work import LedgerTransaction, UnitOfWork

__all__ = [
    "AuditSink",
    "BillingDocumentAssembler",
    "BulkRecordResult",
    "BulkStatusResult",
    "DocumentOutcome",
    "DocumentRenderer",
    "GatewayClient",
    "GatewayOutcome",
    "GatewayReconciliationAdapter",
    "GatewayRequest",
    "GatewaySubmission",
    "LedgerTransaction",
    "LoggingAuditSink",
    "OutboxDispatcher",
    "PaymentOrchestrator",
    "PaymentRecordResult",
    "ReconcileResult",
    "RenderedDocument",
    "StatusChangeResult",
    "UnitOfWork",
    "WebhookResult",
]
