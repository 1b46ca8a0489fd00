"""
ledger_services.interfaces -- boundaries to external collaborators.

The ledger consumes these and never implements them (except the logging
audit sink default): a payment processor, a document-template renderer and
an audit-log sink.  Implementations are injected into PaymentOrchestrator.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from ledger_kernel.domain.dtos import LifecycleEvent
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.audit")


# ---------------------------------------------------------------------------
# Payment processor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayRequest:
    """What the processor needs to charge a payment."""

    tenant_id: int
    payment_id: int
    receipt_number: str
    amount: Decimal
    method: str
    gateway: str
    description: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewaySubmission:
    accepted: bool
    transaction_id: str | None = None
    message: str | None = None


class GatewayClient(Protocol):
    def submit(self, request: GatewayRequest, timeout: float) -> GatewaySubmission:
        """Submit a charge; raise on transport failure."""
        ...

    def fetch_status(self, transaction_id: str, timeout: float) -> str:
        """Processor-reported status of a transaction (e.g. "succeeded")."""
        ...


# ---------------------------------------------------------------------------
# Document rendering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    mime_type: str
    location: str | None = None


class DocumentRenderer(Protocol):
    def render(self, template_ref: str, field_map: Mapping[str, Any]) -> RenderedDocument: ...


# ---------------------------------------------------------------------------
# Audit sink
# ---------------------------------------------------------------------------


class AuditSink(Protocol):
    def append(self, event: LifecycleEvent) -> None: ...


class LoggingAuditSink:
    """Default sink: one structured log line per lifecycle event."""

    def append(self, event: LifecycleEvent) -> None:
        logger.info(
            "lifecycle_event",
            extra={
                "event_type": event.event_type,
                "event_tenant_id": event.tenant_id,
                "event_payment_id": event.payment_id,
                "event_actor_id": event.actor_id,
                "occurred_at": event.occurred_at,
                "data": event.data,
            },
        )
