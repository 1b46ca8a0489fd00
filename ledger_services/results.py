"""
Result DTOs returned by ledger_services.

Partial success is data, not an exception: a committed payment whose gateway
submission or document rendering failed comes back with the failure
attached.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ledger_kernel.domain.dtos import PaymentView
from ledger_kernel.domain.lifecycle import PaymentStatus
from ledger_kernel.exceptions import GatewayError


@dataclass(frozen=True)
class GatewayOutcome:
    """What happened when a payment was handed to its processor."""

    payment_id: int
    accepted: bool
    status: PaymentStatus
    transaction_id: str | None = None
    message: str | None = None
    error: GatewayError | None = None

    @property
    def succeeded(self) -> bool:
        return self.accepted and self.error is None


@dataclass(frozen=True)
class DocumentOutcome:
    payment_id: int
    rendered: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PaymentRecordResult:
    payment: PaymentView
    bill_number: str
    gateway: GatewayOutcome | None = None
    documents: DocumentOutcome | None = None

    @property
    def gateway_error(self) -> GatewayError | None:
        return self.gateway.error if self.gateway is not None else None

    @property
    def documents_complete(self) -> bool:
        return self.documents is not None and self.documents.complete

    @property
    def document_errors(self) -> tuple[str, ...]:
        return self.documents.errors if self.documents is not None else ()


@dataclass(frozen=True)
class WebhookResult:
    gateway: str
    event_id: str
    payment_id: int | None
    previous_status: PaymentStatus | None
    new_status: PaymentStatus | None
    applied: bool
    outcome: str


@dataclass(frozen=True)
class ReconcileResult:
    payment_id: int
    processor_status: str
    previous_status: PaymentStatus
    new_status: PaymentStatus
    applied: bool


@dataclass(frozen=True)
class StatusChangeResult:
    payment_id: int
    previous_status: PaymentStatus
    new_status: PaymentStatus

    @property
    def changed(self) -> bool:
        return self.previous_status is not self.new_status


@dataclass(frozen=True)
class BulkStatusResult:
    """Per-payment results of a bulk status change; each item commits alone."""

    changed: tuple[StatusChangeResult, ...] = ()
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class BulkRecordResult:
    """Per-draft results of a bulk record; errors are keyed by draft position."""

    created: tuple[PaymentRecordResult, ...] = ()
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.errors
