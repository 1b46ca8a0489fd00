"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.payment_selector import (
    BillArtifactView,
    BillView,
    PaymentFilter,
    PaymentLogEntry,
    PaymentSelector,
    PaymentSummary,
)

__all__ = [
    "BillArtifactView",
    "BillView",
    "PaymentFilter",
    "PaymentLogEntry",
    "PaymentSelector",
    "PaymentSummary",
]
