"""
Pure domain layer.

Money arithmetic, the payment state table, clocks and DTOs.  No ORM, no
database, no I/O (except SystemClock).
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    InstallmentView,
    LifecycleEvent,
    PaymentDraft,
    PaymentView,
    RefundView,
    RequestContext,
)
from ledger_kernel.domain.lifecycle import (
    BillStatus,
    Gateway,
    PaymentMethod,
    PaymentStatus,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
)

__all__ = [
    "BillStatus",
    "Clock",
    "DeterministicClock",
    "Gateway",
    "InstallmentView",
    "LifecycleEvent",
    "PaymentDraft",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentView",
    "RefundView",
    "RequestContext",
    "SystemClock",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
]
