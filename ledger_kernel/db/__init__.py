"""Database layer - engine, base classes, types, and immutability guards."""

from ledger_kernel.db.base import Base, TrackedBase, UTCDateTime
from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)

__all__ = [
    "Base",
    "LedgerStore",
    "TrackedBase",
    "UTCDateTime",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
]
