"""
After-commit dispatch of lifecycle effects.

A transaction's PendingChanges are published only once it has committed:
cached reads of every touched payment are dropped, then each lifecycle event
goes to the audit sink.  Sink failures are logged and never reach the
caller; retries and dead-lettering belong to the sink.
"""

from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.payment_cache import PaymentCache
from ledger_kernel.services.pending_changes import PendingChanges
from ledger_services.interfaces import AuditSink

logger = get_logger("services.outbox")


class OutboxDispatcher:
    def __init__(self, audit_sink: AuditSink, cache: PaymentCache):
        self._sink = audit_sink
        self._cache = cache

    def publish(self, changes: PendingChanges) -> int:
        """Dispatch drained changes; returns the number of events delivered."""
        events, touched = changes.drain()
        for tenant_id, payment_id in touched:
            self._cache.invalidate(tenant_id, payment_id)

        delivered = 0
        for event in events:
            try:
                self._sink.append(event)
            except Exception:
                logger.warning(
                    "audit_sink_append_failed",
                    extra={"event_type": event.event_type, "event_payment_id": event.payment_id},
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered
