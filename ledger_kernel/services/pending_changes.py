"""
PendingChanges -- what a transaction did, held until it commits.

Services record lifecycle events and the payments they touched here instead
of acting on them immediately.  The owner of the transaction drains the
buffer after commit (dispatch events, invalidate caches) or discards it on
rollback, so nothing outside the database ever observes a change that was
rolled back.
"""

from ledger_kernel.domain.dtos import LifecycleEvent


class PendingChanges:
    def __init__(self) -> None:
        self._events: list[LifecycleEvent] = []
        self._touched: set[tuple[int, int]] = set()

    def emit(self, event: LifecycleEvent) -> None:
        self._events.append(event)
        self._touched.add((event.tenant_id, event.payment_id))

    def touch(self, tenant_id: int, payment_id: int) -> None:
        self._touched.add((tenant_id, payment_id))

    @property
    def events(self) -> tuple[LifecycleEvent, ...]:
        return tuple(self._events)

    @property
    def touched(self) -> frozenset[tuple[int, int]]:
        return frozenset(self._touched)

    def drain(self) -> tuple[list[LifecycleEvent], set[tuple[int, int]]]:
        events, touched = self._events, self._touched
        self._events, self._touched = [], set()
        return events, touched

    def discard(self) -> None:
        self._events.clear()
        self._touched.clear()

    def __bool__(self) -> bool:
        return bool(self._events or self._touched)
