"""
Read-through cache for payment snapshots.

Keys are (tenant_id, payment_id); values are immutable PaymentView objects,
so a cached entry can be handed to any number of readers.  Every mutation
invalidates the payment's entry in the same call that writes its log row,
and the unit of work invalidates it again after commit.

Each key also carries a generation that every invalidation bumps.  A reader
takes the generation before going to the database and passes it to
``set``; if an invalidation happened in between, the snapshot it read may
predate a committed change and is not stored.
"""

import threading
import time
from typing import Callable, Protocol

from ledger_kernel.domain.dtos import PaymentView
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.payment_cache")

DEFAULT_TTL_SECONDS = 1800


class PaymentCache(Protocol):
    def get(self, tenant_id: int, payment_id: int) -> PaymentView | None: ...

    def generation(self, tenant_id: int, payment_id: int) -> int: ...

    def set(self, view: PaymentView, generation: int | None = None) -> bool: ...

    def invalidate(self, tenant_id: int, payment_id: int) -> None: ...

    def clear(self) -> None: ...


class InMemoryPaymentCache:
    """Process-local TTL cache; thread-safe."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._timer = timer
        self._lock = threading.Lock()
        self._entries: dict[tuple[int, int], tuple[float, PaymentView]] = {}
        self._generations: dict[tuple[int, int], int] = {}

    def get(self, tenant_id: int, payment_id: int) -> PaymentView | None:
        key = (tenant_id, payment_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, view = entry
            if self._timer() >= expires_at:
                del self._entries[key]
                return None
            return view

    def generation(self, tenant_id: int, payment_id: int) -> int:
        with self._lock:
            return self._generations.get((tenant_id, payment_id), 0)

    def set(self, view: PaymentView, generation: int | None = None) -> bool:
        """
        Store ``view``.  With ``generation``, the store is skipped (and False
        returned) when the key was invalidated after that generation was read.
        """
        key = (view.tenant_id, view.id)
        with self._lock:
            if generation is not None and self._generations.get(key, 0) != generation:
                stale = True
            else:
                stale = False
                self._entries[key] = (self._timer() + self._ttl, view)
        if stale:
            logger.debug(
                "payment_cache_stale_set_dropped",
                extra={"tenant_id": view.tenant_id, "payment_id": view.id},
            )
        return not stale

    def invalidate(self, tenant_id: int, payment_id: int) -> None:
        key = (tenant_id, payment_id)
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.debug(
                "payment_cache_invalidated",
                extra={"tenant_id": tenant_id, "payment_id": payment_id},
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullPaymentCache:
    """Cache that never holds anything."""

    def get(self, tenant_id: int, payment_id: int) -> PaymentView | None:
        return None

    def generation(self, tenant_id: int, payment_id: int) -> int:
        return 0

    def set(self, view: PaymentView, generation: int | None = None) -> bool:
        return False

    def invalidate(self, tenant_id: int, payment_id: int) -> None:
        pass

    def clear(self) -> None:
        pass
