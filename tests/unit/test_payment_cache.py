"""In-memory read cache: TTL expiry and invalidation."""

from datetime import datetime, timezone
from decimal import Decimal

from ledger_kernel.domain.dtos import PaymentView
from ledger_kernel.domain.lifecycle import PaymentStatus
from ledger_kernel.services.payment_cache import InMemoryPaymentCache, NullPaymentCache


def _view(payment_id=1, tenant_id=1) -> PaymentView:
    return PaymentView(
        id=payment_id,
        tenant_id=tenant_id,
        receipt_number="RCP-2024-000001",
        amount=Decimal("10.00"),
        discount=Decimal("0.00"),
        fine=Decimal("0.00"),
        total=Decimal("10.00"),
        status=PaymentStatus.PAID,
        method="CASH",
        gateway=None,
        gateway_transaction_id=None,
        payment_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        due_date=None,
        payment_type=None,
        student_id=None,
        guardian_id=None,
        remarks=None,
        version=1,
        deleted_at=None,
    )


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_get_after_set():
    cache = InMemoryPaymentCache()
    cache.set(_view())
    assert cache.get(1, 1) == _view()


def test_entries_are_tenant_scoped():
    cache = InMemoryPaymentCache()
    cache.set(_view(tenant_id=1))
    assert cache.get(2, 1) is None


def test_expires_after_ttl():
    timer = FakeTimer()
    cache = InMemoryPaymentCache(ttl_seconds=10, timer=timer)
    cache.set(_view())
    timer.now = 9.9
    assert cache.get(1, 1) is not None
    timer.now = 10.0
    assert cache.get(1, 1) is None
    assert len(cache) == 0


def test_invalidate_and_clear():
    cache = InMemoryPaymentCache()
    cache.set(_view(1))
    cache.set(_view(2))
    cache.invalidate(1, 1)
    assert cache.get(1, 1) is None
    assert cache.get(1, 2) is not None
    cache.clear()
    assert len(cache) == 0


def test_null_cache_never_hits():
    cache = NullPaymentCache()
    cache.set(_view())
    assert cache.get(1, 1) is None


def test_set_with_current_generation_is_stored():
    cache = InMemoryPaymentCache()
    generation = cache.generation(1, 1)
    assert cache.set(_view(), generation) is True
    assert cache.get(1, 1) == _view()


def test_invalidation_during_read_drops_the_set():
    cache = InMemoryPaymentCache()
    generation = cache.generation(1, 1)
    # A writer commits while the reader is still at the database.
    cache.invalidate(1, 1)

    assert cache.set(_view(), generation) is False
    assert cache.get(1, 1) is None
    # The next read starts from the new generation and is cached again.
    assert cache.set(_view(), cache.generation(1, 1)) is True


def test_generations_are_per_key():
    cache = InMemoryPaymentCache()
    generation = cache.generation(1, 1)
    cache.invalidate(1, 2)
    cache.invalidate(2, 1)
    assert cache.set(_view(), generation) is True
