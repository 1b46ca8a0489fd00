"""
Duplicate webhook deliveries arriving at the same time apply once.

Skip with: pytest -m "not slow_locks"
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ledger_kernel.domain.lifecycle import PaymentStatus

pytestmark = pytest.mark.slow_locks


def test_simultaneous_duplicates_apply_once(orchestrator, ctx, card_payment, signed_webhook):
    payment = card_payment.payment
    raw, signature = signed_webhook("evt_dup", "payment.succeeded", payment.gateway_transaction_id)
    barrier = threading.Barrier(4)

    def _deliver(_):
        barrier.wait()
        return orchestrator.handle_webhook("STRIPE", raw, signature)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(_deliver, range(4)))

    assert sum(1 for r in results if r.applied) == 1
    assert orchestrator.get_payment(ctx, payment.id).status is PaymentStatus.PAID
    changes = [e for e in orchestrator.payment_history(ctx, payment.id) if e.action == "status_changed"]
    assert len(changes) == 1
