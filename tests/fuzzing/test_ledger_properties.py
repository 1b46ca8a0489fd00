"""
Property-based tests for the money and state rules.

Boundaries fuzzed here:
- Totals: amount/discount/fine over the cent grid, negative results
- Late fees: never negative, never above the cap, monotone in lateness
- Installment splits: exact sum, near-equal parts, front-loaded remainder
- Due dates: strictly increasing schedules for every interval
- State machine: random walks never leave a terminal status

Boundaries covered elsewhere:
- Refund cap under concurrency (tests/concurrency/test_refund_race)
- Webhook replay and payload tampering (tests/services/test_gateway_reconciliation)
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.calculator import (
    calculate_late_fee,
    calculate_total,
    next_due_date,
    split_installments,
    to_money,
)
from ledger_kernel.domain.lifecycle import (
    TERMINAL_STATUSES,
    PaymentStatus,
    bill_status_for,
    can_transition,
    status_after_refunds,
)
from ledger_kernel.exceptions import InvalidAmountError

money = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("10000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
positive_money = money.filter(lambda d: d > 0)
quanta = st.sampled_from([Decimal("0.01"), Decimal("0.05"), Decimal("1"), Decimal("10")])
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("0.2"), places=4)
caps = st.decimals(min_value=Decimal("0"), max_value=Decimal("2"), places=2)
dates = st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31))
intervals = st.one_of(
    st.sampled_from(["daily", "weekly", "monthly", "quarterly", "yearly"]),
    st.integers(min_value=1, max_value=400),
)


class TestTotalProperties:
    @given(amount=money, discount=money, fine=money)
    def test_total_is_derived_or_rejected(self, amount, discount, fine):
        if amount + fine < discount:
            try:
                calculate_total(amount, discount, fine)
            except InvalidAmountError:
                return
            raise AssertionError("negative total was accepted")
        total = calculate_total(amount, discount, fine)
        assert total == amount - discount + fine
        assert total >= 0

    @given(value=money)
    def test_to_money_is_idempotent(self, value):
        once = to_money(value)
        assert to_money(once) == once
        assert once.as_tuple().exponent == -2


class TestLateFeeProperties:
    @given(amount=money, due=dates, days=st.integers(min_value=-30, max_value=3000), rate=rates, cap=caps)
    def test_fee_is_bounded_by_cap(self, amount, due, days, rate, cap):
        fee = calculate_late_fee(due, amount, due + timedelta(days=days), rate, cap)
        assert fee >= 0
        assert fee <= to_money(amount * cap)
        if days <= 0:
            assert fee == 0

    @given(amount=money, due=dates, days=st.integers(min_value=0, max_value=1000), rate=rates)
    def test_fee_never_decreases_with_lateness(self, amount, due, days, rate):
        earlier = calculate_late_fee(due, amount, due + timedelta(days=days), rate)
        later = calculate_late_fee(due, amount, due + timedelta(days=days + 1), rate)
        assert later >= earlier


class TestInstallmentSplitProperties:
    @given(total=money, n=st.integers(min_value=1, max_value=60), quantum=quanta)
    @settings(max_examples=300)
    def test_split_sums_exactly(self, total, n, quantum):
        amounts = split_installments(total, n, quantum)
        assert len(amounts) == n
        assert sum(amounts) == total
        assert all(a >= 0 for a in amounts)

    @given(total=money, n=st.integers(min_value=1, max_value=60), quantum=quanta)
    def test_split_is_front_loaded_and_near_equal(self, total, n, quantum):
        amounts = split_installments(total, n, quantum)
        assert amounts == sorted(amounts, reverse=True)
        # Only the first part may carry the sub-quantum leftover.
        assert all(amounts[1] - a <= quantum for a in amounts[1:])
        assert amounts[0] - amounts[-1] < 2 * quantum


class TestDueDateProperties:
    @given(start=dates, interval=intervals, count=st.integers(min_value=2, max_value=24))
    def test_schedule_strictly_increases(self, start, interval, count):
        schedule = [start] + [next_due_date(start, interval, step) for step in range(1, count)]
        assert all(a < b for a, b in zip(schedule, schedule[1:]))


class TestStateMachineProperties:
    @given(walk=st.lists(st.sampled_from(list(PaymentStatus)), min_size=1, max_size=20))
    def test_random_walk_never_leaves_terminal(self, walk):
        current = PaymentStatus.PENDING
        for target in walk:
            if can_transition(current, target):
                assert current not in TERMINAL_STATUSES
                current = target
        if current in TERMINAL_STATUSES:
            assert not any(can_transition(current, s) for s in PaymentStatus)

    @given(status=st.sampled_from(list(PaymentStatus)), total=positive_money, refunded=money)
    def test_only_full_refunds_flip_status(self, status, total, refunded):
        target = status_after_refunds(status, total, refunded)
        if refunded < total:
            assert target is None
        if target is not None:
            assert target is PaymentStatus.REFUNDED
            assert bill_status_for(target).value == "REFUNDED"
