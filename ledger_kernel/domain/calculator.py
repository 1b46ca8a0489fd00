"""
Monetary Calculator -- pure, side-effect-free money arithmetic.

Responsibility:
    Total derivation, late-fee accrual, installment splitting and due-date
    spacing.  No I/O, no clock: "now" is always a parameter.

Invariants enforced:
    - total == amount - discount + fine, never negative (InvalidAmountError).
    - sum(split_installments(total, n)) == total for every n >= 1.
    - All results are quantized to cents with ROUND_HALF_UP.
"""

import calendar
import math
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from ledger_kernel.exceptions import InvalidAmountError, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

DEFAULT_DAILY_RATE = Decimal("0.01")
DEFAULT_CAP_RATIO = Decimal("0.5")

INTERVAL_DAYS = {
    "daily": 1,
    "weekly": 7,
}
INTERVAL_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}


def to_money(value: Any, field: str = "amount") -> Decimal:
    """
    Normalise a value to a cent-quantized Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.10") rather than
    its binary expansion.  Booleans and non-numeric strings are rejected.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError("must be a number", field=field, value=repr(value))
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError("must be a number", field=field, value=repr(value)) from None
    if not result.is_finite():
        raise InvalidAmountError("must be finite", field=field, value=str(result))
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def _non_negative(value: Any, field: str) -> Decimal:
    amount = to_money(value, field)
    if amount < 0:
        raise InvalidAmountError("must not be negative", field=field, value=str(amount))
    return amount


def calculate_total(amount: Any, discount: Any = ZERO, fine: Any = ZERO) -> Decimal:
    """
    total = amount - discount + fine.

    Raises:
        InvalidAmountError: any input negative, or the result negative.
    """
    amount = _non_negative(amount, "amount")
    discount = _non_negative(discount, "discount")
    fine = _non_negative(fine, "fine")

    total = amount - discount + fine
    if total < 0:
        raise InvalidAmountError(
            f"discount {discount} exceeds amount {amount} plus fine {fine}",
            field="total",
            value=str(total),
        )
    return total


def days_late(due: date | datetime, now: date | datetime) -> int:
    """
    Whole days elapsed past ``due``, rounded up.

    Two dates compare calendar days.  If either side is a datetime the
    elapsed time is measured exactly and any part day counts as a full day.
    """
    if isinstance(due, datetime) or isinstance(now, datetime):
        due_dt = due if isinstance(due, datetime) else datetime.combine(due, datetime.min.time(), tzinfo=_tz_of(now))
        now_dt = now if isinstance(now, datetime) else datetime.combine(now, datetime.min.time(), tzinfo=_tz_of(due))
        elapsed = (now_dt - due_dt).total_seconds()
        if elapsed <= 0:
            return 0
        return math.ceil(elapsed / 86400)
    return max((now - due).days, 0)


def _tz_of(value: date | datetime):
    return value.tzinfo if isinstance(value, datetime) else None


def calculate_late_fee(
    due_date: date | datetime | None,
    amount: Any,
    now: date | datetime,
    daily_rate: Any = DEFAULT_DAILY_RATE,
    cap_ratio: Any = DEFAULT_CAP_RATIO,
) -> Decimal:
    """
    min(amount * daily_rate * days_late, amount * cap_ratio); zero when not late.

    Example:
        >>> calculate_late_fee(date(2024, 1, 1), Decimal("1000"), date(2024, 1, 2))
        Decimal('10.00')
    """
    if due_date is None:
        return ZERO
    amount = _non_negative(amount, "amount")
    late = days_late(due_date, now)
    if late <= 0:
        return ZERO
    rate = Decimal(str(daily_rate))
    cap = Decimal(str(cap_ratio))
    fee = min(amount * rate * late, amount * cap)
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def split_installments(total: Any, n: int, quantum: Any = Decimal("1")) -> list[Decimal]:
    """
    Split ``total`` into ``n`` amounts that sum exactly to ``total``.

    The total is counted in units of ``quantum``: each installment gets
    floor(units / n) units and the first ``units mod n`` installments get one
    more.  A fraction smaller than one quantum is added to the first
    installment.

    Example:
        >>> split_installments(Decimal("100"), 3)
        [Decimal('34.00'), Decimal('33.00'), Decimal('33.00')]
    """
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise ValidationError("installment count must be an integer >= 1", field="count")
    total = _non_negative(total, "total")
    quantum = to_money(quantum, "quantum")
    if quantum <= 0:
        raise ValidationError("quantum must be positive", field="quantum")

    units = int((total / quantum).to_integral_value(rounding=ROUND_DOWN))
    leftover = total - quantum * units
    base, remainder = divmod(units, n)

    amounts = [
        (quantum * (base + 1) if i < remainder else quantum * base).quantize(CENT)
        for i in range(n)
    ]
    amounts[0] = (amounts[0] + leftover).quantize(CENT)
    return amounts


def add_months(start: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    index = start.month - 1 + months
    year = start.year + index // 12
    month = index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def next_due_date(start: date, interval: str | int, steps: int = 1) -> date:
    """
    Due date ``steps`` intervals after ``start``.

    ``interval`` is one of daily/weekly/monthly/quarterly/yearly or a
    positive number of days.
    """
    if isinstance(interval, int) and not isinstance(interval, bool):
        if interval < 1:
            raise ValidationError("interval days must be >= 1", field="interval")
        return start + timedelta(days=interval * steps)
    if interval in INTERVAL_DAYS:
        return start + timedelta(days=INTERVAL_DAYS[interval] * steps)
    if interval in INTERVAL_MONTHS:
        return add_months(start, INTERVAL_MONTHS[interval] * steps)
    raise ValidationError(f"unknown interval {interval!r}", field="interval")


def summarize_payments(payments: Iterable[Any]) -> dict[str, Any]:
    """
    Aggregate counts and totals per status.

    Accepts any objects with ``status`` and ``total`` attributes.
    """
    count = 0
    grand_total = ZERO
    by_status: dict[str, dict[str, Any]] = {}
    for payment in payments:
        status = str(getattr(payment.status, "value", payment.status))
        total = to_money(payment.total, "total")
        bucket = by_status.setdefault(status, {"count": 0, "total": ZERO})
        bucket["count"] += 1
        bucket["total"] += total
        count += 1
        grand_total += total
    return {"count": count, "total": grand_total, "by_status": by_status}
