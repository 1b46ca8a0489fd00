"""
LedgerConfig schema.

Every tunable of the payment ledger in one frozen dataclass.  Values are
validated on construction; an invalid configuration never reaches a
service.  The kernel never imports this package: ledger_services reads a
LedgerConfig and passes plain values into kernel constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

INSTALLMENT_INTERVALS = frozenset({"daily", "weekly", "monthly", "quarterly", "yearly"})


@dataclass(frozen=True)
class LedgerConfig:
    # Document numbering
    receipt_prefix: str = "RCP"
    bill_prefix: str = "BILL"
    sequence_max_attempts: int = 5

    # Late fees
    late_fee_daily_rate: Decimal = Decimal("0.01")
    late_fee_cap_ratio: Decimal = Decimal("0.5")
    apply_late_fee_on_create: bool = True

    # Refunds
    refund_requires_approval: bool = False

    # Installments
    installment_interval: str | int = "monthly"
    installment_quantum: Decimal = Decimal("1")

    # External collaborators
    gateway_timeout_seconds: float = 30.0
    render_timeout_seconds: float = 30.0
    webhook_secrets: dict[str, str] = field(default_factory=dict)
    receipt_template: str = "receipt"
    bill_template: str = "bill"

    # Read cache
    cache_ttl_seconds: float = 1800.0

    def __post_init__(self) -> None:
        for name in ("receipt_prefix", "bill_prefix"):
            value = getattr(self, name)
            if not value or "-" in value:
                raise ValueError(f"{name} must be non-empty and contain no '-': {value!r}")
        if self.receipt_prefix == self.bill_prefix:
            raise ValueError("receipt_prefix and bill_prefix must differ")
        if self.sequence_max_attempts < 1:
            raise ValueError("sequence_max_attempts must be >= 1")
        if self.late_fee_daily_rate < 0:
            raise ValueError("late_fee_daily_rate must be >= 0")
        if not (0 <= self.late_fee_cap_ratio <= 1):
            raise ValueError("late_fee_cap_ratio must be between 0 and 1")
        if isinstance(self.installment_interval, int):
            if self.installment_interval < 1:
                raise ValueError("installment_interval days must be >= 1")
        elif self.installment_interval not in INSTALLMENT_INTERVALS:
            raise ValueError(f"unknown installment_interval {self.installment_interval!r}")
        if self.installment_quantum <= 0:
            raise ValueError("installment_quantum must be > 0")
        for name in ("gateway_timeout_seconds", "render_timeout_seconds", "cache_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if not self.receipt_template or not self.bill_template:
            raise ValueError("document templates must be named")
        # Gateway names are matched upper-case everywhere.
        object.__setattr__(
            self,
            "webhook_secrets",
            {str(name).upper(): secret for name, secret in self.webhook_secrets.items()},
        )

    def webhook_secret(self, gateway: str) -> str | None:
        return self.webhook_secrets.get(gateway.upper())
