"""
Ledger Kernel - payment and billing core.

A transactional payment ledger with:
- Tenant-and-year scoped document numbering
- Refunds bounded by the collected total
- Installment schedules that sum to the payment total
- Append-only payment history
- Explicit, table-driven payment lifecycle
"""

__version__ = "0.1.0"
