"""
ledger_config -- configuration for the payment ledger.

``load_ledger_config(path)`` is the entry point; it returns a validated,
frozen ``LedgerConfig``.  The kernel never imports this package.
"""

from ledger_config.loader import compute_checksum, config_from_mapping, load_ledger_config
from ledger_config.schema import LedgerConfig

__all__ = [
    "LedgerConfig",
    "compute_checksum",
    "config_from_mapping",
    "load_ledger_config",
]
