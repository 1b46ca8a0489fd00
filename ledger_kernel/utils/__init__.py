"""Utility modules for the ledger kernel."""

from ledger_kernel.utils.hashing import (
    canonicalize_json,
    hash_bytes,
    hash_payload,
    sign_payload,
    to_json_safe,
    verify_signature,
)

__all__ = [
    "canonicalize_json",
    "hash_bytes",
    "hash_payload",
    "sign_payload",
    "to_json_safe",
    "verify_signature",
]
