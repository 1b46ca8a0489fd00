"""
Deterministic hashing utilities.

All hashing in the ledger kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used throughout:
payment snapshots for the audit log, webhook payload fingerprints, rendered
artifact checksums, and webhook signatures.
"""

import hashlib
import hmac
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal/datetime/date/Enum
    values are rendered as strings.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: dict) -> dict:
    """Round-trip through canonical JSON so the result fits a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_bytes(data: bytes) -> str:
    """Hex-encoded SHA-256 of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sign_payload(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 of ``payload`` keyed with ``secret``, hex-encoded."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """Constant-time comparison of ``signature`` against the expected HMAC."""
    if not secret or not signature:
        return False
    expected = sign_payload(secret, payload).encode("ascii")
    # Bytes on both sides: compare_digest rejects non-ASCII str operands.
    provided = signature.strip().lower().encode("utf-8", "replace")
    return hmac.compare_digest(expected, provided)
