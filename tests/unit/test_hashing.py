"""Canonical hashing and webhook signatures."""

from datetime import date
from decimal import Decimal

from ledger_kernel.utils.hashing import (
    canonicalize_json,
    hash_bytes,
    hash_payload,
    sign_payload,
    to_json_safe,
    verify_signature,
)


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})

    def test_decimals_and_dates_render_as_strings(self):
        assert canonicalize_json({"d": date(2024, 1, 2), "x": Decimal("1.50")}) == '{"d":"2024-01-02","x":"1.50"}'

    def test_to_json_safe(self):
        assert to_json_safe({"amount": Decimal("10.00")}) == {"amount": "10.00"}

    def test_hash_bytes_is_sha256_hex(self):
        digest = hash_bytes(b"ledger")
        assert len(digest) == 64
        assert digest == hash_bytes(b"ledger")


class TestSignatures:
    def test_valid_signature(self):
        body = b'{"id":"evt_1"}'
        assert verify_signature("secret", body, sign_payload("secret", body))

    def test_signature_is_case_and_whitespace_tolerant(self):
        body = b"payload"
        signature = sign_payload("secret", body).upper() + "\n"
        assert verify_signature("secret", body, signature)

    def test_wrong_secret(self):
        body = b"payload"
        assert not verify_signature("other", body, sign_payload("secret", body))

    def test_tampered_body(self):
        signature = sign_payload("secret", b"payload")
        assert not verify_signature("secret", b"payload!", signature)

    def test_missing_secret_or_signature(self):
        body = b"payload"
        assert not verify_signature("", body, sign_payload("secret", body))
        assert not verify_signature("secret", body, None)
        assert not verify_signature("secret", body, "")

    def test_non_ascii_signature_is_a_mismatch(self):
        body = b"payload"
        assert not verify_signature("secret", body, "é" * 64)
