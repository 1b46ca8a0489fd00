"""
Document numbering.

Covers:
- PREFIX-YEAR-NNNNNN format and per-tenant/prefix scopes
- Counter re-synchronisation from the registry after a collision
- Prefix validation and number parsing
"""

from datetime import datetime, timezone

import pytest

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.models.document_number import DocumentNumber, SequenceCounter
from ledger_kernel.services.sequence_service import (
    DocumentSequenceService,
    format_document_number,
    parse_document_number,
)


@pytest.fixture
def sequences(session, clock):
    return DocumentSequenceService(session, clock)


class TestNextNumber:
    def test_first_number_of_the_year(self, sequences):
        assert sequences.next_number(1, "RCP") == "RCP-2024-000001"

    def test_numbers_increase_per_scope(self, sequences):
        assert [sequences.next_number(1, "RCP") for _ in range(3)] == [
            "RCP-2024-000001",
            "RCP-2024-000002",
            "RCP-2024-000003",
        ]
        assert sequences.next_number(1, "BILL") == "BILL-2024-000001"
        assert sequences.next_number(2, "RCP") == "RCP-2024-000001"
        assert sequences.current_suffix(1, "RCP") == 3

    def test_new_year_restarts_the_suffix(self, session):
        clock = DeterministicClock(datetime(2024, 12, 31, 23, 0, tzinfo=timezone.utc))
        service = DocumentSequenceService(session, clock)
        assert service.next_number(1, "RCP") == "RCP-2024-000001"

        clock.set_time(datetime(2025, 1, 1, 0, 30, tzinfo=timezone.utc))
        assert service.next_number(1, "RCP") == "RCP-2025-000001"

    def test_new_counter_starts_after_existing_registry_entries(self, session, sequences, clock):
        session.add(DocumentNumber(tenant_id=1, prefix="RCP", number="RCP-2024-000007", issued_at=clock.now()))
        session.flush()

        assert sequences.next_number(1, "RCP") == "RCP-2024-000008"

    def test_collision_resyncs_counter(self, session, sequences, clock):
        session.add(SequenceCounter(tenant_id=1, prefix="RCP", year=2024, current_value=1))
        session.add(DocumentNumber(tenant_id=1, prefix="RCP", number="RCP-2024-000002", issued_at=clock.now()))
        session.flush()

        assert sequences.next_number(1, "RCP") == "RCP-2024-000003"

    @pytest.mark.parametrize("prefix", ["", "RC-P"])
    def test_invalid_prefix_rejected(self, sequences, prefix):
        with pytest.raises(ValidationError):
            sequences.next_number(1, prefix)


class TestFormatting:
    def test_format_pads_to_six_digits(self):
        assert format_document_number("BILL", 2024, 42) == "BILL-2024-000042"

    def test_parse_round_trip(self):
        assert parse_document_number("RCP-2024-000123") == ("RCP", 2024, 123)

    @pytest.mark.parametrize("number", ["RCP", "RCP-2024", "RCP-YEAR-000001", "-2024-000001"])
    def test_parse_rejects_malformed(self, number):
        with pytest.raises(ValidationError):
            parse_document_number(number)
