"""
Tests for the compensation resolver.

Validates:
- The record covering the reference date is selected
- Overlaps: latest effective_from wins, warning names every candidate
- Strict mode raises instead of warning
- Record validation and reference-date clamping
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from payroll_engines.compensation import (
    CompensationLine,
    CompensationRecord,
    find_overlaps,
    reference_date_for,
    resolve_active_compensation,
)
from payroll_kernel.exceptions import AmbiguousStateError, CompensationNotFoundError
from tests.helpers import make_compensation

EMPLOYEE_ID = uuid4()
APRIL_15 = date(2024, 4, 15)


def _resolve(records, on=APRIL_15, strict=False):
    return resolve_active_compensation(
        employee_id=EMPLOYEE_ID, reference_date=on, records=records, strict=strict
    )


class TestSelection:
    """Exactly one covering record is the happy path."""

    def test_single_covering_record(self):
        record = make_compensation(EMPLOYEE_ID)

        resolved = _resolve([record])

        assert resolved.record == record
        assert resolved.warnings == ()
        assert not resolved.is_ambiguous

    def test_expired_record_ignored(self):
        old = make_compensation(
            EMPLOYEE_ID, effective_from=date(2023, 1, 1), effective_to=date(2023, 12, 31)
        )
        current = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 1, 1))

        resolved = _resolve([old, current])

        assert resolved.record == current
        assert not resolved.is_ambiguous

    def test_effective_to_is_inclusive(self):
        record = make_compensation(EMPLOYEE_ID, effective_to=APRIL_15)
        assert _resolve([record]).record == record

    def test_nothing_covers_date(self):
        future = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 5, 1))

        with pytest.raises(CompensationNotFoundError) as exc_info:
            _resolve([future])

        assert exc_info.value.code == "COMPENSATION_NOT_FOUND"
        assert exc_info.value.reference_date == "2024-04-15"


class TestOverlap:
    """Overlapping records resolve deterministically and are reported."""

    def test_latest_effective_from_wins_with_warning(self):
        r1 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 1, 1))
        r2 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 4, 1))

        resolved = _resolve([r1, r2])

        assert resolved.record == r2
        assert resolved.is_ambiguous
        (warning,) = resolved.warnings
        assert warning.code == "AMBIGUOUS_STATE"
        assert warning.details["chosen_id"] == str(r2.id)
        assert set(warning.details["candidate_ids"]) == {str(r1.id), str(r2.id)}

    def test_equal_effective_from_larger_id_wins(self):
        low = make_compensation(
            EMPLOYEE_ID, record_id=UUID("00000000-0000-0000-0000-000000000001")
        )
        high = make_compensation(
            EMPLOYEE_ID, record_id=UUID("ffffffff-0000-0000-0000-000000000001")
        )

        assert _resolve([high, low]).record == high
        assert _resolve([low, high]).record == high

    def test_strict_mode_raises(self):
        r1 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 1, 1))
        r2 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 4, 1))

        with pytest.raises(AmbiguousStateError) as exc_info:
            _resolve([r1, r2], strict=True)

        assert exc_info.value.chosen_id == str(r2.id)

    def test_overlap_logged(self, captured_logs):
        r1 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 1, 1))
        r2 = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 4, 1))

        _resolve([r1, r2])

        logs = [r for r in captured_logs() if r["message"] == "compensation_overlap_detected"]
        assert len(logs) == 1
        assert logs[0]["chosen_id"] == str(r2.id)

    def test_find_overlaps_pairs(self):
        closed = make_compensation(
            EMPLOYEE_ID, effective_from=date(2023, 1, 1), effective_to=date(2023, 12, 31)
        )
        open_a = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 1, 1))
        open_b = make_compensation(EMPLOYEE_ID, effective_from=date(2024, 6, 1))

        pairs = find_overlaps([open_b, closed, open_a])

        assert pairs == [(open_a, open_b)]


class TestRecordValidation:
    """Records reject inconsistent data at construction."""

    def test_effective_to_before_from(self):
        with pytest.raises(ValueError, match="precede"):
            make_compensation(
                EMPLOYEE_ID, effective_from=date(2024, 4, 1), effective_to=date(2024, 3, 1)
            )

    def test_duplicate_component_codes(self):
        lines = (
            CompensationLine("BASIC", Decimal("1")),
            CompensationLine("BASIC", Decimal("2")),
        )
        with pytest.raises(ValueError, match="Duplicate"):
            CompensationRecord(
                id=uuid4(),
                employee_id=EMPLOYEE_ID,
                effective_from=date(2024, 1, 1),
                effective_to=None,
                annual_ctc=Decimal("3"),
                lines=lines,
            )

    def test_negative_line_amount(self):
        with pytest.raises(ValueError, match="negative"):
            CompensationLine("BASIC", Decimal("-1"))


class TestReferenceDate:
    def test_default_is_mid_month(self):
        assert reference_date_for(2024, 4) == APRIL_15

    def test_clamped_to_month_end(self):
        assert reference_date_for(2024, 2, 31) == date(2024, 2, 29)
