"""
Tests for the attendance basis resolver.

Validates:
- Working-day calendar (weekly offs, non-optional holidays)
- Day classification: present, half day, paid leave, regularized, LOP
- Employment window handling (mid-month join / exit)
- Monthly override replacing daily data wholesale
- Fail-closed behaviour when nothing was captured
- Overnight shifts and duplicate punches
- Overtime and late counting
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_engines.attendance_basis import (
    AttendanceDay,
    AttendanceOverride,
    BasisSource,
    employment_window,
    resolve_attendance_basis,
    weekday_numbers,
    working_dates,
)
from tests.helpers import (
    APRIL_2024_HOLIDAYS,
    absent_days,
    month_working_dates,
    present_days,
)

APRIL_WORKING = month_working_dates(2024, 4, APRIL_2024_HOLIDAYS)


def _resolve(records=(), **kwargs):
    params = {
        "employee_id": uuid4(),
        "month": 4,
        "year": 2024,
        "records": records,
        "holidays": APRIL_2024_HOLIDAYS,
        "weekly_off_days": ("sunday",),
    }
    params.update(kwargs)
    return resolve_attendance_basis(**params)


# =============================================================================
# Calendar
# =============================================================================


class TestWorkingCalendar:
    """Working days are the month minus weekly offs and holidays."""

    def test_april_2024_has_24_working_days(self):
        assert len(APRIL_WORKING) == 24

    def test_holidays_and_sundays_excluded(self):
        assert date(2024, 4, 11) not in APRIL_WORKING
        assert date(2024, 4, 7) not in APRIL_WORKING
        assert date(2024, 4, 6) in APRIL_WORKING

    def test_weekday_names_are_case_insensitive(self):
        assert weekday_numbers(["Saturday", " sunday "]) == frozenset({5, 6})

    def test_unknown_weekday_rejected(self):
        with pytest.raises(ValueError, match="Unknown weekday"):
            weekday_numbers(["funday"])

    def test_two_day_weekend(self):
        days = working_dates(2024, 9, weekday_numbers(["saturday", "sunday"]), [date(2024, 9, 16)])
        assert len(days) == 20

    def test_employment_window_empty_when_exited_before_month(self):
        assert employment_window(2024, 4, date(2020, 1, 1), date(2024, 3, 31)) is None

    def test_employment_window_clamped_to_month(self):
        window = employment_window(2024, 4, date(2024, 4, 10), None)
        assert window == (date(2024, 4, 10), date(2024, 4, 30))


# =============================================================================
# Daily classification
# =============================================================================


class TestDailyClassification:
    """Each working day is present, paid or LOP."""

    def test_full_attendance(self):
        basis = _resolve(present_days(APRIL_WORKING))

        assert basis.source == BasisSource.DAILY
        assert basis.working_days == 24
        assert basis.present_days == Decimal("24")
        assert basis.lop_days == Decimal("0")
        assert basis.payable_days == Decimal("24")
        assert basis.warnings == ()

    def test_absent_rows_are_lop(self):
        lop = [date(2024, 4, 3), date(2024, 4, 4)]
        rows = present_days(d for d in APRIL_WORKING if d not in lop) + absent_days(lop)

        basis = _resolve(rows)

        assert basis.lop_days == Decimal("2")
        assert basis.payable_days == Decimal("22")

    def test_missing_row_is_lop(self):
        rows = present_days(d for d in APRIL_WORKING if d != date(2024, 4, 5))

        basis = _resolve(rows)

        assert basis.lop_days == Decimal("1")
        assert basis.present_days == Decimal("23")

    def test_half_day_splits_present_and_lop(self):
        half = date(2024, 4, 8)
        rows = present_days(d for d in APRIL_WORKING if d != half)
        rows += present_days([half], hours=Decimal("4"), is_half_day=True)

        basis = _resolve(rows)

        assert basis.present_days == Decimal("23.5")
        assert basis.lop_days == Decimal("0.5")
        assert basis.half_days == 1
        assert basis.payable_days == Decimal("23.5")

    def test_paid_leave_is_payable(self):
        leave = date(2024, 4, 9)
        rows = present_days(d for d in APRIL_WORKING if d != leave)
        rows.append(AttendanceDay(work_date=leave, is_paid_leave=True))

        basis = _resolve(rows)

        assert basis.paid_leaves == Decimal("1")
        assert basis.lop_days == Decimal("0")
        assert basis.payable_days == Decimal("24")

    def test_regularized_absence_is_paid(self):
        day = date(2024, 4, 10)
        rows = present_days(d for d in APRIL_WORKING if d != day)
        rows += absent_days([day], is_regularized=True)

        basis = _resolve(rows)

        assert basis.paid_leaves == Decimal("1")
        assert basis.lop_days == Decimal("0")

    def test_present_outside_geofence_is_lop(self):
        day = date(2024, 4, 12)
        rows = present_days(d for d in APRIL_WORKING if d != day)
        rows += present_days([day], geofence_ok=False)

        basis = _resolve(rows)

        assert basis.lop_days == Decimal("1")

    def test_day_flagged_holiday_by_capture_is_paid(self):
        day = date(2024, 4, 15)
        rows = present_days(d for d in APRIL_WORKING if d != day)
        rows.append(AttendanceDay(work_date=day, is_holiday=True))

        basis = _resolve(rows)

        assert basis.paid_leaves == Decimal("1")
        assert basis.lop_days == Decimal("0")

    def test_counts_cover_every_working_day(self):
        lop = [date(2024, 4, 3)]
        rows = present_days(d for d in APRIL_WORKING[5:] if d not in lop)
        rows += absent_days(lop)
        rows.append(AttendanceDay(work_date=APRIL_WORKING[0], is_paid_leave=True))

        basis = _resolve(rows)

        total = basis.present_days + basis.paid_leaves + basis.lop_days
        assert total == Decimal(basis.working_days)

    def test_optional_holiday_is_a_working_day(self):
        # Apr 17 treated as optional: not passed in, so it is a working day.
        basis = _resolve(present_days(APRIL_WORKING), holidays=[date(2024, 4, 11)])
        assert basis.working_days == 25
        assert basis.lop_days == Decimal("1")

    def test_invalid_month_rejected(self):
        with pytest.raises(ValueError, match="month"):
            _resolve(month=13)


# =============================================================================
# Employment window
# =============================================================================


class TestEmploymentWindow:
    """Working days outside [join, exit] are inactive, not LOP."""

    def test_mid_month_join_with_two_day_weekend(self):
        sept_holidays = [date(2024, 9, 16)]
        weekend = ("saturday", "sunday")
        working = month_working_dates(2024, 9, sept_holidays, weekend)
        rows = present_days(d for d in working if d >= date(2024, 9, 15))

        basis = _resolve(
            rows,
            month=9,
            holidays=sept_holidays,
            weekly_off_days=weekend,
            join_date=date(2024, 9, 15),
        )

        assert basis.working_days == 20
        assert basis.inactive_days == 10
        assert basis.lop_days == Decimal("0")
        assert basis.payable_days == Decimal("10")

    def test_mid_month_exit(self):
        exit_date = date(2024, 4, 12)
        rows = present_days(d for d in APRIL_WORKING if d <= exit_date)

        basis = _resolve(rows, exit_date=exit_date)

        in_window = [d for d in APRIL_WORKING if d <= exit_date]
        assert basis.inactive_days == 24 - len(in_window)
        assert basis.payable_days == Decimal(len(in_window))

    def test_rows_outside_window_ignored(self):
        join = date(2024, 4, 16)
        basis = _resolve(present_days(APRIL_WORKING), join_date=join)

        in_window = [d for d in APRIL_WORKING if d >= join]
        assert basis.present_days == Decimal(len(in_window))


# =============================================================================
# Override
# =============================================================================


class TestOverride:
    """A monthly override replaces daily data wholesale."""

    def test_override_replaces_daily_counts(self):
        override = AttendanceOverride(
            present_days=Decimal("20"),
            lop_days=Decimal("3"),
            paid_leaves=Decimal("1"),
            ot_hours=Decimal("6"),
            late_count=2,
        )

        basis = _resolve(present_days(APRIL_WORKING), override=override)

        assert basis.source == BasisSource.OVERRIDE
        assert basis.present_days == Decimal("20")
        assert basis.lop_days == Decimal("3")
        assert basis.ot_hours == Decimal("6")
        assert basis.late_count == 2
        assert basis.payable_days == Decimal("21")

    def test_missing_payload_fields_are_zero(self):
        override = AttendanceOverride.from_payload({"lop_days": "2"})

        basis = _resolve(present_days(APRIL_WORKING), override=override)

        assert basis.present_days == Decimal("0")
        assert basis.paid_leaves == Decimal("0")
        assert basis.ot_hours == Decimal("0")
        assert basis.payable_days == Decimal("22")

    def test_override_respects_employment_window(self):
        override = AttendanceOverride(lop_days=Decimal("1"))
        basis = _resolve(override=override, join_date=date(2024, 4, 16))

        in_window = [d for d in APRIL_WORKING if d >= date(2024, 4, 16)]
        assert basis.payable_days == Decimal(len(in_window) - 1)

    def test_negative_override_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            AttendanceOverride(lop_days=Decimal("-1"))

    def test_payload_round_trip_keeps_remarks(self):
        override = AttendanceOverride(lop_days=Decimal("1.5"), remarks="HR correction")
        assert AttendanceOverride.from_payload(override.to_payload()) == override


# =============================================================================
# Fail closed
# =============================================================================


class TestFailClosed:
    """No rows in the employment window and no override: everything in it is LOP."""

    def test_no_data_is_all_lop_with_warning(self):
        basis = _resolve()

        assert basis.source == BasisSource.FAIL_CLOSED
        assert basis.lop_days == Decimal("24")
        assert basis.payable_days == Decimal("0")
        assert [w.code for w in basis.warnings] == ["PARTIAL_DATA"]
        assert basis.warnings[0].details["lop_days"] == 24

    def test_fail_closed_limited_to_window(self):
        basis = _resolve(join_date=date(2024, 4, 22))

        in_window = [d for d in APRIL_WORKING if d >= date(2024, 4, 22)]
        assert basis.lop_days == Decimal(len(in_window))
        assert basis.payable_days == Decimal("0")

    def test_rows_only_before_join_still_fail_closed(self):
        join = date(2024, 4, 15)
        basis = _resolve(present_days([date(2024, 4, 2)]), join_date=join)

        in_window = [d for d in APRIL_WORKING if d >= join]
        assert basis.source == BasisSource.FAIL_CLOSED
        assert basis.lop_days == Decimal(len(in_window))
        assert [w.code for w in basis.warnings] == ["PARTIAL_DATA"]

    def test_fail_closed_logged(self, captured_logs):
        _resolve()
        assert any(r["message"] == "attendance_basis_fail_closed" for r in captured_logs())


# =============================================================================
# Shifts, overtime, lateness
# =============================================================================


class TestShiftsAndOvertime:
    """Overnight shifts, duplicate punches and overtime hours."""

    def test_overnight_shift_counts_toward_punch_in_day(self):
        night = date(2024, 4, 2)
        next_day = date(2024, 4, 3)
        rows = present_days(d for d in APRIL_WORKING if d not in (night, next_day))
        rows.append(
            AttendanceDay(
                work_date=next_day,
                is_present=True,
                effective_hours=Decimal("8"),
                punch_in=datetime(2024, 4, 2, 22, 0),
            )
        )

        basis = _resolve(rows)

        assert basis.present_days == Decimal("23")
        assert basis.lop_days == Decimal("1")

    def test_duplicate_punch_collapses_to_longest(self):
        day = date(2024, 4, 2)
        punch = datetime(2024, 4, 2, 9, 0)
        rows = present_days(d for d in APRIL_WORKING if d != day)
        rows += [
            AttendanceDay(work_date=day, is_present=True, effective_hours=Decimal("8"), punch_in=punch),
            AttendanceDay(work_date=day, is_present=True, effective_hours=Decimal("9"), punch_in=punch),
        ]

        basis = _resolve(rows)

        assert basis.present_days == Decimal("24")
        assert basis.ot_hours == Decimal("1")

    def test_hours_beyond_expected_are_overtime(self):
        rows = present_days(d for d in APRIL_WORKING if d != date(2024, 4, 2))
        rows += present_days([date(2024, 4, 2)], hours=Decimal("10.5"))

        basis = _resolve(rows)

        assert basis.ot_hours == Decimal("2.5")

    def test_expected_hours_per_row_respected(self):
        rows = present_days(d for d in APRIL_WORKING if d != date(2024, 4, 2))
        rows += present_days([date(2024, 4, 2)], hours=Decimal("7"), expected_hours=Decimal("6"))

        basis = _resolve(rows)

        assert basis.ot_hours == Decimal("1")

    def test_work_on_weekly_off_is_all_overtime(self):
        rows = present_days(APRIL_WORKING)
        rows += present_days([date(2024, 4, 7)], hours=Decimal("4"))

        basis = _resolve(rows)

        assert basis.ot_hours == Decimal("4")
        assert basis.present_days == Decimal("24")

    def test_late_days_counted(self):
        late = APRIL_WORKING[:3]
        rows = present_days(d for d in APRIL_WORKING if d not in late)
        rows += present_days(late, is_late=True)

        basis = _resolve(rows)

        assert basis.late_count == 3
