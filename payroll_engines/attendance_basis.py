"""
Attendance Basis Resolver -- aggregate daily attendance into a monthly basis.

Pure functions with no I/O.  Daily rows, the monthly override, the holiday
calendar and the employment window are all passed in.

Rules:
    - Working days are the calendar days of the month that are neither a
      weekly off nor a (non-optional) organization holiday.  working_days is
      always the full-month count: it is the pro-ration denominator.
    - Rows are attributed to the punch-in calendar date, so an overnight
      shift produces one day-record.  Rows sharing a punch-in are the same
      shift and collapse to the longest of them.
    - Each working day inside the employment window is classified:
        flagged weekend/holiday by capture  -> paid_leaves
        present (and geofence_ok)           -> present_days (half-day: 0.5
                                               present, 0.5 LOP)
        approved leave / regularized absence -> paid_leaves
        anything else, including no row     -> lop_days
    - Working days outside [join_date, exit_date] are inactive_days: neither
      present nor LOP.
    - payable_days = working_days - inactive_days - lop_days (never < 0).
    - A monthly override replaces present/LOP/paid/overtime/late wholesale;
      fields missing from its payload are zero, never merged with daily data.
    - No rows inside the employment window and no override: every working
      day in the window is LOP and a PARTIAL_DATA warning is attached.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.dtos import RunWarning
from payroll_kernel.exceptions import PartialDataError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.attendance_basis")

ZERO = Decimal("0")
HALF = Decimal("0.5")

WEEKDAY_INDEX: dict[str, int] = {
    name.lower(): index for index, name in enumerate(calendar.day_name)
}


def weekday_numbers(names: Iterable[str]) -> frozenset[int]:
    """Map weekday names ("sunday", "Saturday") to date.weekday() numbers.

    Raises:
        ValueError: On an unrecognised name.
    """
    result = set()
    for name in names:
        key = name.strip().lower()
        if key not in WEEKDAY_INDEX:
            raise ValueError(f"Unknown weekday name: {name!r}")
        result.add(WEEKDAY_INDEX[key])
    return frozenset(result)


class BasisSource(str, Enum):
    """Where the counts of an attendance basis came from."""

    DAILY = "daily"
    OVERRIDE = "override"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class AttendanceDay:
    """One daily attendance row as captured by the attendance subsystem."""

    work_date: date
    is_present: bool = False
    is_absent: bool = False
    is_weekend: bool = False
    is_holiday: bool = False
    is_half_day: bool = False
    is_paid_leave: bool = False
    is_regularized: bool = False
    is_late: bool = False
    geofence_ok: bool = True
    effective_hours: Decimal = ZERO
    expected_hours: Decimal | None = None
    punch_in: datetime | None = None

    @property
    def attributed_date(self) -> date:
        """Calendar day the row counts towards (the punch-in day)."""
        return self.punch_in.date() if self.punch_in is not None else self.work_date


@dataclass(frozen=True)
class AttendanceOverride:
    """Authoritative monthly correction entered by HR."""

    present_days: Decimal = ZERO
    lop_days: Decimal = ZERO
    paid_leaves: Decimal = ZERO
    ot_hours: Decimal = ZERO
    late_count: int = 0
    remarks: str | None = None

    def __post_init__(self):
        for name in ("present_days", "lop_days", "paid_leaves", "ot_hours"):
            if getattr(self, name) < 0:
                raise ValueError(f"Override {name} cannot be negative")
        if self.late_count < 0:
            raise ValueError("Override late_count cannot be negative")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AttendanceOverride:
        """Build from a stored payload; absent fields become zero."""
        return cls(
            present_days=Decimal(str(payload.get("present_days", 0))),
            lop_days=Decimal(str(payload.get("lop_days", 0))),
            paid_leaves=Decimal(str(payload.get("paid_leaves", 0))),
            ot_hours=Decimal(str(payload.get("ot_hours", 0))),
            late_count=int(payload.get("late_count", 0)),
            remarks=payload.get("remarks"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "present_days": str(self.present_days),
            "lop_days": str(self.lop_days),
            "paid_leaves": str(self.paid_leaves),
            "ot_hours": str(self.ot_hours),
            "late_count": self.late_count,
        }
        if self.remarks:
            payload["remarks"] = self.remarks
        return payload


@dataclass(frozen=True)
class AttendanceBasis:
    """Monthly attendance summary consumed by the component evaluator."""

    month: int
    year: int
    working_days: int
    present_days: Decimal
    lop_days: Decimal
    paid_leaves: Decimal
    ot_hours: Decimal
    late_count: int
    payable_days: Decimal
    inactive_days: int = 0
    half_days: int = 0
    total_hours: Decimal = ZERO
    source: BasisSource = BasisSource.DAILY
    warnings: tuple[RunWarning, ...] = field(default_factory=tuple)

    def formula_variables(self) -> dict[str, Decimal]:
        """Basis fields addressable from formula components."""
        return {
            "working_days": Decimal(self.working_days),
            "payable_days": self.payable_days,
            "present_days": self.present_days,
            "lop_days": self.lop_days,
            "paid_leaves": self.paid_leaves,
            "ot_hours": self.ot_hours,
            "late_count": Decimal(self.late_count),
            "inactive_days": Decimal(self.inactive_days),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "year": self.year,
            "working_days": self.working_days,
            "present_days": str(self.present_days),
            "lop_days": str(self.lop_days),
            "paid_leaves": str(self.paid_leaves),
            "ot_hours": str(self.ot_hours),
            "late_count": self.late_count,
            "payable_days": str(self.payable_days),
            "inactive_days": self.inactive_days,
            "half_days": self.half_days,
            "total_hours": str(self.total_hours),
            "source": self.source.value,
        }


# =============================================================================
# Calendar helpers
# =============================================================================


def month_bounds(year: int, month: int) -> tuple[date, date]:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def working_dates(
    year: int,
    month: int,
    weekly_offs: frozenset[int],
    holidays: Iterable[date] = (),
) -> list[date]:
    """Calendar days of the month that are neither weekly off nor holiday."""
    holiday_set = set(holidays)
    _, last = month_bounds(year, month)
    days = (date(year, month, day) for day in range(1, last.day + 1))
    return [d for d in days if d.weekday() not in weekly_offs and d not in holiday_set]


def employment_window(
    year: int,
    month: int,
    join_date: date | None,
    exit_date: date | None,
) -> tuple[date, date] | None:
    """Intersection of [join_date, exit_date] with the month, or None if empty."""
    first, last = month_bounds(year, month)
    start = max(first, join_date) if join_date else first
    end = min(last, exit_date) if exit_date else last
    if start > end:
        return None
    return start, end


@dataclass
class _DayRecord:
    full_present: bool = False
    half_present: bool = False
    paid: bool = False
    flagged_off: bool = False
    late: bool = False
    hours: Decimal = ZERO
    expected: Decimal | None = None

    @property
    def present(self) -> bool:
        return self.full_present or self.half_present

    @property
    def half_day(self) -> bool:
        return self.half_present and not self.full_present


def _collapse_days(
    records: Iterable[AttendanceDay], first: date, last: date
) -> dict[date, _DayRecord]:
    """One _DayRecord per attributed calendar day inside [first, last]."""
    shifts: dict[tuple[date, Any], AttendanceDay] = {}
    for index, row in enumerate(records):
        day = row.attributed_date
        if not first <= day <= last:
            continue
        key = (day, row.punch_in if row.punch_in is not None else index)
        kept = shifts.get(key)
        if kept is None or row.effective_hours > kept.effective_hours:
            shifts[key] = row

    days: dict[date, _DayRecord] = {}
    for (day, _), row in shifts.items():
        rec = days.setdefault(day, _DayRecord())
        if row.is_present and not row.is_absent and row.geofence_ok:
            if row.is_half_day:
                rec.half_present = True
            else:
                rec.full_present = True
        rec.paid = rec.paid or row.is_paid_leave or (row.is_absent and row.is_regularized)
        rec.flagged_off = rec.flagged_off or row.is_weekend or row.is_holiday
        rec.late = rec.late or row.is_late
        rec.hours += row.effective_hours
        if row.expected_hours is not None:
            rec.expected = row.expected_hours
    return days


# =============================================================================
# Resolver
# =============================================================================


@traced_engine(
    "attendance_basis",
    "1.0",
    fingerprint_fields=("employee_id", "month", "year", "override", "join_date", "exit_date"),
)
def resolve_attendance_basis(
    *,
    employee_id: UUID | str,
    month: int,
    year: int,
    records: Iterable[AttendanceDay] = (),
    override: AttendanceOverride | None = None,
    holidays: Iterable[date] = (),
    weekly_off_days: Iterable[str] = ("sunday",),
    join_date: date | None = None,
    exit_date: date | None = None,
    standard_daily_hours: Decimal = Decimal("8"),
) -> AttendanceBasis:
    """
    Compute the monthly attendance basis for one employee.

    Preconditions:
        - month in 1..12.
        - holidays holds non-optional holidays only.

    Postconditions:
        - present_days + paid_leaves + lop_days == working days inside the
          employment window (daily source).
        - payable_days == working_days - lop_days when the employee was
          employed the whole month.

    Raises:
        ValueError: On an invalid month or weekday name.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")

    weekly_offs = weekday_numbers(weekly_off_days)
    first, last = month_bounds(year, month)
    all_working = working_dates(year, month, weekly_offs, holidays)
    working_days = len(all_working)

    window = employment_window(year, month, join_date, exit_date)
    if window is None:
        in_window: list[date] = []
    else:
        in_window = [d for d in all_working if window[0] <= d <= window[1]]
    inactive_days = working_days - len(in_window)

    records = list(records)
    days = _collapse_days(records, first, last)
    window_days = {
        d: rec for d, rec in days.items() if window is not None and window[0] <= d <= window[1]
    }
    total_hours = sum((rec.hours for rec in window_days.values()), ZERO)

    if override is not None:
        payable = max(Decimal(working_days - inactive_days) - override.lop_days, ZERO)
        basis = AttendanceBasis(
            month=month,
            year=year,
            working_days=working_days,
            present_days=override.present_days,
            lop_days=override.lop_days,
            paid_leaves=override.paid_leaves,
            ot_hours=override.ot_hours,
            late_count=override.late_count,
            payable_days=payable,
            inactive_days=inactive_days,
            total_hours=total_hours,
            source=BasisSource.OVERRIDE,
        )
        logger.info(
            "attendance_basis_from_override",
            extra={"employee_id": str(employee_id), "payable_days": str(payable)},
        )
        return basis

    if not window_days:
        lop = Decimal(len(in_window))
        warning = RunWarning.from_error(
            PartialDataError(str(employee_id), month, year, len(in_window))
        )
        logger.warning(
            "attendance_basis_fail_closed",
            extra={"employee_id": str(employee_id), "lop_days": len(in_window)},
        )
        return AttendanceBasis(
            month=month,
            year=year,
            working_days=working_days,
            present_days=ZERO,
            lop_days=lop,
            paid_leaves=ZERO,
            ot_hours=ZERO,
            late_count=0,
            payable_days=Decimal(working_days - inactive_days) - lop,
            inactive_days=inactive_days,
            source=BasisSource.FAIL_CLOSED,
            warnings=(warning,),
        )

    present = paid = lop = ZERO
    half_days = 0
    for day in in_window:
        rec = window_days.get(day)
        if rec is None:
            lop += 1
        elif rec.flagged_off:
            paid += 1
        elif rec.present and rec.half_day:
            present += HALF
            lop += HALF
            half_days += 1
        elif rec.present:
            present += 1
        elif rec.paid:
            paid += 1
        else:
            lop += 1

    working_set = set(in_window)
    ot_hours = ZERO
    for day, rec in window_days.items():
        if not rec.present:
            continue
        if day in working_set and not rec.flagged_off:
            expected = rec.expected if rec.expected is not None else standard_daily_hours
            ot_hours += max(rec.hours - expected, ZERO)
        else:
            ot_hours += rec.hours
    late_count = sum(1 for rec in window_days.values() if rec.late)

    payable = max(Decimal(working_days - inactive_days) - lop, ZERO)
    logger.info(
        "attendance_basis_resolved",
        extra={
            "employee_id": str(employee_id),
            "working_days": working_days,
            "payable_days": str(payable),
            "lop_days": str(lop),
        },
    )
    return AttendanceBasis(
        month=month,
        year=year,
        working_days=working_days,
        present_days=present,
        lop_days=lop,
        paid_leaves=paid,
        ot_hours=ot_hours,
        late_count=late_count,
        payable_days=payable,
        inactive_days=inactive_days,
        half_days=half_days,
        total_hours=total_hours,
        source=BasisSource.DAILY,
    )
