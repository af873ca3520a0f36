"""Shared builders for payroll tests."""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from payroll_engines.attendance_basis import AttendanceDay, weekday_numbers, working_dates
from payroll_engines.compensation import CompensationLine, CompensationRecord

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# April 2024 with two non-optional holidays and Sunday off: 24 working days.
APRIL_2024_HOLIDAYS = (date(2024, 4, 11), date(2024, 4, 17))


def month_working_dates(
    year: int,
    month: int,
    holidays: Iterable[date] = (),
    weekly_off_days: Iterable[str] = ("sunday",),
) -> list[date]:
    return working_dates(year, month, weekday_numbers(weekly_off_days), holidays)


def present_days(
    dates: Iterable[date],
    hours: Decimal = Decimal("8"),
    **flags,
) -> list[AttendanceDay]:
    return [
        AttendanceDay(work_date=d, is_present=True, effective_hours=hours, **flags)
        for d in dates
    ]


def absent_days(dates: Iterable[date], **flags) -> list[AttendanceDay]:
    return [AttendanceDay(work_date=d, is_absent=True, **flags) for d in dates]


def scenario_lines(
    basic: str = "300000", hra: str = "120000", special: str = "180000"
) -> tuple[CompensationLine, ...]:
    """Basic 25,000 / HRA 10,000 / Special 15,000 a month (CTC 600,000)."""
    return (
        CompensationLine("BASIC", Decimal(basic)),
        CompensationLine("HRA", Decimal(hra)),
        CompensationLine("SPECIAL", Decimal(special)),
    )


def make_compensation(
    employee_id: UUID,
    lines: tuple[CompensationLine, ...] | None = None,
    effective_from: date = date(2024, 1, 1),
    effective_to: date | None = None,
    record_id: UUID | None = None,
) -> CompensationRecord:
    lines = lines if lines is not None else scenario_lines()
    return CompensationRecord(
        id=record_id or uuid4(),
        employee_id=employee_id,
        effective_from=effective_from,
        effective_to=effective_to,
        annual_ctc=sum((line.annual_amount for line in lines), Decimal("0")),
        lines=lines,
    )
