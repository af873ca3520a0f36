"""
Payroll ORM Persistence Models (``payroll_modules.payroll.orm``).

Responsibility:
    SQLAlchemy ORM models for the inputs the payroll engine reads: employees,
    daily attendance rows, monthly attendance overrides, the organization
    holiday calendar and effective-dated compensation records.  Each class
    provides ``to_dto()`` / ``from_dto()`` conversion to the frozen engine
    and module DTOs.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTOs.  Inherits
    from ``TrackedBase`` which provides id, created_at, updated_at,
    created_by_id (NOT NULL) and updated_by_id.

Invariants enforced:
    - All monetary and hour fields use Decimal (Numeric(38,9)), never float.
    - One attendance row per (employee_id, work_date, punch_in).
    - One override per (employee_id, month, year).
    - One holiday per (organization_id, holiday_date).
    - Compensation lines are stored as an ordered JSON list; line order is
      the component order of every run computed from the record.

Audit relevance:
    Runs carry an input hash over the DTOs built from these rows, so a later
    edit of any input is detectable against the stored snapshot.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase, UUIDString

# ---------------------------------------------------------------------------
# EmployeeModel
# ---------------------------------------------------------------------------


class EmployeeModel(TrackedBase):
    """
    ORM model for ``Employee``.

    Guarantees:
        - ``employee_code`` is unique within an organization
          (uq_payroll_employee_org_code).
        - ``weekly_off_days`` is a JSON list of lowercase day names; an
          empty list means the organization default applies.
    """

    __tablename__ = "payroll_employees"

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False)
    join_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    exit_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    weekly_off_days: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "employee_code", name="uq_payroll_employee_org_code"),
        Index("idx_payroll_employee_org_active", "organization_id", "is_active"),
    )

    def to_dto(self):
        from payroll_modules.payroll.models import Employee
        return Employee(
            id=self.id,
            organization_id=self.organization_id,
            employee_code=self.employee_code,
            full_name=self.full_name,
            jurisdiction=self.jurisdiction,
            join_date=self.join_date,
            exit_date=self.exit_date,
            weekly_off_days=tuple(self.weekly_off_days or ()),
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "EmployeeModel":
        return cls(
            id=dto.id,
            organization_id=dto.organization_id,
            employee_code=dto.employee_code,
            full_name=dto.full_name,
            jurisdiction=dto.jurisdiction,
            join_date=dto.join_date,
            exit_date=dto.exit_date,
            weekly_off_days=[d.lower() for d in dto.weekly_off_days],
            is_active=dto.is_active,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<EmployeeModel {self.employee_code}: {self.full_name}>"


# ---------------------------------------------------------------------------
# AttendanceRecordModel
# ---------------------------------------------------------------------------


class AttendanceRecordModel(TrackedBase):
    """
    ORM model for one daily attendance row (``AttendanceDay``).

    Read-only to the engine.  An overnight shift may produce two rows (one
    per calendar day); both carry the same ``punch_in`` and collapse to a
    single day-record when the basis is resolved.
    """

    __tablename__ = "attendance_records"

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payroll_employees.id"), nullable=False
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_present: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_absent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_weekend: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_holiday: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_paid_leave: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_regularized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_late: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    geofence_ok: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_hours: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    expected_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    punch_in: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    punch_out: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "work_date", "punch_in", name="uq_attendance_employee_day_punch"
        ),
        Index("idx_attendance_employee_date", "employee_id", "work_date"),
    )

    def to_dto(self):
        from payroll_engines.attendance_basis import AttendanceDay
        return AttendanceDay(
            work_date=self.work_date,
            is_present=self.is_present,
            is_absent=self.is_absent,
            is_weekend=self.is_weekend,
            is_holiday=self.is_holiday,
            is_half_day=self.is_half_day,
            is_paid_leave=self.is_paid_leave,
            is_regularized=self.is_regularized,
            is_late=self.is_late,
            geofence_ok=self.geofence_ok,
            effective_hours=Decimal(self.effective_hours),
            expected_hours=(
                Decimal(self.expected_hours) if self.expected_hours is not None else None
            ),
            punch_in=self.punch_in,
        )

    @classmethod
    def from_dto(cls, dto, employee_id: UUID, created_by_id: UUID) -> "AttendanceRecordModel":
        return cls(
            employee_id=employee_id,
            work_date=dto.work_date,
            is_present=dto.is_present,
            is_absent=dto.is_absent,
            is_weekend=dto.is_weekend,
            is_holiday=dto.is_holiday,
            is_half_day=dto.is_half_day,
            is_paid_leave=dto.is_paid_leave,
            is_regularized=dto.is_regularized,
            is_late=dto.is_late,
            geofence_ok=dto.geofence_ok,
            effective_hours=dto.effective_hours,
            expected_hours=dto.expected_hours,
            punch_in=dto.punch_in,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<AttendanceRecordModel {self.employee_id} {self.work_date}>"


# ---------------------------------------------------------------------------
# AttendanceOverrideModel
# ---------------------------------------------------------------------------


class AttendanceOverrideModel(TrackedBase):
    """
    ORM model for ``AttendanceOverride`` -- one per employee per month.

    The payload is stored as entered; fields missing from it are zero when
    the basis is resolved.  Edits are rejected by PayrollService once the
    period for the month is locked.
    """

    __tablename__ = "attendance_overrides"

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payroll_employees.id"), nullable=False
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "month", "year", name="uq_attendance_override_month"),
    )

    def to_dto(self):
        from payroll_engines.attendance_basis import AttendanceOverride
        return AttendanceOverride.from_payload(self.payload)

    @classmethod
    def from_dto(
        cls, dto, employee_id: UUID, month: int, year: int, created_by_id: UUID
    ) -> "AttendanceOverrideModel":
        return cls(
            employee_id=employee_id,
            month=month,
            year=year,
            payload=dto.to_payload(),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<AttendanceOverrideModel {self.employee_id} {self.year:04d}-{self.month:02d}>"


# ---------------------------------------------------------------------------
# HolidayModel
# ---------------------------------------------------------------------------


class HolidayModel(TrackedBase):
    """ORM model for ``Holiday`` -- organization holiday calendar entry."""

    __tablename__ = "payroll_holidays"

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_optional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "holiday_date", name="uq_payroll_holiday_org_date"),
    )

    def to_dto(self):
        from payroll_modules.payroll.models import Holiday
        return Holiday(
            holiday_date=self.holiday_date,
            name=self.name,
            is_optional=self.is_optional,
        )

    @classmethod
    def from_dto(cls, dto, organization_id: UUID, created_by_id: UUID) -> "HolidayModel":
        return cls(
            organization_id=organization_id,
            holiday_date=dto.holiday_date,
            name=dto.name,
            is_optional=dto.is_optional,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<HolidayModel {self.holiday_date}: {self.name}>"


# ---------------------------------------------------------------------------
# CompensationRecordModel
# ---------------------------------------------------------------------------


class CompensationRecordModel(TrackedBase):
    """
    ORM model for ``CompensationRecord``.

    Overlapping validity intervals are not prevented here; the resolver
    detects them and the run carries an AmbiguousState warning.
    """

    __tablename__ = "compensation_records"

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payroll_employees.id"), nullable=False
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    annual_ctc: Mapped[Decimal] = mapped_column(nullable=False)
    lines: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        Index("idx_compensation_employee_from", "employee_id", "effective_from"),
    )

    def to_dto(self):
        from payroll_engines.compensation import CompensationLine, CompensationRecord
        return CompensationRecord(
            id=self.id,
            employee_id=self.employee_id,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            annual_ctc=Decimal(self.annual_ctc),
            lines=tuple(
                CompensationLine(
                    component_code=line["component_code"],
                    annual_amount=Decimal(str(line["annual_amount"])),
                )
                for line in self.lines
            ),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "CompensationRecordModel":
        return cls(
            id=dto.id,
            employee_id=dto.employee_id,
            effective_from=dto.effective_from,
            effective_to=dto.effective_to,
            annual_ctc=dto.annual_ctc,
            lines=[
                {"component_code": line.component_code, "annual_amount": str(line.annual_amount)}
                for line in dto.lines
            ],
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<CompensationRecordModel {self.employee_id} "
            f"{self.effective_from}..{self.effective_to or 'open'}>"
        )
