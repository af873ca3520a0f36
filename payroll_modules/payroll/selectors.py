"""
Payroll selectors -- read-side queries returning DTOs.

``PayrollInputSelector`` loads everything one calculation reads (employee,
attendance rows, override, holidays, compensation history).
``PayrollRunSelector`` reads persisted run snapshots.

Both use the caller's session and never write.
"""

from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payroll_engines.attendance_basis import AttendanceDay, AttendanceOverride, month_bounds
from payroll_engines.compensation import CompensationRecord
from payroll_kernel.db.types import round_money
from payroll_kernel.domain.dtos import RunWarning
from payroll_kernel.exceptions import EmployeeNotFoundError
from payroll_kernel.models.payroll_run import CURRENT_RUN_STATUSES, PayrollRunModel, RunStatus
from payroll_kernel.selectors.base import BaseSelector
from payroll_modules.payroll.models import Employee, Holiday, PayrollRunSnapshot, StatutorySummary
from payroll_modules.payroll.orm import (
    AttendanceOverrideModel,
    AttendanceRecordModel,
    CompensationRecordModel,
    EmployeeModel,
    HolidayModel,
)

ZERO = Decimal("0")


class PayrollInputSelector(BaseSelector[EmployeeModel]):
    """Loads calculation inputs for one employee and month."""

    def get_employee(self, employee_id: UUID) -> Employee:
        model = self.session.get(EmployeeModel, employee_id)
        if model is None:
            raise EmployeeNotFoundError(str(employee_id))
        return model.to_dto()

    def eligible_employees(self, organization_id: UUID, month: int, year: int) -> list[Employee]:
        """
        Active employees whose employment window overlaps the month, ordered
        by employee code.
        """
        first, last = month_bounds(year, month)
        rows = self.session.execute(
            select(EmployeeModel)
            .where(
                EmployeeModel.organization_id == organization_id,
                EmployeeModel.is_active.is_(True),
            )
            .order_by(EmployeeModel.employee_code)
        ).scalars()
        return [
            dto for dto in (row.to_dto() for row in rows) if dto.employed_during(first, last)
        ]

    def attendance_days(self, employee_id: UUID, month: int, year: int) -> list[AttendanceDay]:
        """
        Rows that may be attributed to the month.

        The day after the month is included: the second half of an overnight
        shift that starts on the last day carries the next day's work_date.
        """
        first, last = month_bounds(year, month)
        rows = self.session.execute(
            select(AttendanceRecordModel)
            .where(
                AttendanceRecordModel.employee_id == employee_id,
                AttendanceRecordModel.work_date >= first,
                AttendanceRecordModel.work_date <= last + timedelta(days=1),
            )
            .order_by(AttendanceRecordModel.work_date, AttendanceRecordModel.id)
        ).scalars()
        return [row.to_dto() for row in rows]

    def _override_row(
        self, employee_id: UUID, month: int, year: int
    ) -> AttendanceOverrideModel | None:
        return self.session.execute(
            select(AttendanceOverrideModel).where(
                AttendanceOverrideModel.employee_id == employee_id,
                AttendanceOverrideModel.month == month,
                AttendanceOverrideModel.year == year,
            )
        ).scalar_one_or_none()

    def attendance_override(
        self, employee_id: UUID, month: int, year: int
    ) -> AttendanceOverride | None:
        row = self._override_row(employee_id, month, year)
        return row.to_dto() if row is not None else None

    def holidays(self, organization_id: UUID, month: int, year: int) -> list[Holiday]:
        first, last = month_bounds(year, month)
        rows = self.session.execute(
            select(HolidayModel)
            .where(
                HolidayModel.organization_id == organization_id,
                HolidayModel.holiday_date >= first,
                HolidayModel.holiday_date <= last,
            )
            .order_by(HolidayModel.holiday_date)
        ).scalars()
        return [row.to_dto() for row in rows]

    def compensation_records(self, employee_id: UUID) -> list[CompensationRecord]:
        rows = self.session.execute(
            select(CompensationRecordModel)
            .where(CompensationRecordModel.employee_id == employee_id)
            .order_by(CompensationRecordModel.effective_from)
        ).scalars()
        return [row.to_dto() for row in rows]


def _money(value) -> Decimal:
    return round_money(Decimal(value))


def run_to_snapshot(run: PayrollRunModel) -> PayrollRunSnapshot:
    """Convert a run row to its read-only DTO."""
    return PayrollRunSnapshot(
        id=run.id,
        period_id=run.payroll_period_id,
        employee_id=run.employee_id,
        version=run.version,
        status=RunStatus(run.status),
        jurisdiction=run.jurisdiction,
        gross_earnings=_money(run.gross_earnings),
        total_deductions=_money(run.total_deductions),
        net_pay=_money(run.net_pay),
        employer_cost=_money(run.employer_cost),
        pf_wages=_money(run.pf_wages),
        pf_employee=_money(run.pf_employee),
        pf_employer=_money(run.pf_employer),
        esi_wages=_money(run.esi_wages),
        esi_employee=_money(run.esi_employee),
        esi_employer=_money(run.esi_employer),
        pt_amount=_money(run.pt_amount),
        tds_amount=_money(run.tds_amount),
        snapshot=dict(run.snapshot),
        attendance_basis=dict(run.attendance_basis),
        warnings=tuple(
            RunWarning(code=w["code"], message=w["message"], details=w.get("details", {}))
            for w in run.warnings or ()
        ),
        reference_fingerprint=run.reference_fingerprint,
        input_hash=run.input_hash,
        finalized_at=run.finalized_at,
        supersedes_run_id=run.supersedes_run_id,
        supersede_reason=run.supersede_reason,
        superseded_at=run.superseded_at,
    )


class PayrollRunSelector(BaseSelector[PayrollRunModel]):
    """Read access to persisted payroll runs."""

    def current_run_model(
        self, period_id: UUID, employee_id: UUID, *, for_update: bool = False
    ) -> PayrollRunModel | None:
        stmt = select(PayrollRunModel).where(
            PayrollRunModel.payroll_period_id == period_id,
            PayrollRunModel.employee_id == employee_id,
            PayrollRunModel.status.in_(CURRENT_RUN_STATUSES),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_version(self, period_id: UUID, employee_id: UUID) -> int:
        versions = self.session.execute(
            select(PayrollRunModel.version).where(
                PayrollRunModel.payroll_period_id == period_id,
                PayrollRunModel.employee_id == employee_id,
            )
        ).scalars().all()
        return max(versions, default=0)

    def current_run(self, period_id: UUID, employee_id: UUID) -> PayrollRunSnapshot | None:
        run = self.current_run_model(period_id, employee_id)
        return run_to_snapshot(run) if run is not None else None

    def current_runs(self, period_id: UUID) -> list[PayrollRunSnapshot]:
        rows = self.session.execute(
            select(PayrollRunModel)
            .where(
                PayrollRunModel.payroll_period_id == period_id,
                PayrollRunModel.status.in_(CURRENT_RUN_STATUSES),
            )
            .order_by(PayrollRunModel.employee_id)
        ).scalars()
        return [run_to_snapshot(row) for row in rows]

    def history(self, period_id: UUID, employee_id: UUID) -> list[PayrollRunSnapshot]:
        """Every version for the pair, oldest first."""
        rows = self.session.execute(
            select(PayrollRunModel)
            .where(
                PayrollRunModel.payroll_period_id == period_id,
                PayrollRunModel.employee_id == employee_id,
            )
            .order_by(PayrollRunModel.version)
        ).scalars()
        return [run_to_snapshot(row) for row in rows]

    def processed_employee_ids(self, period_id: UUID) -> set[UUID]:
        return set(
            self.session.execute(
                select(PayrollRunModel.employee_id).where(
                    PayrollRunModel.payroll_period_id == period_id,
                    PayrollRunModel.status.in_(CURRENT_RUN_STATUSES),
                )
            ).scalars()
        )

    def statutory_summary(self, period_id: UUID) -> StatutorySummary:
        """Sums of the rounded per-run statutory amounts."""
        runs = self.current_runs(period_id)
        pt_by_jurisdiction: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for run in runs:
            pt_by_jurisdiction[run.jurisdiction] += run.pt_amount

        def total(name: str) -> Decimal:
            return sum((getattr(run, name) for run in runs), ZERO)

        return StatutorySummary(
            period_id=period_id,
            employee_count=len(runs),
            gross_earnings=total("gross_earnings"),
            net_pay=total("net_pay"),
            pf_wages=total("pf_wages"),
            pf_employee=total("pf_employee"),
            pf_employer=total("pf_employer"),
            esi_wages=total("esi_wages"),
            esi_employee=total("esi_employee"),
            esi_employer=total("esi_employer"),
            pt_amount=total("pt_amount"),
            tds_amount=total("tds_amount"),
            pt_by_jurisdiction=dict(pt_by_jurisdiction),
        )
