"""
Payroll Module Service (``payroll_modules.payroll.service``).

Responsibility
--------------
Composes the pure engines into payroll runs -- attendance basis,
compensation resolution, component evaluation and statutory compliance --
and persists the result as an immutable run snapshot.  Also the entry point
for the period lifecycle and for the inputs HR maintains (employees,
attendance, overrides, holidays, compensation).

Architecture position
---------------------
**Modules layer** -- ``PayrollService`` is the sole public entry point for
payroll operations.  It reads through selectors, computes through
``payroll_engines`` and writes through the kernel ORM models.

Invariants enforced
-------------------
* Each public mutating method owns the transaction boundary (``commit`` on
  success, ``rollback`` on any exception, which is re-raised).
* ``finalize_run`` reads the period with a row lock and writes only when the
  period is DRAFT.  A PROCESSED run is recomputed in place (same id, same
  version).
* ``supersede_run`` never rewrites the prior snapshot: it marks the prior
  row SUPERSEDED and inserts version + 1.
* Reference data (catalogue and rule sets) is the immutable snapshot handed
  to the constructor; its fingerprint is stored on every run.

Failure modes
-------------
* ``PeriodNotDraftError`` -- finalize or override edit after lock.
* ``RunNotSupersedableError`` -- supersede in a DRAFT period.
* ``ConcurrentFinalizeError`` -- the unique (period, employee, version)
  slot was lost on every retry.
* Any engine error (``CompensationNotFoundError``, ``InvalidFormulaError``,
  ``ComplianceRuleNotFoundError``, ...) -- rolled back, nothing persisted.

Usage::

    service = PayrollService(session, reference=load_reference_snapshot(), clock=clock)
    period = service.bootstrap_period(org_id, 3, 2024, actor_id=actor_id)
    run = service.finalize_run(period.id, employee_id, actor_id=actor_id)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payroll_config.loader import ReferenceSnapshot, load_reference_snapshot
from payroll_engines.attendance_basis import (
    AttendanceBasis,
    AttendanceDay,
    AttendanceOverride,
)
from payroll_engines.attendance_basis import (
    resolve_attendance_basis as compute_attendance_basis,
)
from payroll_engines.compensation import (
    CompensationRecord,
    ResolvedCompensation,
    find_overlaps,
    reference_date_for,
)
from payroll_engines.compensation import (
    resolve_active_compensation as compute_active_compensation,
)
from payroll_engines.compliance import ComplianceResult
from payroll_engines.compliance import apply_compliance as compute_compliance
from payroll_engines.components import ComponentEvaluation
from payroll_engines.components import evaluate_components as compute_components
from payroll_engines.withholding import WithholdingPolicy
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.dtos import PayrollPeriodInfo
from payroll_kernel.exceptions import (
    ConcurrentFinalizeError,
    PeriodNotDraftError,
    PreconditionFailedError,
    RunNotFoundError,
    RunNotSupersedableError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.models.payroll_period import PayrollPeriod, PeriodStatus
from payroll_kernel.models.payroll_run import PayrollRunModel, RunStatus
from payroll_kernel.services.period_service import PeriodService
from payroll_kernel.utils.hashing import hash_payload, to_jsonable
from payroll_modules.payroll.config import PayrollConfig
from payroll_modules.payroll.models import (
    Employee,
    Holiday,
    PayrollRunSnapshot,
    RunComputation,
    StatutorySummary,
)
from payroll_modules.payroll.orm import (
    AttendanceOverrideModel,
    AttendanceRecordModel,
    CompensationRecordModel,
    EmployeeModel,
    HolidayModel,
)
from payroll_modules.payroll.selectors import (
    PayrollInputSelector,
    PayrollRunSelector,
    run_to_snapshot,
)

logger = get_logger("modules.payroll.service")


class PayrollService:
    """
    Orchestrates payroll calculation and run persistence.

    Contract
    --------
    * The four calculation operations (``resolve_attendance_basis``,
      ``resolve_active_compensation``, ``evaluate_components``,
      ``apply_compliance``) and ``preview_run`` are read-only.
    * ``finalize_run`` and ``supersede_run`` return the persisted
      ``PayrollRunSnapshot``.

    Guarantees
    ----------
    * One finalize is one transaction; on error nothing is persisted.
    * Re-finalizing with unchanged inputs yields identical amounts and the
      same input hash.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT parallelize across employees (``payroll_batch``).
    * Does NOT post journals or produce payslips.
    """

    def __init__(
        self,
        session: Session,
        reference: ReferenceSnapshot | None = None,
        config: PayrollConfig | None = None,
        clock: Clock | None = None,
        withholding_policy: WithholdingPolicy | None = None,
    ):
        self._session = session
        self._reference = reference or load_reference_snapshot()
        self._config = config or PayrollConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._withholding_policy = withholding_policy
        self._periods = PeriodService(session, clock=self._clock)
        self._inputs = PayrollInputSelector(session)
        self._runs = PayrollRunSelector(session)

    @property
    def reference(self) -> ReferenceSnapshot:
        return self._reference

    @property
    def config(self) -> PayrollConfig:
        return self._config

    # =========================================================================
    # Calculation API
    # =========================================================================

    def resolve_attendance_basis(
        self, employee_id: UUID, month: int, year: int
    ) -> AttendanceBasis:
        """Attendance basis for one employee and month from stored rows."""
        employee = self._inputs.get_employee(employee_id)
        return self._resolve_basis(employee, month, year)

    def _resolve_basis(self, employee: Employee, month: int, year: int) -> AttendanceBasis:
        holidays = [
            h.holiday_date
            for h in self._inputs.holidays(employee.organization_id, month, year)
            if not h.is_optional
        ]
        return compute_attendance_basis(
            employee_id=employee.id,
            month=month,
            year=year,
            records=self._inputs.attendance_days(employee.id, month, year),
            override=self._inputs.attendance_override(employee.id, month, year),
            holidays=holidays,
            weekly_off_days=employee.weekly_off_days or self._config.weekly_off_days,
            join_date=employee.join_date,
            exit_date=employee.exit_date,
            standard_daily_hours=self._config.standard_daily_hours,
        )

    def resolve_active_compensation(
        self, employee_id: UUID, reference_date: date
    ) -> ResolvedCompensation:
        """
        Compensation record active on reference_date.

        Raises:
            CompensationNotFoundError: Nothing covers the date.
            AmbiguousStateError: Overlap with ``strict_compensation`` set.
        """
        return compute_active_compensation(
            employee_id=employee_id,
            reference_date=reference_date,
            records=self._inputs.compensation_records(employee_id),
            strict=self._config.strict_compensation,
        )

    def evaluate_components(
        self,
        basis: AttendanceBasis,
        compensation: CompensationRecord | ResolvedCompensation,
    ) -> ComponentEvaluation:
        if isinstance(compensation, ResolvedCompensation):
            compensation = compensation.record
        return compute_components(
            basis=basis,
            compensation=compensation,
            catalogue=self._reference.catalogue.as_mapping(),
            overtime=self._config.overtime_policy,
        )

    def apply_compliance(
        self,
        evaluation: ComponentEvaluation,
        jurisdiction: str,
        reference_date: date,
    ) -> ComplianceResult:
        """
        Raises:
            ComplianceRuleNotFoundError: No rule set effective on the date.
        """
        return compute_compliance(
            evaluation=evaluation,
            jurisdiction=jurisdiction,
            rules=self._reference.rules_on(reference_date),
            withholding_policy=self._withholding_policy,
        )

    def _compute(
        self,
        period: PayrollPeriod | PayrollPeriodInfo,
        employee: Employee,
        jurisdiction: str | None,
        status: RunStatus = RunStatus.DRAFT,
    ) -> RunComputation:
        if employee.organization_id != period.organization_id:
            raise PreconditionFailedError(
                f"Employee {employee.id} does not belong to the organization "
                f"of period {period.id}"
            )
        jurisdiction = (
            jurisdiction or employee.jurisdiction or self._config.default_jurisdiction or ""
        )
        reference_date = reference_date_for(
            period.year, period.month, self._config.compensation_reference_day
        )

        basis = self._resolve_basis(employee, period.month, period.year)
        compensation = self.resolve_active_compensation(employee.id, reference_date)
        evaluation = self.evaluate_components(basis, compensation)
        compliance = self.apply_compliance(evaluation, jurisdiction, reference_date)

        input_hash = hash_payload({
            "employee_id": str(employee.id),
            "period": f"{period.year:04d}-{period.month:02d}",
            "jurisdiction": jurisdiction,
            "basis": basis.to_dict(),
            "compensation": compensation.record.to_dict(),
            "reference": self._reference.fingerprint,
            "overtime": {
                "standard_monthly_hours": str(self._config.standard_monthly_hours),
                "multiplier": str(self._config.overtime_multiplier),
            },
        })
        return RunComputation(
            period_id=period.id,
            employee_id=employee.id,
            jurisdiction=compliance.jurisdiction,
            basis=basis,
            compensation=compensation,
            evaluation=evaluation,
            compliance=compliance,
            warnings=basis.warnings + compensation.warnings,
            reference_fingerprint=self._reference.fingerprint,
            input_hash=input_hash,
            status=status,
        )

    # =========================================================================
    # Runs
    # =========================================================================

    def preview_run(
        self,
        period_id: UUID,
        employee_id: UUID,
        jurisdiction: str | None = None,
    ) -> RunComputation:
        """Full computation without persistence; status is DRAFT."""
        period = self._periods.get_period(period_id)
        employee = self._inputs.get_employee(employee_id)
        computation = self._compute(period, employee, jurisdiction)
        logger.info(
            "payroll_run_previewed",
            extra={
                "period_id": str(period_id),
                "employee_id": str(employee_id),
                "net_pay": str(computation.net_pay),
            },
        )
        return computation

    def finalize_run(
        self,
        period_id: UUID,
        employee_id: UUID,
        actor_id: UUID,
        jurisdiction: str | None = None,
    ) -> PayrollRunSnapshot:
        """
        Compute and persist the run for one employee in a DRAFT period.

        A concurrent finalizer that wins the unique version slot first makes
        this attempt roll back and retry; the retry finds the winner's row
        and overwrites it in place.

        Raises:
            PeriodNotDraftError: Period is LOCKED or POSTED.
            ConcurrentFinalizeError: Retries exhausted.
        """
        with LogContext.bind(
            period_id=period_id, employee_id=employee_id, actor_id=actor_id
        ):
            logger.info(
                "payroll_finalize_started",
                extra={"period_id": str(period_id), "employee_id": str(employee_id)},
            )
            attempts = 0
            while True:
                attempts += 1
                try:
                    run = self._finalize_once(period_id, employee_id, actor_id, jurisdiction)
                    snapshot = run_to_snapshot(run)
                    self._session.commit()
                except IntegrityError:
                    self._session.rollback()
                    if attempts >= self._config.max_conflict_retries:
                        logger.error(
                            "payroll_finalize_conflict_exhausted",
                            extra={
                                "period_id": str(period_id),
                                "employee_id": str(employee_id),
                                "attempts": attempts,
                            },
                        )
                        raise ConcurrentFinalizeError(
                            str(period_id), str(employee_id), attempts
                        ) from None
                    logger.warning(
                        "payroll_finalize_conflict_retry",
                        extra={
                            "period_id": str(period_id),
                            "employee_id": str(employee_id),
                            "attempt": attempts,
                        },
                    )
                    continue
                except Exception:
                    self._session.rollback()
                    raise

                logger.info(
                    "payroll_run_finalized",
                    extra={
                        "run_id": str(snapshot.id),
                        "version": snapshot.version,
                        "gross_earnings": str(snapshot.gross_earnings),
                        "net_pay": str(snapshot.net_pay),
                        "warning_codes": list(snapshot.warning_codes),
                    },
                )
                return snapshot

    def _finalize_once(
        self,
        period_id: UUID,
        employee_id: UUID,
        actor_id: UUID,
        jurisdiction: str | None,
    ) -> PayrollRunModel:
        period = self._periods.get_period_for_update(period_id, shared=True)
        if period.status != PeriodStatus.DRAFT.value:
            status = PeriodStatus(period.status).value
            logger.warning(
                "payroll_finalize_rejected_period_not_draft",
                extra={"period_id": str(period_id), "status": status},
            )
            raise PeriodNotDraftError(str(period_id), status)

        employee = self._inputs.get_employee(employee_id)
        computation = self._compute(period, employee, jurisdiction, RunStatus.PROCESSED)

        run = self._runs.current_run_model(period_id, employee_id, for_update=True)
        if run is None:
            run = PayrollRunModel(
                payroll_period_id=period_id,
                employee_id=employee_id,
                version=self._runs.latest_version(period_id, employee_id) + 1,
                status=RunStatus.PROCESSED.value,
                created_by_id=actor_id,
            )
            self._session.add(run)
        else:
            run.updated_by_id = actor_id
            logger.info(
                "payroll_run_recomputed_in_place",
                extra={"run_id": str(run.id), "version": run.version},
            )
        self._write_computation(run, computation)
        self._session.flush()
        return run

    def _write_computation(self, run: PayrollRunModel, computation: RunComputation) -> None:
        compliance = computation.compliance
        run.jurisdiction = computation.jurisdiction
        run.gross_earnings = computation.gross_earnings
        run.total_deductions = computation.total_deductions
        run.net_pay = computation.net_pay
        run.employer_cost = computation.employer_cost
        run.pf_wages = compliance.pf_wages
        run.pf_employee = compliance.pf_employee
        run.pf_employer = compliance.pf_employer
        run.esi_wages = compliance.esi_wages
        run.esi_employee = compliance.esi_employee
        run.esi_employer = compliance.esi_employer
        run.pt_amount = compliance.pt_amount
        run.tds_amount = compliance.tds_amount
        run.snapshot = to_jsonable(computation.snapshot())
        run.attendance_basis = to_jsonable(computation.basis.to_dict())
        run.warnings = [w.to_dict() for w in computation.warnings]
        run.reference_fingerprint = computation.reference_fingerprint
        run.input_hash = computation.input_hash
        run.finalized_at = self._clock.now()

    def supersede_run(
        self,
        period_id: UUID,
        employee_id: UUID,
        reason: str,
        actor_id: UUID,
        jurisdiction: str | None = None,
    ) -> PayrollRunSnapshot:
        """
        Correct a run in a LOCKED or POSTED period.

        The prior current row becomes SUPERSEDED and keeps its snapshot; the
        new row is version + 1 with ``supersedes_run_id`` pointing at it and
        inherits the prior status.

        Raises:
            ValueError: Empty reason.
            RunNotSupersedableError: Period is DRAFT (use finalize_run).
            RunNotFoundError: No current run to supersede.
        """
        if not reason or not reason.strip():
            raise ValueError("A supersede reason is required")

        with LogContext.bind(
            period_id=period_id, employee_id=employee_id, actor_id=actor_id
        ):
            try:
                period = self._periods.get_period_for_update(period_id, shared=True)
                if period.status == PeriodStatus.DRAFT.value:
                    logger.warning(
                        "payroll_supersede_rejected_period_draft",
                        extra={"period_id": str(period_id)},
                    )
                    raise RunNotSupersedableError(str(period_id), PeriodStatus(period.status).value)

                prior = self._runs.current_run_model(period_id, employee_id, for_update=True)
                if prior is None:
                    raise RunNotFoundError(str(period_id), str(employee_id))

                employee = self._inputs.get_employee(employee_id)
                prior_status = RunStatus(prior.status)
                computation = self._compute(period, employee, jurisdiction, prior_status)

                prior.status = RunStatus.SUPERSEDED.value
                prior.superseded_at = self._clock.now()
                prior.updated_by_id = actor_id
                self._session.flush()

                run = PayrollRunModel(
                    payroll_period_id=period_id,
                    employee_id=employee_id,
                    version=self._runs.latest_version(period_id, employee_id) + 1,
                    status=prior_status.value,
                    supersedes_run_id=prior.id,
                    supersede_reason=reason.strip(),
                    created_by_id=actor_id,
                )
                self._write_computation(run, computation)
                self._session.add(run)
                self._session.flush()
                snapshot = run_to_snapshot(run)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "payroll_run_superseded",
                extra={
                    "run_id": str(snapshot.id),
                    "supersedes_run_id": str(snapshot.supersedes_run_id),
                    "version": snapshot.version,
                    "net_pay": str(snapshot.net_pay),
                    "reason": snapshot.supersede_reason,
                },
            )
            return snapshot

    def get_run(self, period_id: UUID, employee_id: UUID) -> PayrollRunSnapshot:
        """Current run; raises RunNotFoundError if none."""
        run = self._runs.current_run(period_id, employee_id)
        if run is None:
            raise RunNotFoundError(str(period_id), str(employee_id))
        return run

    def list_runs(self, period_id: UUID) -> list[PayrollRunSnapshot]:
        self._periods.get_period(period_id)
        return self._runs.current_runs(period_id)

    def run_history(self, period_id: UUID, employee_id: UUID) -> list[PayrollRunSnapshot]:
        return self._runs.history(period_id, employee_id)

    def statutory_summary(self, period_id: UUID) -> StatutorySummary:
        self._periods.get_period(period_id)
        return self._runs.statutory_summary(period_id)

    # =========================================================================
    # Period lifecycle
    # =========================================================================

    def bootstrap_period(
        self, organization_id: UUID, month: int, year: int, actor_id: UUID
    ) -> PayrollPeriodInfo:
        try:
            period = self._periods.bootstrap_period(organization_id, month, year, actor_id)
            self._session.commit()
            return period
        except Exception:
            self._session.rollback()
            raise

    def lock_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        try:
            period = self._periods.lock_period(period_id, actor_id)
            self._session.commit()
            return period
        except Exception:
            self._session.rollback()
            raise

    def unlock_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        try:
            period = self._periods.unlock_period(period_id, actor_id)
            self._session.commit()
            return period
        except Exception:
            self._session.rollback()
            raise

    def post_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        try:
            period = self._periods.post_period(period_id, actor_id)
            self._session.commit()
            return period
        except Exception:
            self._session.rollback()
            raise

    def get_period(self, period_id: UUID) -> PayrollPeriodInfo:
        return self._periods.get_period(period_id)

    def eligible_employees(self, period_id: UUID) -> list[Employee]:
        period = self._periods.get_period(period_id)
        return self._inputs.eligible_employees(period.organization_id, period.month, period.year)

    def processed_employee_ids(self, period_id: UUID) -> set[UUID]:
        return self._runs.processed_employee_ids(period_id)

    # =========================================================================
    # Inputs
    # =========================================================================

    def register_employee(self, employee: Employee, actor_id: UUID) -> Employee:
        try:
            self._session.add(EmployeeModel.from_dto(employee, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "employee_registered",
            extra={"employee_id": str(employee.id), "employee_code": employee.employee_code},
        )
        return employee

    def add_holiday(self, organization_id: UUID, holiday: Holiday, actor_id: UUID) -> Holiday:
        try:
            self._session.add(
                HolidayModel.from_dto(holiday, organization_id, created_by_id=actor_id)
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return holiday

    def record_attendance(
        self,
        employee_id: UUID,
        days: Iterable[AttendanceDay],
        actor_id: UUID,
    ) -> int:
        """Store daily rows as captured; returns the number stored."""
        try:
            self._inputs.get_employee(employee_id)
            rows = [
                AttendanceRecordModel.from_dto(day, employee_id, created_by_id=actor_id)
                for day in days
            ]
            self._session.add_all(rows)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "attendance_recorded",
            extra={"employee_id": str(employee_id), "row_count": len(rows)},
        )
        return len(rows)

    def record_attendance_override(
        self,
        employee_id: UUID,
        month: int,
        year: int,
        override: AttendanceOverride,
        actor_id: UUID,
    ) -> AttendanceOverride:
        """
        Create or replace the monthly override.

        Raises:
            PeriodNotDraftError: The organization's period for the month is
                LOCKED or POSTED.
        """
        try:
            employee = self._inputs.get_employee(employee_id)
            period = self._periods.find_period(employee.organization_id, month, year)
            if period is not None and not period.is_draft:
                logger.warning(
                    "attendance_override_rejected_period_not_draft",
                    extra={
                        "employee_id": str(employee_id),
                        "period_id": str(period.id),
                        "status": period.status.value,
                    },
                )
                raise PeriodNotDraftError(str(period.id), period.status.value)

            row = self._session.execute(
                select(AttendanceOverrideModel).where(
                    AttendanceOverrideModel.employee_id == employee_id,
                    AttendanceOverrideModel.month == month,
                    AttendanceOverrideModel.year == year,
                )
            ).scalar_one_or_none()
            if row is None:
                self._session.add(
                    AttendanceOverrideModel.from_dto(
                        override, employee_id, month, year, created_by_id=actor_id
                    )
                )
            else:
                row.payload = override.to_payload()
                row.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "attendance_override_recorded",
            extra={
                "employee_id": str(employee_id),
                "period_code": f"{year:04d}-{month:02d}",
                "lop_days": str(override.lop_days),
            },
        )
        return override

    def record_compensation(
        self, record: CompensationRecord, actor_id: UUID
    ) -> tuple[str, ...]:
        """
        Store a compensation record.

        Overlaps are allowed (they are resolved at calculation time) but
        logged.  Returns the ids of existing records the new one overlaps.
        """
        try:
            self._inputs.get_employee(record.employee_id)
            existing = self._inputs.compensation_records(record.employee_id)
            self._session.add(CompensationRecordModel.from_dto(record, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        overlapping = tuple(sorted(
            str(other.id)
            for pair in find_overlaps([*existing, record])
            if record in pair
            for other in pair
            if other is not record
        ))
        if overlapping:
            logger.warning(
                "compensation_overlap_recorded",
                extra={
                    "employee_id": str(record.employee_id),
                    "record_id": str(record.id),
                    "overlapping_ids": list(overlapping),
                },
            )
        return overlapping

    def compensation_overlaps(self, employee_id: UUID) -> list[tuple[str, str]]:
        """Explicit validation pass over an employee's compensation history."""
        records = self._inputs.compensation_records(employee_id)
        return [(str(a.id), str(b.id)) for a, b in find_overlaps(records)]
