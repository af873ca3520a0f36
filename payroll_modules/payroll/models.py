"""
Payroll Domain Models (``payroll_modules.payroll.models``).

Responsibility
--------------
Frozen dataclass value objects for the payroll module: employees, holidays,
in-memory run computations, persisted run snapshots and period statutory
summaries.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``PayrollService`` and the bulk orchestrator and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``RunComputation`` totals are sums of rounded parts:
  net_pay == gross_earnings - total_deductions exactly.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from payroll_engines.attendance_basis import AttendanceBasis
from payroll_engines.compensation import ResolvedCompensation
from payroll_engines.compliance import ComplianceResult
from payroll_engines.components import ComponentEvaluation
from payroll_kernel.domain.dtos import RunWarning
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.payroll_run import RunStatus

logger = get_logger("modules.payroll.models")

ZERO = Decimal("0")


@dataclass(frozen=True)
class Employee:
    """An employee as seen by the payroll engine."""

    id: UUID
    organization_id: UUID
    employee_code: str
    full_name: str
    jurisdiction: str
    join_date: date | None = None
    exit_date: date | None = None
    weekly_off_days: tuple[str, ...] = ()
    is_active: bool = True

    def __post_init__(self):
        if self.join_date and self.exit_date and self.exit_date < self.join_date:
            logger.warning(
                "employee_exit_before_join",
                extra={
                    "employee_id": str(self.id),
                    "join_date": self.join_date.isoformat(),
                    "exit_date": self.exit_date.isoformat(),
                },
            )
            raise ValueError("exit_date cannot precede join_date")

    def employed_during(self, first: date, last: date) -> bool:
        """True if the employment window intersects [first, last]."""
        if self.join_date and self.join_date > last:
            return False
        if self.exit_date and self.exit_date < first:
            return False
        return True


@dataclass(frozen=True)
class Holiday:
    """Organization holiday; optional holidays are still working days."""

    holiday_date: date
    name: str
    is_optional: bool = False


@dataclass(frozen=True)
class RunComputation:
    """
    Everything one finalize (or preview) computed, before persistence.

    ``status`` is DRAFT for previews.
    """

    period_id: UUID
    employee_id: UUID
    jurisdiction: str
    basis: AttendanceBasis
    compensation: ResolvedCompensation
    evaluation: ComponentEvaluation
    compliance: ComplianceResult
    warnings: tuple[RunWarning, ...]
    reference_fingerprint: str
    input_hash: str
    status: RunStatus = RunStatus.DRAFT

    @property
    def gross_earnings(self) -> Decimal:
        return self.evaluation.gross_earnings

    @property
    def total_deductions(self) -> Decimal:
        return self.evaluation.total_component_deductions + self.compliance.employee_total

    @property
    def net_pay(self) -> Decimal:
        return self.gross_earnings - self.total_deductions

    @property
    def employer_cost(self) -> Decimal:
        return (
            self.gross_earnings
            + self.compliance.employer_total
            + self.evaluation.employer_cost_components
        )

    def snapshot(self) -> dict[str, Any]:
        """The JSON document stored on the run row."""
        return {
            "components": [c.to_dict() for c in self.evaluation.components],
            "statutory": self.compliance.to_dict(),
            "compensation": self.compensation.record.to_dict(),
            "totals": {
                "provisional_gross": str(self.evaluation.provisional_gross),
                "gross_earnings": str(self.gross_earnings),
                "component_deductions": str(self.evaluation.total_component_deductions),
                "statutory_employee": str(self.compliance.employee_total),
                "total_deductions": str(self.total_deductions),
                "net_pay": str(self.net_pay),
                "statutory_employer": str(self.compliance.employer_total),
                "employer_cost_components": str(self.evaluation.employer_cost_components),
                "employer_cost": str(self.employer_cost),
            },
        }


@dataclass(frozen=True)
class PayrollRunSnapshot:
    """Read-only view of a persisted payroll run."""

    id: UUID
    period_id: UUID
    employee_id: UUID
    version: int
    status: RunStatus
    jurisdiction: str
    gross_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    employer_cost: Decimal
    pf_wages: Decimal
    pf_employee: Decimal
    pf_employer: Decimal
    esi_wages: Decimal
    esi_employee: Decimal
    esi_employer: Decimal
    pt_amount: Decimal
    tds_amount: Decimal
    snapshot: dict[str, Any]
    attendance_basis: dict[str, Any]
    warnings: tuple[RunWarning, ...]
    reference_fingerprint: str
    input_hash: str
    finalized_at: datetime
    supersedes_run_id: UUID | None = None
    supersede_reason: str | None = None
    superseded_at: datetime | None = None

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)

    def component_amount(self, code: str) -> Decimal:
        for component in self.snapshot.get("components", []):
            if component["code"] == code:
                return Decimal(component["amount"])
        return ZERO


@dataclass(frozen=True)
class StatutorySummary:
    """Period totals over current (processed or posted) runs."""

    period_id: UUID
    employee_count: int
    gross_earnings: Decimal = ZERO
    net_pay: Decimal = ZERO
    pf_wages: Decimal = ZERO
    pf_employee: Decimal = ZERO
    pf_employer: Decimal = ZERO
    esi_wages: Decimal = ZERO
    esi_employee: Decimal = ZERO
    esi_employer: Decimal = ZERO
    pt_amount: Decimal = ZERO
    tds_amount: Decimal = ZERO
    pt_by_jurisdiction: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_employee_statutory(self) -> Decimal:
        return self.pf_employee + self.esi_employee + self.pt_amount + self.tds_amount

    @property
    def total_employer_statutory(self) -> Decimal:
        return self.pf_employer + self.esi_employer
