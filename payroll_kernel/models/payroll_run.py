"""
Module: payroll_kernel.models.payroll_run
Responsibility: ORM persistence for finalized payroll run snapshots.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/payroll_period.py only.

Invariants enforced:
    - One row per (payroll_period_id, employee_id, version)
      (uq_payroll_run_period_employee_version).  Concurrent finalizers that
      race for the same slot lose on this constraint and retry.
    - At most one CURRENT row (status processed or posted) per
      (period, employee); superseded rows are retained for audit.
    - Posted and superseded snapshots are immutable (db/immutability.py).

Audit relevance:
    The snapshot column holds the full component breakdown, statutory lines,
    attendance basis and warnings exactly as computed.  reference_fingerprint
    identifies the catalogue and compliance rule versions used, input_hash
    the full calculation input, so any run can be replayed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase, UUIDString


class RunStatus(str, Enum):
    """Lifecycle status of a payroll run.

    DRAFT exists only for previews and is never persisted.
    """

    DRAFT = "draft"
    PROCESSED = "processed"
    POSTED = "posted"
    SUPERSEDED = "superseded"


CURRENT_RUN_STATUSES: tuple[str, ...] = (
    RunStatus.PROCESSED.value,
    RunStatus.POSTED.value,
)


class PayrollRunModel(TrackedBase):
    """One finalized run snapshot for an employee in a payroll period."""

    __tablename__ = "payroll_runs"

    __table_args__ = (
        UniqueConstraint(
            "payroll_period_id",
            "employee_id",
            "version",
            name="uq_payroll_run_period_employee_version",
        ),
        Index("idx_payroll_run_period_status", "payroll_period_id", "status"),
        Index("idx_payroll_run_employee", "employee_id"),
    )

    payroll_period_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payroll_periods.id"), nullable=False
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[RunStatus] = mapped_column(
        String(20), nullable=False, default=RunStatus.PROCESSED
    )

    jurisdiction: Mapped[str] = mapped_column(String(50), nullable=False)

    gross_earnings: Mapped[Decimal]
    total_deductions: Mapped[Decimal]
    net_pay: Mapped[Decimal]
    employer_cost: Mapped[Decimal]

    # Statutory breakdown, denormalized for period summaries
    pf_wages: Mapped[Decimal]
    pf_employee: Mapped[Decimal]
    pf_employer: Mapped[Decimal]
    esi_wages: Mapped[Decimal]
    esi_employee: Mapped[Decimal]
    esi_employer: Mapped[Decimal]
    pt_amount: Mapped[Decimal]
    tds_amount: Mapped[Decimal]

    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    attendance_basis: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    warnings: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    reference_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    input_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    finalized_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    supersedes_run_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payroll_runs.id"), nullable=True
    )

    supersede_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    superseded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<PayrollRun employee={self.employee_id} v{self.version} "
            f"{RunStatus(self.status).value}>"
        )

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_RUN_STATUSES
