"""
Kernel DTOs shared by the engines, the payroll module and the batch layer.

All DTOs are frozen dataclasses: they cross layer boundaries and must not be
mutated after construction.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from payroll_kernel.exceptions import PayrollEngineError
from payroll_kernel.models.payroll_period import PeriodStatus


@dataclass(frozen=True)
class RunWarning:
    """
    A non-fatal condition attached to a run for human review.

    Built from the typed error that describes the condition, so the code is
    the same one a strict caller would catch.
    """

    code: str
    message: str
    details: dict[str, Any]

    @classmethod
    def from_error(cls, error: PayrollEngineError) -> "RunWarning":
        details = {
            k: (str(v) if isinstance(v, (UUID, date)) else v)
            for k, v in vars(error).items()
            if not k.startswith("_")
        }
        return cls(code=error.code, message=str(error), details=details)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True)
class PayrollPeriodInfo:
    """Read-only view of a payroll period."""

    id: UUID
    organization_id: UUID
    month: int
    year: int
    status: PeriodStatus
    locked_at: datetime | None = None
    posted_at: datetime | None = None

    @property
    def period_code(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def is_draft(self) -> bool:
        return self.status == PeriodStatus.DRAFT
