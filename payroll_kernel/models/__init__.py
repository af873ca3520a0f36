"""Kernel ORM models."""

from payroll_kernel.models.payroll_period import (
    ALLOWED_PERIOD_TRANSITIONS,
    PayrollPeriod,
    PeriodStatus,
)
from payroll_kernel.models.payroll_run import (
    CURRENT_RUN_STATUSES,
    PayrollRunModel,
    RunStatus,
)

__all__ = [
    "ALLOWED_PERIOD_TRANSITIONS",
    "CURRENT_RUN_STATUSES",
    "PayrollPeriod",
    "PayrollRunModel",
    "PeriodStatus",
    "RunStatus",
]
