"""Pure kernel domain types: clock and shared DTOs."""

from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payroll_kernel.domain.dtos import PayrollPeriodInfo, RunWarning

__all__ = [
    "Clock",
    "DeterministicClock",
    "PayrollPeriodInfo",
    "RunWarning",
    "SystemClock",
]
