"""Kernel services (flush-only)."""

from payroll_kernel.services.period_service import PeriodService

__all__ = ["PeriodService"]
