"""
Payroll Configuration Schema.

Organizational policy inputs for the payroll engine.  Statutory rates and
slabs live in the compliance rule sets (``payroll_config``), not here.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from payroll_engines.attendance_basis import WEEKDAY_INDEX
from payroll_engines.components import OvertimePolicy
from payroll_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.config")

_DECIMAL_FIELDS = ("standard_daily_hours", "standard_monthly_hours", "overtime_multiplier")


@dataclass
class PayrollConfig:
    """
    Configuration schema for the payroll module.

    Override at instantiation with organization-specific values:

        config = PayrollConfig(
            weekly_off_days=("saturday", "sunday"),
            overtime_multiplier=Decimal("1.5"),
        )
    """

    # Attendance
    weekly_off_days: tuple[str, ...] = ("sunday",)
    standard_daily_hours: Decimal = Decimal("8")

    # Overtime
    standard_monthly_hours: Decimal = Decimal("208")
    overtime_multiplier: Decimal = Decimal("2")

    # Compensation
    compensation_reference_day: int = 15
    strict_compensation: bool = False

    # Finalize / bulk
    max_conflict_retries: int = 3
    bulk_max_workers: int = 4

    default_jurisdiction: str | None = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self):
        unknown = [d for d in self.weekly_off_days if d.strip().lower() not in WEEKDAY_INDEX]
        if unknown:
            raise ValueError(f"weekly_off_days contains unknown day(s): {unknown}")
        if len(self.weekly_off_days) >= 7:
            raise ValueError("weekly_off_days cannot cover the whole week")
        if self.standard_daily_hours <= 0:
            raise ValueError("standard_daily_hours must be positive")
        if self.standard_monthly_hours <= 0:
            raise ValueError("standard_monthly_hours must be positive")
        if self.overtime_multiplier < 0:
            raise ValueError("overtime_multiplier cannot be negative")
        if not 1 <= self.compensation_reference_day <= 31:
            raise ValueError("compensation_reference_day must be in 1..31")
        if self.max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be at least 1")
        if self.bulk_max_workers < 1:
            raise ValueError("bulk_max_workers must be at least 1")

        logger.info(
            "payroll_config_initialized",
            extra={
                "weekly_off_days": list(self.weekly_off_days),
                "standard_monthly_hours": str(self.standard_monthly_hours),
                "overtime_multiplier": str(self.overtime_multiplier),
                "compensation_reference_day": self.compensation_reference_day,
                "strict_compensation": self.strict_compensation,
                "bulk_max_workers": self.bulk_max_workers,
            },
        )

    @property
    def overtime_policy(self) -> OvertimePolicy:
        return OvertimePolicy(
            standard_monthly_hours=self.standard_monthly_hours,
            multiplier=self.overtime_multiplier,
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("payroll_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a YAML settings file)."""
        logger.info(
            "payroll_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        for name in _DECIMAL_FIELDS:
            if name in data:
                data[name] = Decimal(str(data[name]))
        if "weekly_off_days" in data:
            data["weekly_off_days"] = tuple(data["weekly_off_days"])
        return cls(**data)
