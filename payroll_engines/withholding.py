"""
Withholding tax hook.

The compliance engine asks a WithholdingPolicy for a monthly amount given an
annual projection.  With no policy configured the amount is zero; the engine
never guesses a liability.

ProgressiveWithholding is the data-driven policy shipped with the engine:
annual taxable income is taxed slab by slab, a rebate zeroes the tax at or
below a threshold, a cess is added on top, and the result is spread evenly
over twelve months.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from payroll_kernel.db.types import round_money

ZERO = Decimal("0")
MONTHS_PER_YEAR = Decimal("12")


@dataclass(frozen=True)
class AnnualProjection:
    """Current month's figures projected over a full year."""

    monthly_gross: Decimal
    monthly_employee_pf: Decimal = ZERO
    monthly_regional_tax: Decimal = ZERO

    @property
    def annual_gross(self) -> Decimal:
        return self.monthly_gross * MONTHS_PER_YEAR

    @property
    def annual_exemptions(self) -> Decimal:
        return (self.monthly_employee_pf + self.monthly_regional_tax) * MONTHS_PER_YEAR


class WithholdingPolicy(Protocol):
    """Returns the monthly withholding amount for a projection."""

    name: str

    def monthly_withholding(self, projection: AnnualProjection) -> Decimal: ...


class NoWithholding:
    """Default policy: nothing withheld."""

    name = "none"

    def monthly_withholding(self, projection: AnnualProjection) -> Decimal:
        return ZERO


@dataclass(frozen=True)
class AnnualTaxSlab:
    """Income above lower (up to upper, None = unbounded) taxed at rate."""

    lower: Decimal
    upper: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class WithholdingConfig:
    """Withholding section of a compliance rule set."""

    policy: str = "none"
    standard_deduction: Decimal = ZERO
    rebate_threshold: Decimal = ZERO
    cess_rate: Decimal = ZERO
    slabs: tuple[AnnualTaxSlab, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProgressiveWithholding:
    """Slab-based annual liability, withheld in twelve equal parts."""

    slabs: tuple[AnnualTaxSlab, ...]
    standard_deduction: Decimal = ZERO
    rebate_threshold: Decimal = ZERO
    cess_rate: Decimal = ZERO
    name: str = "progressive"

    def taxable_income(self, projection: AnnualProjection) -> Decimal:
        taxable = projection.annual_gross - self.standard_deduction - projection.annual_exemptions
        return max(taxable, ZERO)

    def annual_liability(self, projection: AnnualProjection) -> Decimal:
        taxable = self.taxable_income(projection)
        if taxable <= self.rebate_threshold:
            return ZERO
        tax = ZERO
        for slab in self.slabs:
            if taxable <= slab.lower:
                break
            top = taxable if slab.upper is None else min(taxable, slab.upper)
            tax += (top - slab.lower) * slab.rate
        return round_money(tax * (1 + self.cess_rate))

    def monthly_withholding(self, projection: AnnualProjection) -> Decimal:
        return round_money(self.annual_liability(projection) / MONTHS_PER_YEAR)


def policy_from_config(config: WithholdingConfig) -> WithholdingPolicy:
    """
    Build the configured policy.

    Raises:
        ValueError: On an unknown policy name.
    """
    if config.policy == "none":
        return NoWithholding()
    if config.policy == "progressive":
        return ProgressiveWithholding(
            slabs=config.slabs,
            standard_deduction=config.standard_deduction,
            rebate_threshold=config.rebate_threshold,
            cess_rate=config.cess_rate,
        )
    raise ValueError(f"Unknown withholding policy: {config.policy!r}")
