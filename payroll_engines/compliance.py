"""
Compliance Engine -- statutory deductions and employer contributions.

Pure functions with no I/O.  The rule set is passed in.

Employee- and employer-side amounts are each computed from their own wage
base and rate; neither is derived from the other.

    Retirement fund (PF)   wages = min(sum of wage codes, wage_ceiling)
                           employee = wages * employee_rate
                           employer = wages * employer_rate
    Health insurance (ESI) only if gross <= eligibility_ceiling, then
                           gross * rate per side; otherwise exactly zero
    Regional tax (PT)      slab lookup by jurisdiction (aliases allowed);
                           unknown jurisdiction -> zero, logged
    Withholding (TDS)      WithholdingPolicy hook, zero when unconfigured
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from payroll_engines.components import ComponentEvaluation
from payroll_engines.tracer import traced_engine
from payroll_engines.withholding import (
    AnnualProjection,
    WithholdingConfig,
    WithholdingPolicy,
    policy_from_config,
)
from payroll_kernel.db.types import round_money
from payroll_kernel.exceptions import ComplianceRuleNotFoundError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.utils.hashing import hash_payload, to_jsonable

logger = get_logger("engines.compliance")

ZERO = Decimal("0")


# =============================================================================
# Rule set
# =============================================================================


@dataclass(frozen=True)
class RetirementFundRule:
    wage_ceiling: Decimal = Decimal("15000")
    employee_rate: Decimal = Decimal("0.12")
    employer_rate: Decimal = Decimal("0.12")
    wage_codes: tuple[str, ...] = ("BASIC", "DA")


@dataclass(frozen=True)
class HealthInsuranceRule:
    eligibility_ceiling: Decimal = Decimal("21000")
    employee_rate: Decimal = Decimal("0.0075")
    employer_rate: Decimal = Decimal("0.0325")


@dataclass(frozen=True)
class TaxSlab:
    """Gross up to upper_bound (inclusive; None = no bound) pays amount."""

    upper_bound: Decimal | None
    amount: Decimal


@dataclass(frozen=True)
class RegionalTaxTable:
    jurisdiction: str
    slabs: tuple[TaxSlab, ...]
    aliases: tuple[str, ...] = ()

    def amount_for(self, gross: Decimal) -> Decimal:
        for slab in self.slabs:
            if slab.upper_bound is None or gross <= slab.upper_bound:
                return slab.amount
        return ZERO


def _key(jurisdiction: str) -> str:
    return " ".join(jurisdiction.split()).casefold()


@dataclass(frozen=True)
class ComplianceRuleSet:
    """Effective-dated statutory rules; effective_to inclusive, None = open."""

    version: str
    effective_from: date
    effective_to: date | None = None
    retirement_fund: RetirementFundRule = field(default_factory=RetirementFundRule)
    health_insurance: HealthInsuranceRule = field(default_factory=HealthInsuranceRule)
    regional_tax: tuple[RegionalTaxTable, ...] = ()
    withholding: WithholdingConfig = field(default_factory=WithholdingConfig)

    def __post_init__(self):
        seen: dict[str, str] = {}
        for table in self.regional_tax:
            for name in (table.jurisdiction, *table.aliases):
                key = _key(name)
                if key in seen and seen[key] != table.jurisdiction:
                    raise ValueError(
                        f"Jurisdiction name {name!r} maps to both "
                        f"{seen[key]} and {table.jurisdiction}"
                    )
                seen[key] = table.jurisdiction

    def covers(self, on: date) -> bool:
        return self.effective_from <= on and (
            self.effective_to is None or on <= self.effective_to
        )

    def regional_table(self, jurisdiction: str) -> RegionalTaxTable | None:
        wanted = _key(jurisdiction)
        for table in self.regional_tax:
            if wanted in {_key(n) for n in (table.jurisdiction, *table.aliases)}:
                return table
        return None

    @property
    def fingerprint(self) -> str:
        return hash_payload(to_jsonable(asdict(self)))


def select_rule_set(
    rule_sets: Iterable[ComplianceRuleSet], on: date
) -> ComplianceRuleSet:
    """
    Rule set effective on a date; on overlap the latest effective_from wins.

    Raises:
        ComplianceRuleNotFoundError: Nothing covers the date.
    """
    candidates = sorted(
        (r for r in rule_sets if r.covers(on)),
        key=lambda r: (r.effective_from, r.version),
        reverse=True,
    )
    if not candidates:
        raise ComplianceRuleNotFoundError(on.isoformat())
    return candidates[0]


# =============================================================================
# Result
# =============================================================================


@dataclass(frozen=True)
class StatutoryLine:
    code: str
    name: str
    side: str  # "employee" | "employer"
    wage_base: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "side": self.side,
            "wage_base": str(self.wage_base),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class ComplianceResult:
    jurisdiction: str
    rule_version: str
    pf_wages: Decimal
    pf_employee: Decimal
    pf_employer: Decimal
    esi_eligible: bool
    esi_wages: Decimal
    esi_employee: Decimal
    esi_employer: Decimal
    pt_amount: Decimal
    tds_amount: Decimal
    withholding_policy: str = "none"

    @property
    def employee_total(self) -> Decimal:
        return self.pf_employee + self.esi_employee + self.pt_amount + self.tds_amount

    @property
    def employer_total(self) -> Decimal:
        return self.pf_employer + self.esi_employer

    @property
    def lines(self) -> tuple[StatutoryLine, ...]:
        return (
            StatutoryLine("PF_EE", "Provident Fund (employee)", "employee", self.pf_wages, self.pf_employee),
            StatutoryLine("ESI_EE", "ESI (employee)", "employee", self.esi_wages, self.esi_employee),
            StatutoryLine("PT", "Professional Tax", "employee", ZERO, self.pt_amount),
            StatutoryLine("TDS", "Income Tax (TDS)", "employee", ZERO, self.tds_amount),
            StatutoryLine("PF_ER", "Provident Fund (employer)", "employer", self.pf_wages, self.pf_employer),
            StatutoryLine("ESI_ER", "ESI (employer)", "employer", self.esi_wages, self.esi_employer),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jurisdiction": self.jurisdiction,
            "rule_version": self.rule_version,
            "esi_eligible": self.esi_eligible,
            "withholding_policy": self.withholding_policy,
            "lines": [line.to_dict() for line in self.lines],
            "employee_total": str(self.employee_total),
            "employer_total": str(self.employer_total),
        }


# =============================================================================
# Engine
# =============================================================================


@traced_engine(
    "compliance",
    "1.0",
    fingerprint_fields=("evaluation", "jurisdiction", "rules"),
)
def apply_compliance(
    *,
    evaluation: ComponentEvaluation,
    jurisdiction: str,
    rules: ComplianceRuleSet,
    withholding_policy: WithholdingPolicy | None = None,
) -> ComplianceResult:
    """
    Compute statutory amounts for one evaluated month.

    Postconditions:
        - pf_employee <= wage_ceiling * employee_rate (rounded).
        - esi_employee == esi_employer == 0 whenever gross > eligibility_ceiling.
    """
    gross = evaluation.gross_earnings

    pf = rules.retirement_fund
    pf_base = sum((evaluation.amount_of(code) for code in pf.wage_codes), ZERO)
    pf_wages = min(pf_base, pf.wage_ceiling)
    pf_employee = round_money(pf_wages * pf.employee_rate)
    pf_employer = round_money(pf_wages * pf.employer_rate)

    esi = rules.health_insurance
    esi_eligible = gross <= esi.eligibility_ceiling
    esi_wages = gross if esi_eligible else ZERO
    esi_employee = round_money(esi_wages * esi.employee_rate)
    esi_employer = round_money(esi_wages * esi.employer_rate)

    table = rules.regional_table(jurisdiction)
    if table is None:
        logger.warning(
            "regional_tax_jurisdiction_unknown",
            extra={"jurisdiction": jurisdiction, "rule_version": rules.version},
        )
        pt_amount = ZERO
    else:
        pt_amount = round_money(table.amount_for(gross))

    policy = withholding_policy or policy_from_config(rules.withholding)
    tds_amount = round_money(
        policy.monthly_withholding(
            AnnualProjection(
                monthly_gross=gross,
                monthly_employee_pf=pf_employee,
                monthly_regional_tax=pt_amount,
            )
        )
    )

    return ComplianceResult(
        jurisdiction=table.jurisdiction if table is not None else jurisdiction,
        rule_version=rules.version,
        pf_wages=pf_wages,
        pf_employee=pf_employee,
        pf_employer=pf_employer,
        esi_eligible=esi_eligible,
        esi_wages=esi_wages,
        esi_employee=esi_employee,
        esi_employer=esi_employer,
        pt_amount=pt_amount,
        tds_amount=tds_amount,
        withholding_policy=policy.name,
    )
