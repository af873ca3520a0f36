"""
Reference Data Loader (``payroll_config.loader``).

Responsibility
--------------
Loads the pay-component catalogue and compliance rule sets from YAML and
parses them into the frozen dataclasses the engines consume.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass; nothing downstream can mutate
  reference data mid-calculation.
* Amounts and rates are parsed into Decimal from their text form; floats
  never reach the engines.
* ``ReferenceSnapshot.fingerprint`` is a deterministic SHA-256 over the
  catalogue and rule sets, recorded on every run for replay.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown component type / calculation method  -> ``ValueError``.
* Invalid formula  -> ``InvalidFormulaError`` (validated at load time).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from payroll_engines.compliance import (
    ComplianceRuleSet,
    HealthInsuranceRule,
    RegionalTaxTable,
    RetirementFundRule,
    TaxSlab,
    select_rule_set,
)
from payroll_engines.components import (
    CalculationMethod,
    ComponentType,
    Fixed,
    Formula,
    PayComponentDefinition,
    PercentOfComponent,
    PercentOfGross,
)
from payroll_engines.formula import compile_formula
from payroll_engines.withholding import AnnualTaxSlab, WithholdingConfig
from payroll_kernel.utils.hashing import hash_payload, to_jsonable

DEFAULTS_DIR = Path(__file__).parent / "defaults"
DEFAULT_CATALOGUE_PATH = DEFAULTS_DIR / "pay_components.yaml"
DEFAULT_COMPLIANCE_PATH = DEFAULTS_DIR / "compliance_rules.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    """Parse a Decimal from YAML; floats go through their text form."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Cannot parse decimal from {value!r}")
    return Decimal(str(value))


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else parse_decimal(value)


# =============================================================================
# Pay component catalogue
# =============================================================================


@dataclass(frozen=True)
class ComponentCatalogue:
    """Versioned, immutable pay-component catalogue."""

    version: str
    definitions: tuple[PayComponentDefinition, ...]

    def __post_init__(self):
        codes = [d.code for d in self.definitions]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate component codes: {', '.join(duplicates)}")

    def as_mapping(self) -> dict[str, PayComponentDefinition]:
        return {d.code: d for d in self.definitions}

    def get(self, code: str) -> PayComponentDefinition | None:
        return self.as_mapping().get(code)

    @property
    def fingerprint(self) -> str:
        return hash_payload(to_jsonable({"version": self.version, "definitions": [
            {**asdict(d), "method": d.calculation.method.value} for d in self.definitions
        ]}))


def parse_calculation(data: Mapping[str, Any] | None, code: str):
    """Parse the tagged calculation variant of a component."""
    if not data:
        return Fixed()
    method = CalculationMethod(data["method"])
    if method == CalculationMethod.FIXED:
        return Fixed()
    if method == CalculationMethod.PERCENT_OF_COMPONENT:
        return PercentOfComponent(
            reference=data["reference"], rate=parse_decimal(data["rate"])
        )
    if method == CalculationMethod.PERCENT_OF_GROSS:
        return PercentOfGross(rate=parse_decimal(data["rate"]))
    expression = str(data["expression"]).strip()
    compile_formula(code, expression)
    return Formula(expression=expression)


def parse_component(data: Mapping[str, Any]) -> PayComponentDefinition:
    """Parse a ``PayComponentDefinition`` from a dict."""
    code = data["code"]
    return PayComponentDefinition(
        code=code,
        name=data.get("name", code),
        component_type=ComponentType(data["type"]),
        calculation=parse_calculation(data.get("calculation"), code),
        exempt_from_proration=bool(data.get("exempt_from_proration", False)),
    )


def parse_catalogue(data: Mapping[str, Any]) -> ComponentCatalogue:
    return ComponentCatalogue(
        version=str(data["version"]),
        definitions=tuple(parse_component(c) for c in data.get("components", [])),
    )


def load_catalogue(path: Path | None = None) -> ComponentCatalogue:
    return parse_catalogue(load_yaml_file(path or DEFAULT_CATALOGUE_PATH))


# =============================================================================
# Compliance rule sets
# =============================================================================


def parse_regional_table(data: Mapping[str, Any]) -> RegionalTaxTable:
    """Slabs are listed in ascending order; the last may omit ``upto``."""
    slabs = tuple(
        TaxSlab(upper_bound=_optional_decimal(s.get("upto")), amount=parse_decimal(s["amount"]))
        for s in data.get("slabs", [])
    )
    bounds = [s.upper_bound for s in slabs]
    if None in bounds[:-1]:
        raise ValueError(f"Only the last slab of {data['jurisdiction']} may be unbounded")
    if bounds != sorted(bounds, key=lambda b: (b is None, b)):
        raise ValueError(f"Slabs of {data['jurisdiction']} must be ascending")
    return RegionalTaxTable(
        jurisdiction=data["jurisdiction"],
        slabs=slabs,
        aliases=tuple(data.get("aliases", ())),
    )


def parse_withholding(data: Mapping[str, Any] | None) -> WithholdingConfig:
    if not data:
        return WithholdingConfig()
    return WithholdingConfig(
        policy=data.get("policy", "none"),
        standard_deduction=parse_decimal(data.get("standard_deduction", 0)),
        rebate_threshold=parse_decimal(data.get("rebate_threshold", 0)),
        cess_rate=parse_decimal(data.get("cess_rate", 0)),
        slabs=tuple(
            AnnualTaxSlab(
                lower=parse_decimal(s["from"]),
                upper=_optional_decimal(s.get("upto")),
                rate=parse_decimal(s["rate"]),
            )
            for s in data.get("slabs", [])
        ),
    )


def parse_rule_set(data: Mapping[str, Any]) -> ComplianceRuleSet:
    """Parse a ``ComplianceRuleSet``; omitted sections take statutory defaults."""
    pf = data.get("retirement_fund", {})
    esi = data.get("health_insurance", {})
    pf_defaults = RetirementFundRule()
    esi_defaults = HealthInsuranceRule()
    return ComplianceRuleSet(
        version=str(data["version"]),
        effective_from=parse_date(data["effective_from"]),
        effective_to=parse_date(data["effective_to"]) if data.get("effective_to") else None,
        retirement_fund=RetirementFundRule(
            wage_ceiling=parse_decimal(pf.get("wage_ceiling", pf_defaults.wage_ceiling)),
            employee_rate=parse_decimal(pf.get("employee_rate", pf_defaults.employee_rate)),
            employer_rate=parse_decimal(pf.get("employer_rate", pf_defaults.employer_rate)),
            wage_codes=tuple(pf.get("wage_codes", pf_defaults.wage_codes)),
        ),
        health_insurance=HealthInsuranceRule(
            eligibility_ceiling=parse_decimal(
                esi.get("eligibility_ceiling", esi_defaults.eligibility_ceiling)
            ),
            employee_rate=parse_decimal(esi.get("employee_rate", esi_defaults.employee_rate)),
            employer_rate=parse_decimal(esi.get("employer_rate", esi_defaults.employer_rate)),
        ),
        regional_tax=tuple(parse_regional_table(t) for t in data.get("regional_tax", [])),
        withholding=parse_withholding(data.get("withholding")),
    )


def load_compliance_rules(path: Path | None = None) -> tuple[ComplianceRuleSet, ...]:
    data = load_yaml_file(path or DEFAULT_COMPLIANCE_PATH)
    return tuple(parse_rule_set(r) for r in data.get("rule_sets", []))


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True)
class ReferenceSnapshot:
    """
    Catalogue and rule sets pinned for one calculation.

    The fingerprint identifies exactly which reference data produced a run.
    """

    catalogue: ComponentCatalogue
    rule_sets: tuple[ComplianceRuleSet, ...]

    def rules_on(self, on: date) -> ComplianceRuleSet:
        return select_rule_set(self.rule_sets, on)

    @property
    def fingerprint(self) -> str:
        return hash_payload({
            "catalogue": self.catalogue.fingerprint,
            "rule_sets": sorted(r.fingerprint for r in self.rule_sets),
        })


def load_reference_snapshot(
    catalogue_path: Path | None = None,
    compliance_path: Path | None = None,
) -> ReferenceSnapshot:
    return ReferenceSnapshot(
        catalogue=load_catalogue(catalogue_path),
        rule_sets=load_compliance_rules(compliance_path),
    )
