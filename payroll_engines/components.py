"""
Component Evaluator -- compute each pay component for one month.

Pure functions with no I/O.  Catalogue definitions carry a tagged
calculation variant:

    Fixed()                        annual / 12, pro-rated by
                                   payable_days / working_days unless the
                                   definition is exempt from pro-ration
    PercentOfComponent(ref, rate)  rate * amount(ref)
    PercentOfGross(rate)           rate * provisional gross (second pass)
    Formula(expression)            restricted expression over component
                                   amounts and attendance basis fields

Evaluation order:
    Pass 1  every non-gross-dependent line, in topological order over the
            reference graph (PercentOfComponent refs and formula
            identifiers).  A cycle or an unknown reference is InvalidFormula.
    Gross   provisional_gross = sum of pass-1 earnings.
    Pass 2  PercentOfGross lines over provisional_gross.  Nothing may
            reference a PercentOfGross component.
    OT      synthetic earning when ot_hours > 0:
            ot_hours * provisional_gross / standard_monthly_hours * multiplier

Every amount is rounded (two places, half-up) when it is computed, and
later steps read the rounded value.  Totals are sums of rounded amounts.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from graphlib import CycleError, TopologicalSorter
from typing import Any, ClassVar

from payroll_engines.attendance_basis import AttendanceBasis
from payroll_engines.compensation import CompensationRecord
from payroll_engines.formula import compile_formula, evaluate_formula
from payroll_engines.tracer import traced_engine
from payroll_kernel.db.types import round_money
from payroll_kernel.exceptions import ComponentDefinitionNotFoundError, InvalidFormulaError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.components")

ZERO = Decimal("0")
MONTHS_PER_YEAR = Decimal("12")
OVERTIME_CODE = "OT"


class ComponentType(str, Enum):
    """How a component affects pay."""

    EARNING = "earning"
    DEDUCTION = "deduction"
    EMPLOYER_COST = "employer_cost"


class CalculationMethod(str, Enum):
    """Tag of a calculation variant."""

    FIXED = "fixed"
    PERCENT_OF_COMPONENT = "percent_of_component"
    PERCENT_OF_GROSS = "percent_of_gross"
    FORMULA = "formula"


@dataclass(frozen=True)
class Fixed:
    method: ClassVar[CalculationMethod] = CalculationMethod.FIXED


@dataclass(frozen=True)
class PercentOfComponent:
    """rate is a fraction: 0.40 means 40% of the referenced component."""

    reference: str
    rate: Decimal
    method: ClassVar[CalculationMethod] = CalculationMethod.PERCENT_OF_COMPONENT


@dataclass(frozen=True)
class PercentOfGross:
    rate: Decimal
    method: ClassVar[CalculationMethod] = CalculationMethod.PERCENT_OF_GROSS


@dataclass(frozen=True)
class Formula:
    expression: str
    method: ClassVar[CalculationMethod] = CalculationMethod.FORMULA


Calculation = Fixed | PercentOfComponent | PercentOfGross | Formula


@dataclass(frozen=True)
class PayComponentDefinition:
    """Catalogue entry for one component code."""

    code: str
    name: str
    component_type: ComponentType
    calculation: Calculation = field(default_factory=Fixed)
    exempt_from_proration: bool = False

    @property
    def is_gross_dependent(self) -> bool:
        return isinstance(self.calculation, PercentOfGross)


@dataclass(frozen=True)
class OvertimePolicy:
    """Organizational overtime policy."""

    standard_monthly_hours: Decimal = Decimal("208")
    multiplier: Decimal = Decimal("2")

    def __post_init__(self):
        if self.standard_monthly_hours <= 0:
            raise ValueError("standard_monthly_hours must be positive")
        if self.multiplier < 0:
            raise ValueError("overtime multiplier cannot be negative")


@dataclass(frozen=True)
class ComponentAmount:
    """One evaluated component."""

    code: str
    name: str
    component_type: ComponentType
    method: CalculationMethod
    amount: Decimal
    annual_amount: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.component_type.value,
            "method": self.method.value,
            "amount": str(self.amount),
            "annual_amount": None if self.annual_amount is None else str(self.annual_amount),
        }


@dataclass(frozen=True)
class ComponentEvaluation:
    """Evaluated components in compensation-line order, overtime last."""

    components: tuple[ComponentAmount, ...]
    provisional_gross: Decimal
    gross_earnings: Decimal
    total_component_deductions: Decimal
    employer_cost_components: Decimal

    def amount_of(self, code: str) -> Decimal:
        for component in self.components:
            if component.code == code:
                return component.amount
        return ZERO

    def codes(self) -> tuple[str, ...]:
        return tuple(c.code for c in self.components)

    def to_dict(self) -> dict[str, Any]:
        return {
            "components": [c.to_dict() for c in self.components],
            "provisional_gross": str(self.provisional_gross),
            "gross_earnings": str(self.gross_earnings),
            "total_component_deductions": str(self.total_component_deductions),
            "employer_cost_components": str(self.employer_cost_components),
        }


# =============================================================================
# Helpers
# =============================================================================


def prorate(annual: Decimal, payable_days: Decimal, working_days: int) -> Decimal:
    """(annual / 12) * (payable / working), rounded once."""
    if working_days <= 0:
        return ZERO
    return round_money(annual * payable_days / (MONTHS_PER_YEAR * Decimal(working_days)))


def monthly(annual: Decimal) -> Decimal:
    return round_money(annual / MONTHS_PER_YEAR)


def _dependencies(
    definition: PayComponentDefinition,
    line_codes: frozenset[str],
    gross_dependent: frozenset[str],
    basis_fields: frozenset[str],
) -> set[str]:
    """Component codes a pass-1 definition reads.

    Raises:
        InvalidFormulaError: Unknown reference, or a reference to a
            gross-dependent component.
    """
    calc = definition.calculation
    if isinstance(calc, PercentOfComponent):
        refs = {calc.reference}
    elif isinstance(calc, Formula):
        compiled = compile_formula(definition.code, calc.expression)
        refs = set(compiled.identifiers - basis_fields)
    else:
        return set()

    for ref in sorted(refs):
        if ref in gross_dependent:
            raise InvalidFormulaError(
                definition.code,
                f"references gross-dependent component {ref}",
            )
        if ref not in line_codes:
            raise InvalidFormulaError(definition.code, f"Unknown identifier(s): {ref}")
    return refs


def _evaluation_order(
    definitions: Mapping[str, PayComponentDefinition],
    pass_one: list[str],
    basis_fields: frozenset[str],
) -> list[str]:
    line_codes = frozenset(definitions)
    gross_dependent = frozenset(c for c, d in definitions.items() if d.is_gross_dependent)

    sorter: TopologicalSorter[str] = TopologicalSorter()
    for code in pass_one:
        deps = _dependencies(definitions[code], line_codes, gross_dependent, basis_fields)
        sorter.add(code, *sorted(deps))
    try:
        return list(sorter.static_order())
    except CycleError as exc:
        cycle = exc.args[1]
        raise InvalidFormulaError(
            cycle[0], f"Dependency cycle: {' -> '.join(cycle)}"
        ) from exc


# =============================================================================
# Evaluator
# =============================================================================


@traced_engine(
    "components",
    "1.0",
    fingerprint_fields=("basis", "compensation", "overtime"),
)
def evaluate_components(
    *,
    basis: AttendanceBasis,
    compensation: CompensationRecord,
    catalogue: Mapping[str, PayComponentDefinition],
    overtime: OvertimePolicy,
) -> ComponentEvaluation:
    """
    Evaluate every compensation line plus overtime.

    Postconditions:
        - gross_earnings == sum of EARNING amounts (OT included).
        - With payable_days == working_days, every pro-rated Fixed component
          equals round(annual / 12).

    Raises:
        ComponentDefinitionNotFoundError: A line code is not in the catalogue.
        InvalidFormulaError: Cycle, unknown identifier, gross-dependent
            reference or malformed formula.
    """
    definitions: dict[str, PayComponentDefinition] = {}
    annual: dict[str, Decimal] = {}
    for line in compensation.lines:
        definition = catalogue.get(line.component_code)
        if definition is None:
            raise ComponentDefinitionNotFoundError(line.component_code)
        definitions[line.component_code] = definition
        annual[line.component_code] = line.annual_amount

    basis_vars = basis.formula_variables()
    basis_fields = frozenset(basis_vars)
    clashes = sorted(basis_fields & definitions.keys())
    if clashes:
        raise InvalidFormulaError(clashes[0], "component code shadows an attendance field")
    if OVERTIME_CODE in definitions:
        raise InvalidFormulaError(OVERTIME_CODE, "code is reserved for computed overtime")

    pass_one = [c for c, d in definitions.items() if not d.is_gross_dependent]
    pass_two = [c for c, d in definitions.items() if d.is_gross_dependent]

    amounts: dict[str, Decimal] = {}
    for code in _evaluation_order(definitions, pass_one, basis_fields):
        definition = definitions[code]
        calc = definition.calculation
        if isinstance(calc, Fixed):
            if definition.exempt_from_proration:
                amounts[code] = monthly(annual[code])
            else:
                amounts[code] = prorate(annual[code], basis.payable_days, basis.working_days)
        elif isinstance(calc, PercentOfComponent):
            amounts[code] = round_money(amounts[calc.reference] * calc.rate)
        else:
            compiled = compile_formula(code, calc.expression)
            amounts[code] = round_money(
                evaluate_formula(code, compiled, {**basis_vars, **amounts})
            )

    provisional_gross = sum(
        (amounts[c] for c in pass_one if definitions[c].component_type == ComponentType.EARNING),
        ZERO,
    )

    for code in pass_two:
        amounts[code] = round_money(provisional_gross * definitions[code].calculation.rate)

    components = [
        ComponentAmount(
            code=code,
            name=definitions[code].name,
            component_type=definitions[code].component_type,
            method=definitions[code].calculation.method,
            amount=amounts[code],
            annual_amount=annual[code],
        )
        for code in definitions
    ]

    if basis.ot_hours > 0:
        ot_amount = round_money(
            basis.ot_hours
            * provisional_gross
            / overtime.standard_monthly_hours
            * overtime.multiplier
        )
        components.append(
            ComponentAmount(
                code=OVERTIME_CODE,
                name="Overtime",
                component_type=ComponentType.EARNING,
                method=CalculationMethod.FORMULA,
                amount=ot_amount,
            )
        )

    def total(kind: ComponentType) -> Decimal:
        return sum((c.amount for c in components if c.component_type == kind), ZERO)

    evaluation = ComponentEvaluation(
        components=tuple(components),
        provisional_gross=provisional_gross,
        gross_earnings=total(ComponentType.EARNING),
        total_component_deductions=total(ComponentType.DEDUCTION),
        employer_cost_components=total(ComponentType.EMPLOYER_COST),
    )
    logger.info(
        "components_evaluated",
        extra={
            "component_count": len(components),
            "gross_earnings": str(evaluation.gross_earnings),
        },
    )
    return evaluation
