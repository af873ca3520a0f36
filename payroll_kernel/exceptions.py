"""
Typed Exception Hierarchy for the Payroll Engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayrollEngineError:

    PayrollEngineError (base)
    |
    +-- NotFoundError
    |   +-- EmployeeNotFoundError
    |   +-- CompensationNotFoundError
    |   +-- ComponentDefinitionNotFoundError
    |   +-- ComplianceRuleNotFoundError
    |   +-- PeriodNotFoundError
    |   +-- RunNotFoundError
    |
    +-- AmbiguousStateError
    |
    +-- InvalidFormulaError
    |
    +-- PreconditionFailedError
    |   +-- PeriodNotDraftError
    |   +-- InvalidPeriodTransitionError
    |   +-- RunNotSupersedableError
    |
    +-- PartialDataError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConcurrentFinalizeError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                           | When Raised
----------------|--------------------------------|-----------------------------------
Lookup          | EMPLOYEE_NOT_FOUND             | Employee id doesn't exist
                | COMPENSATION_NOT_FOUND         | No record covers the reference date
                | COMPONENT_DEFINITION_NOT_FOUND | Line code absent from catalogue
                | COMPLIANCE_RULE_NOT_FOUND      | No rule set effective on the date
                | PERIOD_NOT_FOUND               | Period id doesn't exist
                | RUN_NOT_FOUND                  | No run for (period, employee)
----------------|--------------------------------|-----------------------------------
Integrity       | AMBIGUOUS_STATE                | Overlapping compensation records
                | PARTIAL_DATA                   | Attendance basis failed closed
----------------|--------------------------------|-----------------------------------
Calculation     | INVALID_FORMULA                | Unknown identifier / cycle / syntax
----------------|--------------------------------|-----------------------------------
State           | PERIOD_NOT_DRAFT               | Finalize against locked/posted period
                | INVALID_PERIOD_TRANSITION      | e.g. post a draft period
                | RUN_NOT_SUPERSEDABLE           | Supersede in a draft period
----------------|--------------------------------|-----------------------------------
Persistence     | IMMUTABILITY_VIOLATION         | Edit of a posted/superseded snapshot
                | CONCURRENT_FINALIZE            | Unique-constraint race lost twice

AmbiguousStateError and PartialDataError are usually not raised: the
resolvers convert them into RunWarning records attached to the run.  They
are raised only in strict mode.
===============================================================================
"""


class PayrollEngineError(Exception):
    """
    Base exception for all payroll engine errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_ENGINE_ERROR"


# Lookup failures


class NotFoundError(PayrollEngineError):
    """Base exception for missing inputs."""

    code: str = "NOT_FOUND"


class EmployeeNotFoundError(NotFoundError):
    """Employee does not exist."""

    code: str = "EMPLOYEE_NOT_FOUND"

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"Employee not found: {employee_id}")


class CompensationNotFoundError(NotFoundError):
    """No compensation record covers the reference date."""

    code: str = "COMPENSATION_NOT_FOUND"

    def __init__(self, employee_id: str, reference_date: str):
        self.employee_id = employee_id
        self.reference_date = reference_date
        super().__init__(
            f"No compensation record for employee {employee_id} "
            f"covers {reference_date}"
        )


class ComponentDefinitionNotFoundError(NotFoundError):
    """A compensation line references a code missing from the catalogue."""

    code: str = "COMPONENT_DEFINITION_NOT_FOUND"

    def __init__(self, component_code: str):
        self.component_code = component_code
        super().__init__(f"Pay component not in catalogue: {component_code}")


class ComplianceRuleNotFoundError(NotFoundError):
    """No compliance rule set is effective on the reference date."""

    code: str = "COMPLIANCE_RULE_NOT_FOUND"

    def __init__(self, reference_date: str):
        self.reference_date = reference_date
        super().__init__(f"No compliance rule set effective on {reference_date}")


class PeriodNotFoundError(NotFoundError):
    """Payroll period does not exist."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Payroll period not found: {period_id}")


class RunNotFoundError(NotFoundError):
    """No current run for the (period, employee) pair."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, period_id: str, employee_id: str):
        self.period_id = period_id
        self.employee_id = employee_id
        super().__init__(
            f"No payroll run for employee {employee_id} in period {period_id}"
        )


# Data integrity


class AmbiguousStateError(PayrollEngineError):
    """More than one compensation record covers the reference date."""

    code: str = "AMBIGUOUS_STATE"

    def __init__(
        self,
        employee_id: str,
        reference_date: str,
        candidate_ids: list[str],
        chosen_id: str,
    ):
        self.employee_id = employee_id
        self.reference_date = reference_date
        self.candidate_ids = candidate_ids
        self.chosen_id = chosen_id
        super().__init__(
            f"{len(candidate_ids)} compensation records cover {reference_date} "
            f"for employee {employee_id}; latest effective_from wins ({chosen_id})"
        )


class PartialDataError(PayrollEngineError):
    """Attendance basis had to fail closed to all-LOP."""

    code: str = "PARTIAL_DATA"

    def __init__(self, employee_id: str, month: int, year: int, lop_days: int):
        self.employee_id = employee_id
        self.month = month
        self.year = year
        self.lop_days = lop_days
        super().__init__(
            f"No attendance rows or override for employee {employee_id} in "
            f"{year}-{month:02d}; {lop_days} working days treated as LOP"
        )


# Calculation


class InvalidFormulaError(PayrollEngineError):
    """Formula is malformed, references an unknown identifier, or is cyclic."""

    code: str = "INVALID_FORMULA"

    def __init__(self, component_code: str, reason: str):
        self.component_code = component_code
        self.reason = reason
        super().__init__(f"Invalid formula for component {component_code}: {reason}")


# State preconditions


class PreconditionFailedError(PayrollEngineError):
    """Base exception for rejected state transitions."""

    code: str = "PRECONDITION_FAILED"


class PeriodNotDraftError(PreconditionFailedError):
    """Finalize attempted against a locked or posted period."""

    code: str = "PERIOD_NOT_DRAFT"

    def __init__(self, period_id: str, status: str):
        self.period_id = period_id
        self.status = status
        super().__init__(
            f"Payroll period {period_id} is {status}; runs can only be "
            f"finalized in a draft period"
        )


class InvalidPeriodTransitionError(PreconditionFailedError):
    """Requested period status change is not allowed."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_id: str, from_status: str, to_status: str):
        self.period_id = period_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payroll period {period_id} cannot move from {from_status} "
            f"to {to_status}"
        )


class RunNotSupersedableError(PreconditionFailedError):
    """Supersede requested where a plain re-finalize applies."""

    code: str = "RUN_NOT_SUPERSEDABLE"

    def __init__(self, period_id: str, status: str):
        self.period_id = period_id
        self.status = status
        super().__init__(
            f"Payroll period {period_id} is {status}; supersede applies to "
            f"locked or posted periods only"
        )


# Persistence


class ImmutabilityViolationError(PayrollEngineError):
    """Attempted to modify or delete an immutable run snapshot."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ConcurrentFinalizeError(PayrollEngineError):
    """Another writer kept winning the (period, employee, version) slot."""

    code: str = "CONCURRENT_FINALIZE"

    def __init__(self, period_id: str, employee_id: str, attempts: int):
        self.period_id = period_id
        self.employee_id = employee_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent finalize for employee {employee_id} in period "
            f"{period_id} conflicted {attempts} times"
        )
