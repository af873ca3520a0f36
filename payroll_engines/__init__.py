"""
Payroll calculation engines.

Pure functions of their inputs: no session, no clock, no I/O beyond
structured trace logging.  The payroll module composes them into a run.
"""

from payroll_engines.attendance_basis import (
    AttendanceBasis,
    AttendanceDay,
    AttendanceOverride,
    BasisSource,
    resolve_attendance_basis,
)
from payroll_engines.compensation import (
    CompensationLine,
    CompensationRecord,
    ResolvedCompensation,
    reference_date_for,
    resolve_active_compensation,
)
from payroll_engines.compliance import (
    ComplianceResult,
    ComplianceRuleSet,
    apply_compliance,
    select_rule_set,
)
from payroll_engines.components import (
    ComponentEvaluation,
    ComponentType,
    OvertimePolicy,
    PayComponentDefinition,
    evaluate_components,
)

__all__ = [
    "AttendanceBasis",
    "AttendanceDay",
    "AttendanceOverride",
    "BasisSource",
    "CompensationLine",
    "CompensationRecord",
    "ComplianceResult",
    "ComplianceRuleSet",
    "ComponentEvaluation",
    "ComponentType",
    "OvertimePolicy",
    "PayComponentDefinition",
    "ResolvedCompensation",
    "apply_compliance",
    "evaluate_components",
    "reference_date_for",
    "resolve_active_compensation",
    "select_rule_set",
]
