"""
Payroll Module (``payroll_modules.payroll``).

Responsibility
--------------
Turns one employee's monthly attendance, compensation and the organization's
reference data into an immutable payroll run snapshot.

Architecture position
---------------------
**Modules layer** -- ORM inputs, selectors, a config schema and
``PayrollService``, which composes the pure engines in ``payroll_engines``
and owns commit/rollback.

Invariants enforced
-------------------
* Finalize only in a DRAFT period; corrections after lock go through
  ``supersede_run``.
* At most one current run per (period, employee).
* Posted and superseded runs are never rewritten.

Failure modes
-------------
* Typed ``PayrollEngineError`` subclasses propagate from single-employee
  operations and nothing is persisted.
* ``AmbiguousState`` and ``PartialData`` conditions become run warnings.
"""

from payroll_modules.payroll.config import PayrollConfig
from payroll_modules.payroll.models import (
    Employee,
    Holiday,
    PayrollRunSnapshot,
    RunComputation,
    StatutorySummary,
)
from payroll_modules.payroll.service import PayrollService

__all__ = [
    "Employee",
    "Holiday",
    "PayrollConfig",
    "PayrollRunSnapshot",
    "PayrollService",
    "RunComputation",
    "StatutorySummary",
]
