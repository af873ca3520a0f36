"""
ORM-Level Immutability Enforcement for payroll run snapshots.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners intercept these events and check the snapshot invariants:

    session.flush()
         |
         v
    [before_update] --> _check_payroll_run_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_payroll_run_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                 | What may still change
----------------|--------------------------------|------------------------------
PayrollRun      | status POSTED                  | status (-> superseded),
                |                                | superseded_at, audit fields
PayrollRun      | status SUPERSEDED              | audit fields only

PROCESSED runs in a DRAFT period are recomputed in place; that path is
guarded by the finalizer's period precondition, not by these listeners.

===============================================================================
USAGE
===============================================================================

    from payroll_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent

``init_engine_from_url`` already calls it, so applications get the guard
as soon as the engine exists.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from payroll_kernel.exceptions import ImmutabilityViolationError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.payroll_run import PayrollRunModel, RunStatus

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_SUPERSEDE_FIELDS = frozenset({"status", "superseded_at"})


def _status_before_update(target) -> str:
    """Status the row had in the database before this flush."""
    status_history = get_history(target, "status")
    if status_history.deleted:
        return RunStatus(status_history.deleted[0]).value
    return RunStatus(target.status).value


def _block(target, operation: str, reason: str, field: str | None = None) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "PayrollRun",
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="PayrollRun",
        entity_id=str(target.id),
        reason=reason,
    )


def _check_payroll_run_immutability(mapper, connection, target):
    """
    Prevent edits to posted or superseded run snapshots.

    Logic:
        1. Row was SUPERSEDED: only audit fields may change.
        2. Row was POSTED: only the supersede transition may happen
           (status -> superseded, superseded_at), plus audit fields.
        3. Row was PROCESSED: no restriction here.
    """
    if not isinstance(target, PayrollRunModel):
        return

    previous = _status_before_update(target)
    if previous == RunStatus.PROCESSED.value:
        return

    if previous == RunStatus.POSTED.value:
        allowed = _AUDIT_FIELDS | _SUPERSEDE_FIELDS
        new_status = RunStatus(target.status).value
        if new_status not in (RunStatus.POSTED.value, RunStatus.SUPERSEDED.value):
            _block(
                target,
                "UPDATE",
                f"Posted run cannot move back to '{new_status}'",
                field="status",
            )
    else:
        allowed = _AUDIT_FIELDS

    for attr in inspect(target).attrs:
        if attr.key in allowed:
            continue
        if attr.history.has_changes():
            _block(
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on {previous} payroll run",
                field=attr.key,
            )


def _check_payroll_run_delete(mapper, connection, target):
    """Posted and superseded runs cannot be deleted."""
    if not isinstance(target, PayrollRunModel):
        return

    if RunStatus(target.status) in (RunStatus.POSTED, RunStatus.SUPERSEDED):
        _block(
            target,
            "DELETE",
            f"{RunStatus(target.status).value.capitalize()} payroll runs cannot be deleted",
        )


def register_immutability_listeners() -> None:
    """Register run snapshot immutability listeners (idempotent)."""
    if not event.contains(PayrollRunModel, "before_update", _check_payroll_run_immutability):
        event.listen(PayrollRunModel, "before_update", _check_payroll_run_immutability)
    if not event.contains(PayrollRunModel, "before_delete", _check_payroll_run_delete):
        event.listen(PayrollRunModel, "before_delete", _check_payroll_run_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    _safe_remove_listener(PayrollRunModel, "before_update", _check_payroll_run_immutability)
    _safe_remove_listener(PayrollRunModel, "before_delete", _check_payroll_run_delete)
