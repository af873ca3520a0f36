"""
Compensation Resolver -- select the effective compensation record.

Pure functions with no I/O.

Tie-break rule (documented, never a guess):
    When more than one record covers the reference date the one with the
    latest effective_from wins; if effective_from is also equal, the larger
    record id (string order) wins so the choice is stable across replays.
    The overlap is reported as an AMBIGUOUS_STATE warning naming every
    candidate, or raised as AmbiguousStateError in strict mode.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.dtos import RunWarning
from payroll_kernel.exceptions import AmbiguousStateError, CompensationNotFoundError
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.compensation")

DEFAULT_REFERENCE_DAY = 15


@dataclass(frozen=True)
class CompensationLine:
    """One component line: catalogue code and its annual amount."""

    component_code: str
    annual_amount: Decimal

    def __post_init__(self):
        if self.annual_amount < 0:
            raise ValueError(f"annual_amount for {self.component_code} cannot be negative")


@dataclass(frozen=True)
class CompensationRecord:
    """Effective-dated compensation; effective_to is inclusive, None = open."""

    id: UUID
    employee_id: UUID
    effective_from: date
    effective_to: date | None
    annual_ctc: Decimal
    lines: tuple[CompensationLine, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to cannot precede effective_from")
        codes = [line.component_code for line in self.lines]
        if len(codes) != len(set(codes)):
            raise ValueError(f"Duplicate component codes in compensation {self.id}")

    def covers(self, on: date) -> bool:
        return self.effective_from <= on and (
            self.effective_to is None or on <= self.effective_to
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "annual_ctc": str(self.annual_ctc),
            "lines": [
                {"component_code": l.component_code, "annual_amount": str(l.annual_amount)}
                for l in self.lines
            ],
        }


@dataclass(frozen=True)
class ResolvedCompensation:
    """The chosen record plus any overlap warning."""

    record: CompensationRecord
    reference_date: date
    candidate_ids: tuple[str, ...]
    warnings: tuple[RunWarning, ...] = field(default_factory=tuple)

    @property
    def is_ambiguous(self) -> bool:
        return len(self.candidate_ids) > 1


def reference_date_for(year: int, month: int, day: int = DEFAULT_REFERENCE_DAY) -> date:
    """Reference date inside the month, clamped to its last day."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _tie_break_key(record: CompensationRecord) -> tuple[date, str]:
    return (record.effective_from, str(record.id))


def find_overlaps(
    records: Sequence[CompensationRecord],
) -> list[tuple[CompensationRecord, CompensationRecord]]:
    """Every pair of records whose validity intervals intersect."""
    ordered = sorted(records, key=_tie_break_key)
    overlaps = []
    for i, earlier in enumerate(ordered):
        for later in ordered[i + 1:]:
            if earlier.effective_to is None or later.effective_from <= earlier.effective_to:
                overlaps.append((earlier, later))
    return overlaps


@traced_engine(
    "compensation",
    "1.0",
    fingerprint_fields=("employee_id", "reference_date", "strict"),
)
def resolve_active_compensation(
    *,
    employee_id: UUID | str,
    reference_date: date,
    records: Iterable[CompensationRecord],
    strict: bool = False,
) -> ResolvedCompensation:
    """
    Select the single compensation record covering reference_date.

    Raises:
        CompensationNotFoundError: No record covers the date.
        AmbiguousStateError: Several records cover it and strict is set.
    """
    candidates = sorted(
        (r for r in records if r.covers(reference_date)),
        key=_tie_break_key,
        reverse=True,
    )
    if not candidates:
        raise CompensationNotFoundError(str(employee_id), reference_date.isoformat())

    chosen = candidates[0]
    candidate_ids = tuple(str(r.id) for r in candidates)
    if len(candidates) == 1:
        return ResolvedCompensation(
            record=chosen, reference_date=reference_date, candidate_ids=candidate_ids
        )

    error = AmbiguousStateError(
        employee_id=str(employee_id),
        reference_date=reference_date.isoformat(),
        candidate_ids=list(candidate_ids),
        chosen_id=str(chosen.id),
    )
    logger.warning(
        "compensation_overlap_detected",
        extra={
            "employee_id": str(employee_id),
            "reference_date": reference_date.isoformat(),
            "candidate_ids": list(candidate_ids),
            "chosen_id": str(chosen.id),
            "strict": strict,
        },
    )
    if strict:
        raise error
    return ResolvedCompensation(
        record=chosen,
        reference_date=reference_date,
        candidate_ids=candidate_ids,
        warnings=(RunWarning.from_error(error),),
    )
