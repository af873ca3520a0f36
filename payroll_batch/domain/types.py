"""
payroll_batch.domain.types -- Pure frozen dataclasses for bulk finalize.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class BulkRunStatus(str, Enum):
    """Batch-level outcome."""

    COMPLETED = "completed"  # No item failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # Every attempted item failed
    CANCELLED = "cancelled"  # Stopped before all items ran


class BulkItemStatus(str, Enum):
    """Per-employee outcome within a batch."""

    SUCCEEDED = "succeeded"  # Run finalized
    FAILED = "failed"  # Finalize raised; nothing persisted for the employee
    SKIPPED = "skipped"  # Already processed, or checkpointed by an earlier attempt
    CANCELLED = "cancelled"  # Not started because the batch was cancelled


# Statuses that count as done when a batch is resumed.
CHECKPOINTED_STATUSES: tuple[str, ...] = (
    BulkItemStatus.SUCCEEDED.value,
    BulkItemStatus.SKIPPED.value,
)


@dataclass(frozen=True)
class BulkItemResult:
    """Result for one employee: ``{employee_id, run_id | None, status, error}``."""

    employee_id: UUID
    status: BulkItemStatus
    run_id: UUID | None = None
    version: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    skip_reason: str | None = None
    duration_ms: int = 0

    @property
    def error(self) -> str | None:
        if self.error_code is None:
            return None
        return f"{self.error_code}: {self.error_message}"


@dataclass(frozen=True)
class BulkRunResult:
    """Immutable result of one ``bulk_finalize`` call."""

    batch_id: UUID
    period_id: UUID
    status: BulkRunStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    cancelled: int
    item_results: tuple[BulkItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    def result_for(self, employee_id: UUID) -> BulkItemResult | None:
        for item in self.item_results:
            if item.employee_id == employee_id:
                return item
        return None

    @property
    def failed_employee_ids(self) -> tuple[UUID, ...]:
        return tuple(
            i.employee_id for i in self.item_results if i.status == BulkItemStatus.FAILED
        )


def summarize_status(
    succeeded: int, failed: int, skipped: int, cancelled: int
) -> BulkRunStatus:
    """Batch status from item counts."""
    if cancelled:
        return BulkRunStatus.CANCELLED
    if failed == 0:
        return BulkRunStatus.COMPLETED
    if succeeded == 0 and skipped == 0:
        return BulkRunStatus.FAILED
    return BulkRunStatus.PARTIALLY_COMPLETED
