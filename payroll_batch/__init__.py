"""
Bulk payroll processing.

Fans ``PayrollService.finalize_run`` out over every eligible employee of a
period on a bounded worker pool, with per-employee result records and a
checkpoint that allows a cancelled batch to be resumed.
"""

from payroll_batch.domain.types import (
    BulkItemResult,
    BulkItemStatus,
    BulkRunResult,
    BulkRunStatus,
)
from payroll_batch.services.bulk_finalizer import BulkFinalizer

__all__ = [
    "BulkFinalizer",
    "BulkItemResult",
    "BulkItemStatus",
    "BulkRunResult",
    "BulkRunStatus",
]
