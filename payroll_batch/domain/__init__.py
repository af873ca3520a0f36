from payroll_batch.domain.types import (
    BulkItemResult,
    BulkItemStatus,
    BulkRunResult,
    BulkRunStatus,
)

__all__ = [
    "BulkItemResult",
    "BulkItemStatus",
    "BulkRunResult",
    "BulkRunStatus",
]
