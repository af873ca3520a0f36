"""
ORM model for bulk finalize checkpoints.

Contract:
    BulkItemModel persists one result row per (batch_id, employee_id).  The
    rows double as the resume checkpoint: a resumed batch skips employees
    whose row is SUCCEEDED or SKIPPED.

Architecture: payroll_batch/models.  Imports from payroll_kernel.db.base only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from payroll_batch.domain.types import BulkItemResult

_OUTCOME_COLUMNS = (
    "run_id",
    "version",
    "error_code",
    "error_message",
    "skip_reason",
    "duration_ms",
)


class BulkItemModel(TrackedBase):
    """Per-employee result of a bulk finalize batch."""

    __tablename__ = "payroll_bulk_items"

    __table_args__ = (
        UniqueConstraint("batch_id", "employee_id", name="uq_bulk_item_batch_employee"),
        Index("ix_bulk_items_period", "period_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    period_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> BulkItemResult:
        from payroll_batch.domain.types import BulkItemResult, BulkItemStatus

        outcome = {name: getattr(self, name) for name in _OUTCOME_COLUMNS}
        outcome["status"] = BulkItemStatus(self.status)
        return BulkItemResult(employee_id=self.employee_id, **outcome)

    def record(self, dto: BulkItemResult, actor_id: UUID) -> None:
        """Copy an attempt's outcome onto the row; later attempts overwrite."""
        for name in _OUTCOME_COLUMNS:
            setattr(self, name, getattr(dto, name))
        self.status = dto.status.value
        if self.created_by_id is None:
            self.created_by_id = actor_id
        else:
            self.updated_by_id = actor_id
