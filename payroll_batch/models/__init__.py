"""Batch processing ORM models."""

from payroll_batch.models.bulk import BulkItemModel

__all__ = ["BulkItemModel"]
