from payroll_batch.services.bulk_finalizer import BulkFinalizer

__all__ = ["BulkFinalizer"]
