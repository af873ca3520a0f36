"""
Module ORM Registry (``payroll_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` holds its table definition before ``create_tables()``
runs.

Usage
-----
``payroll_kernel.db.engine.create_tables`` and ``tests/conftest.py`` call
``import_all_orm_models()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``payroll_modules.*.orm`` module.

    Kernel tables come first: attendance and compensation rows reference
    ``payroll_employees`` and runs reference ``payroll_periods``.

    This function is idempotent -- repeated calls are harmless.
    """
    import payroll_kernel.models  # noqa: F401
    import payroll_modules.payroll.orm  # noqa: F401
    import payroll_batch.models  # noqa: F401  # Bulk finalize checkpoints
