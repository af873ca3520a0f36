"""
Pytest fixtures for the payroll engine test suite.

Provides:
- A fresh SQLite database file per test (tables created from the ORM
  registry; engine init registers the immutability listeners)
- Deterministic clock, default reference data and config
- Seed helpers for employees, compensation and attendance
- Structured log capture

Pure engine tests need none of the database fixtures.
"""

import json
import logging
from collections.abc import Iterable
from datetime import date, datetime
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from payroll_config.loader import load_reference_snapshot
from payroll_engines.compensation import CompensationLine
from payroll_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from payroll_kernel.db.immutability import unregister_immutability_listeners
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payroll_modules.payroll.config import PayrollConfig
from payroll_modules.payroll.models import Employee, Holiday
from payroll_modules.payroll.service import PayrollService
from tests.helpers import (
    APRIL_2024_HOLIDAYS,
    TEST_ACTOR_ID,
    absent_days,
    make_compensation,
    month_working_dates,
    present_days,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payroll_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, payroll_service):
            payroll_service.finalize_run(...)
            logs = captured_logs()
            assert any(r["message"] == "payroll_run_finalized" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """SQLite file database with the full schema."""
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'payroll_test.db'}")
    create_tables()
    yield engine
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(datetime(2024, 5, 2, 9, 0, 0))


@pytest.fixture(scope="session")
def reference_snapshot():
    """Default catalogue and compliance rules shipped with payroll_config."""
    return load_reference_snapshot()


@pytest.fixture
def payroll_config():
    return PayrollConfig()


@pytest.fixture
def payroll_service(session, reference_snapshot, payroll_config, deterministic_clock):
    return PayrollService(
        session,
        reference=reference_snapshot,
        config=payroll_config,
        clock=deterministic_clock,
    )


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def april_period(payroll_service, org_id, test_actor_id):
    """Draft April 2024 period with the April holidays registered."""
    for holiday_date in APRIL_2024_HOLIDAYS:
        payroll_service.add_holiday(
            org_id, Holiday(holiday_date=holiday_date, name="Holiday"), test_actor_id
        )
    payroll_service.add_holiday(
        org_id,
        Holiday(holiday_date=date(2024, 4, 14), name="Optional", is_optional=True),
        test_actor_id,
    )
    return payroll_service.bootstrap_period(org_id, 4, 2024, test_actor_id)


# =============================================================================
# Seed fixtures
# =============================================================================


@pytest.fixture
def make_employee(payroll_service, org_id, test_actor_id):
    """Factory: register an employee, optionally with a compensation record."""
    counter = {"n": 0}

    def _make(
        jurisdiction: str = "KA",
        join_date: date | None = date(2020, 1, 1),
        exit_date: date | None = None,
        lines: tuple[CompensationLine, ...] | None = None,
        with_compensation: bool = True,
        is_active: bool = True,
        weekly_off_days: tuple[str, ...] = (),
    ) -> Employee:
        counter["n"] += 1
        employee = Employee(
            id=uuid4(),
            organization_id=org_id,
            employee_code=f"EMP-{counter['n']:03d}",
            full_name=f"Employee {counter['n']}",
            jurisdiction=jurisdiction,
            join_date=join_date,
            exit_date=exit_date,
            weekly_off_days=weekly_off_days,
            is_active=is_active,
        )
        payroll_service.register_employee(employee, test_actor_id)
        if with_compensation:
            payroll_service.record_compensation(
                make_compensation(employee.id, lines), test_actor_id
            )
        return employee

    return _make


@pytest.fixture
def record_april_attendance(payroll_service, test_actor_id):
    """Factory: store April 2024 rows, present on every working day but `lop`."""

    def _record(employee_id: UUID, lop: Iterable[date] = ()) -> None:
        lop = set(lop)
        working = month_working_dates(2024, 4, APRIL_2024_HOLIDAYS)
        days = present_days(d for d in working if d not in lop)
        days += absent_days(sorted(lop))
        payroll_service.record_attendance(employee_id, days, test_actor_id)

    return _record
