"""
Tests for BulkFinalizer.

Validates:
- Every eligible employee is finalized; one failure does not stop the batch
- Employees with a current run are skipped unless recompute is requested
- Cancellation stops new items; resuming the batch id skips checkpointed items
- A non-draft period is rejected before any work starts

Each test commits the fixture session before calling the finalizer: on SQLite
an open transaction holds the write lock the worker sessions need.
"""

from uuid import uuid4

import pytest

from payroll_batch.domain.types import (
    BulkItemStatus,
    BulkRunStatus,
    summarize_status,
)
from payroll_batch.services.bulk_finalizer import (
    SKIP_ALREADY_PROCESSED,
    SKIP_CHECKPOINTED,
    BulkFinalizer,
)
from payroll_kernel.exceptions import PeriodNotDraftError, PeriodNotFoundError
from payroll_kernel.models.payroll_run import RunStatus
from tests.helpers import make_compensation


@pytest.fixture
def bulk(session_factory, reference_snapshot, payroll_config, deterministic_clock):
    return BulkFinalizer(
        session_factory,
        reference=reference_snapshot,
        config=payroll_config,
        clock=deterministic_clock,
        max_workers=4,
    )


@pytest.fixture
def staff(make_employee, record_april_attendance, session):
    """Three employees with full April attendance."""
    employees = [make_employee() for _ in range(3)]
    for emp in employees:
        record_april_attendance(emp.id)
    session.commit()
    return employees


# =============================================================================
# Batch outcomes
# =============================================================================


class TestBulkFinalize:
    def test_all_employees_finalized(
        self, bulk, payroll_service, session, april_period, staff, test_actor_id
    ):
        result = bulk.bulk_finalize(april_period.id, test_actor_id)

        assert result.status == BulkRunStatus.COMPLETED
        assert result.total_items == 3
        assert result.succeeded == 3
        assert [i.employee_id for i in result.item_results] == [e.id for e in staff]
        assert all(i.version == 1 for i in result.item_results)

        runs = payroll_service.list_runs(april_period.id)
        session.commit()
        assert {r.employee_id for r in runs} == {e.id for e in staff}
        assert all(r.status == RunStatus.PROCESSED for r in runs)

    def test_failure_does_not_abort_batch(
        self, bulk, session, april_period, staff, make_employee, test_actor_id
    ):
        unpaid = make_employee(with_compensation=False)
        session.commit()

        result = bulk.bulk_finalize(april_period.id, test_actor_id)

        assert result.status == BulkRunStatus.PARTIALLY_COMPLETED
        assert result.succeeded == 3
        assert result.failed == 1
        assert result.failed_employee_ids == (unpaid.id,)
        failed = result.result_for(unpaid.id)
        assert failed.error_code == "COMPENSATION_NOT_FOUND"
        assert failed.run_id is None
        assert failed.error.startswith("COMPENSATION_NOT_FOUND: ")

    def test_jurisdiction_applies_to_every_employee(
        self, bulk, payroll_service, session, april_period, staff, test_actor_id
    ):
        bulk.bulk_finalize(april_period.id, test_actor_id, jurisdiction="TN")

        runs = payroll_service.list_runs(april_period.id)
        session.commit()
        assert {r.jurisdiction for r in runs} == {"Tamil Nadu"}

    def test_completion_logged(
        self, bulk, april_period, staff, test_actor_id, captured_logs
    ):
        result = bulk.bulk_finalize(april_period.id, test_actor_id)

        (record,) = [
            r for r in captured_logs() if r["message"] == "bulk_finalize_completed"
        ]
        assert record["batch_id"] == str(result.batch_id)
        assert record["status"] == "completed"
        assert record["succeeded"] == 3

    def test_empty_period_completes(self, bulk, april_period, test_actor_id):
        result = bulk.bulk_finalize(april_period.id, test_actor_id)

        assert result.status == BulkRunStatus.COMPLETED
        assert result.total_items == 0


class TestBulkPreconditions:
    def test_locked_period_rejected(
        self, bulk, payroll_service, session, april_period, staff, test_actor_id
    ):
        payroll_service.lock_period(april_period.id, test_actor_id)
        session.commit()

        with pytest.raises(PeriodNotDraftError):
            bulk.bulk_finalize(april_period.id, test_actor_id)

    def test_unknown_period_rejected(self, bulk, test_actor_id):
        with pytest.raises(PeriodNotFoundError):
            bulk.bulk_finalize(uuid4(), test_actor_id)


# =============================================================================
# Idempotency and resume
# =============================================================================


class TestSkipAndResume:
    def test_processed_employees_skipped(
        self, bulk, payroll_service, session, april_period, staff, test_actor_id
    ):
        payroll_service.finalize_run(april_period.id, staff[0].id, test_actor_id)
        session.commit()

        result = bulk.bulk_finalize(april_period.id, test_actor_id)

        skipped = result.result_for(staff[0].id)
        assert skipped.status == BulkItemStatus.SKIPPED
        assert skipped.skip_reason == SKIP_ALREADY_PROCESSED
        assert result.succeeded == 2
        assert result.status == BulkRunStatus.COMPLETED

    def test_recompute_processed(
        self, bulk, payroll_service, session, april_period, staff, test_actor_id
    ):
        first = payroll_service.finalize_run(april_period.id, staff[0].id, test_actor_id)
        session.commit()

        result = bulk.bulk_finalize(april_period.id, test_actor_id, recompute_processed=True)

        item = result.result_for(staff[0].id)
        assert item.status == BulkItemStatus.SUCCEEDED
        assert item.run_id == first.id
        assert item.version == 1

    def test_second_batch_is_a_no_op(self, bulk, april_period, staff, test_actor_id):
        bulk.bulk_finalize(april_period.id, test_actor_id)

        again = bulk.bulk_finalize(april_period.id, test_actor_id)

        assert again.skipped == 3
        assert again.succeeded == 0
        assert again.status == BulkRunStatus.COMPLETED

    def test_cancel_then_resume(self, session_factory, reference_snapshot, payroll_config,
                                deterministic_clock, april_period, staff, test_actor_id):
        finalizer = BulkFinalizer(
            session_factory,
            reference=reference_snapshot,
            config=payroll_config,
            clock=deterministic_clock,
            max_workers=1,
        )

        def cancel_after_first(item):
            finalizer.cancel()

        cancelled = finalizer.bulk_finalize(
            april_period.id, test_actor_id, on_item_complete=cancel_after_first
        )

        assert cancelled.status == BulkRunStatus.CANCELLED
        assert cancelled.succeeded == 1
        assert cancelled.cancelled == 2
        assert [i.status for i in finalizer.batch_items(cancelled.batch_id)] == [
            BulkItemStatus.SUCCEEDED
        ]

        resumed = finalizer.bulk_finalize(
            april_period.id, test_actor_id, batch_id=cancelled.batch_id
        )

        assert resumed.status == BulkRunStatus.COMPLETED
        assert resumed.result_for(staff[0].id).skip_reason == SKIP_CHECKPOINTED
        assert resumed.succeeded == 2
        assert not finalizer.is_cancelled

    def test_resume_retries_failed_items(
        self, bulk, payroll_service, session, april_period, staff,
        make_employee, test_actor_id,
    ):
        late = make_employee(with_compensation=False)
        session.commit()
        first = bulk.bulk_finalize(april_period.id, test_actor_id)
        payroll_service.record_compensation(make_compensation(late.id), test_actor_id)
        session.commit()

        resumed = bulk.bulk_finalize(april_period.id, test_actor_id, batch_id=first.batch_id)

        assert resumed.result_for(late.id).status == BulkItemStatus.SUCCEEDED
        assert resumed.skipped == 3
        statuses = {i.employee_id: i.status for i in bulk.batch_items(first.batch_id)}
        assert statuses[late.id] == BulkItemStatus.SUCCEEDED
        assert len(statuses) == 4


# =============================================================================
# Status summary
# =============================================================================


class TestSummarizeStatus:
    @pytest.mark.parametrize(
        "succeeded, failed, skipped, cancelled, expected",
        [
            (3, 0, 0, 0, BulkRunStatus.COMPLETED),
            (0, 0, 3, 0, BulkRunStatus.COMPLETED),
            (0, 0, 0, 0, BulkRunStatus.COMPLETED),
            (2, 1, 0, 0, BulkRunStatus.PARTIALLY_COMPLETED),
            (0, 1, 2, 0, BulkRunStatus.PARTIALLY_COMPLETED),
            (0, 3, 0, 0, BulkRunStatus.FAILED),
            (1, 0, 0, 2, BulkRunStatus.CANCELLED),
        ],
    )
    def test_status_from_counts(self, succeeded, failed, skipped, cancelled, expected):
        assert summarize_status(succeeded, failed, skipped, cancelled) == expected
