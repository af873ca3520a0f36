"""
Payroll period lifecycle tests.

Verifies:
- One period per organization and month (get-or-create bootstrap)
- DRAFT -> LOCKED -> POSTED, and LOCKED -> DRAFT via unlock
- Rejected transitions leave the period untouched
- Posting a period posts its processed runs
"""

from uuid import uuid4

import pytest

from payroll_kernel.exceptions import InvalidPeriodTransitionError, PeriodNotFoundError
from payroll_kernel.models.payroll_period import PeriodStatus
from payroll_kernel.models.payroll_run import RunStatus
from payroll_kernel.services.period_service import PeriodService


class TestBootstrap:
    def test_creates_draft_period(self, payroll_service, org_id, test_actor_id):
        period = payroll_service.bootstrap_period(org_id, 4, 2024, test_actor_id)

        assert period.status == PeriodStatus.DRAFT
        assert period.is_draft
        assert period.period_code == "2024-04"
        assert period.organization_id == org_id

    def test_bootstrap_is_get_or_create(self, payroll_service, org_id, test_actor_id):
        first = payroll_service.bootstrap_period(org_id, 4, 2024, test_actor_id)
        second = payroll_service.bootstrap_period(org_id, 4, 2024, test_actor_id)

        assert first.id == second.id

    def test_periods_are_per_organization(self, payroll_service, org_id, test_actor_id):
        ours = payroll_service.bootstrap_period(org_id, 4, 2024, test_actor_id)
        theirs = payroll_service.bootstrap_period(uuid4(), 4, 2024, test_actor_id)

        assert ours.id != theirs.id

    def test_invalid_month(self, payroll_service, org_id, test_actor_id):
        with pytest.raises(ValueError, match="month"):
            payroll_service.bootstrap_period(org_id, 0, 2024, test_actor_id)

    def test_find_period(self, session, april_period, org_id):
        service = PeriodService(session)

        assert service.find_period(org_id, 4, 2024).id == april_period.id
        assert service.find_period(org_id, 5, 2024) is None

    def test_unknown_period(self, payroll_service):
        with pytest.raises(PeriodNotFoundError):
            payroll_service.get_period(uuid4())


class TestTransitions:
    def test_lock_stamps_clock_time(
        self, payroll_service, april_period, test_actor_id, deterministic_clock
    ):
        locked = payroll_service.lock_period(april_period.id, test_actor_id)

        assert locked.status == PeriodStatus.LOCKED
        assert locked.locked_at == deterministic_clock.now()

    def test_unlock_returns_to_draft(self, payroll_service, april_period, test_actor_id):
        payroll_service.lock_period(april_period.id, test_actor_id)

        unlocked = payroll_service.unlock_period(april_period.id, test_actor_id)

        assert unlocked.status == PeriodStatus.DRAFT
        assert unlocked.locked_at is None

    def test_post_requires_lock(self, payroll_service, april_period, test_actor_id):
        with pytest.raises(InvalidPeriodTransitionError) as exc_info:
            payroll_service.post_period(april_period.id, test_actor_id)

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "posted"
        assert payroll_service.get_period(april_period.id).status == PeriodStatus.DRAFT

    def test_posted_is_terminal(self, payroll_service, april_period, test_actor_id):
        payroll_service.lock_period(april_period.id, test_actor_id)
        payroll_service.post_period(april_period.id, test_actor_id)

        with pytest.raises(InvalidPeriodTransitionError):
            payroll_service.unlock_period(april_period.id, test_actor_id)
        with pytest.raises(InvalidPeriodTransitionError):
            payroll_service.lock_period(april_period.id, test_actor_id)

    def test_double_lock_rejected(self, payroll_service, april_period, test_actor_id):
        payroll_service.lock_period(april_period.id, test_actor_id)

        with pytest.raises(InvalidPeriodTransitionError):
            payroll_service.lock_period(april_period.id, test_actor_id)

    def test_transition_logged(self, payroll_service, april_period, test_actor_id, captured_logs):
        payroll_service.lock_period(april_period.id, test_actor_id)

        (record,) = [
            r for r in captured_logs() if r["message"] == "payroll_period_transitioned"
        ]
        assert record["from_status"] == "draft"
        assert record["to_status"] == "locked"
        assert record["period_code"] == "2024-04"


class TestPosting:
    def test_post_moves_processed_runs_to_posted(
        self,
        payroll_service,
        april_period,
        make_employee,
        record_april_attendance,
        test_actor_id,
    ):
        employee = make_employee()
        record_april_attendance(employee.id)
        payroll_service.finalize_run(april_period.id, employee.id, test_actor_id)
        payroll_service.lock_period(april_period.id, test_actor_id)

        posted = payroll_service.post_period(april_period.id, test_actor_id)

        assert posted.status == PeriodStatus.POSTED
        run = payroll_service.get_run(april_period.id, employee.id)
        assert run.status == RunStatus.POSTED
        assert payroll_service.processed_employee_ids(april_period.id) == {employee.id}
