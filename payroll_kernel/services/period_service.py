"""
PeriodService -- payroll period lifecycle.

Responsibility:
    Manages the payroll period lifecycle (DRAFT -> LOCKED -> POSTED, with
    LOCKED -> DRAFT for unlock) and hands the finalizer a row-locked period.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PayrollService for every
    finalize (``get_period_for_update``) and by administrators for
    bootstrap/lock/unlock/post.

Invariants enforced:
    - One period per organization and month (get-or-create bootstrap).
    - Only transitions in ALLOWED_PERIOD_TRANSITIONS are accepted.
    - Posting a period moves every PROCESSED run in it to POSTED in the same
      flush, so a posted period never holds processed runs.
    - Flush-only: never commits.

Failure modes:
    - PeriodNotFoundError: unknown period id.
    - InvalidPeriodTransitionError: e.g. post a DRAFT period, lock a POSTED one.
    - ValueError: month outside 1..12.

Audit relevance:
    Every transition is logged with period_code, actor_id and the from/to
    status.  Rejected transitions are logged at WARNING.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.dtos import PayrollPeriodInfo
from payroll_kernel.exceptions import InvalidPeriodTransitionError, PeriodNotFoundError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.payroll_period import (
    ALLOWED_PERIOD_TRANSITIONS,
    PayrollPeriod,
    PeriodStatus,
)
from payroll_kernel.models.payroll_run import PayrollRunModel, RunStatus
from payroll_kernel.services.base import BaseService

logger = get_logger("services.period")


class PeriodService(BaseService[PayrollPeriod]):
    """
    Service for managing the payroll period lifecycle.

    Guarantees:
        - All public read methods return frozen ``PayrollPeriodInfo`` DTOs.
        - Transitions take a ``SELECT ... FOR UPDATE`` lock on the period row,
          serializing them against in-flight finalizers.

    Non-goals:
        - Does NOT compute or finalize runs (PayrollService).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _to_dto(self, period: PayrollPeriod) -> PayrollPeriodInfo:
        return PayrollPeriodInfo(
            id=period.id,
            organization_id=period.organization_id,
            month=period.month,
            year=period.year,
            status=PeriodStatus(period.status),
            locked_at=period.locked_at,
            posted_at=period.posted_at,
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    def _find(self, organization_id: UUID, month: int, year: int) -> PayrollPeriod | None:
        return self.session.execute(
            select(PayrollPeriod).where(
                PayrollPeriod.organization_id == organization_id,
                PayrollPeriod.month == month,
                PayrollPeriod.year == year,
            )
        ).scalar_one_or_none()

    def get_period(self, period_id: UUID) -> PayrollPeriodInfo:
        """Raises PeriodNotFoundError if the period does not exist."""
        period = self.session.get(PayrollPeriod, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return self._to_dto(period)

    def find_period(
        self, organization_id: UUID, month: int, year: int
    ) -> PayrollPeriodInfo | None:
        period = self._find(organization_id, month, year)
        return self._to_dto(period) if period is not None else None

    def get_period_for_update(self, period_id: UUID, shared: bool = False) -> PayrollPeriod:
        """
        Load the period row with a row lock held until the caller's
        transaction ends.

        Lifecycle transitions take the exclusive lock.  Finalize and
        supersede pass ``shared=True`` (FOR SHARE): a concurrent lock/post
        cannot change the status between their precondition check and their
        write, while finalizes for different employees still run side by
        side.  (SQLite has no row locks; its database-level write lock
        serializes the writers instead.)

        Raises:
            PeriodNotFoundError: If the period does not exist.
        """
        period = self.session.execute(
            select(PayrollPeriod)
            .where(PayrollPeriod.id == period_id)
            .with_for_update(read=shared)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def bootstrap_period(
        self,
        organization_id: UUID,
        month: int,
        year: int,
        actor_id: UUID,
    ) -> PayrollPeriodInfo:
        """
        Get or create the DRAFT period for an organization and month.

        A concurrent bootstrap that wins the unique constraint first is
        tolerated: the loser rolls back and re-reads the winner's row.

        Raises:
            ValueError: If month is outside 1..12.
        """
        if not 1 <= month <= 12:
            raise ValueError(f"month must be in 1..12, got {month}")

        existing = self._find(organization_id, month, year)
        if existing is not None:
            return self._to_dto(existing)

        period = PayrollPeriod(
            organization_id=organization_id,
            month=month,
            year=year,
            status=PeriodStatus.DRAFT,
            created_by_id=actor_id,
        )
        self.session.add(period)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            logger.warning(
                "concurrent_period_bootstrap_conflict",
                extra={
                    "organization_id": str(organization_id),
                    "period_code": f"{year:04d}-{month:02d}",
                },
            )
            existing = self._find(organization_id, month, year)
            if existing is None:
                raise
            return self._to_dto(existing)

        logger.info(
            "payroll_period_created",
            extra={
                "period_id": str(period.id),
                "organization_id": str(organization_id),
                "period_code": period.period_code,
            },
        )
        return self._to_dto(period)

    def _transition(
        self, period_id: UUID, target: PeriodStatus
    ) -> tuple[PayrollPeriod, PeriodStatus]:
        period = self.get_period_for_update(period_id)
        current = PeriodStatus(period.status)
        if (current, target) not in ALLOWED_PERIOD_TRANSITIONS:
            logger.warning(
                "period_transition_rejected",
                extra={
                    "period_id": str(period_id),
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise InvalidPeriodTransitionError(str(period_id), current.value, target.value)
        return period, current

    def lock_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        """
        DRAFT -> LOCKED.  After locking, finalize is rejected and corrections
        go through supersede.
        """
        period, previous = self._transition(period_id, PeriodStatus.LOCKED)
        period.lock(actor_id, self._clock.now())
        self.session.flush()
        self._log_transition(period, previous, actor_id)
        return self._to_dto(period)

    def unlock_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        """LOCKED -> DRAFT."""
        period, previous = self._transition(period_id, PeriodStatus.DRAFT)
        period.unlock(actor_id)
        self.session.flush()
        self._log_transition(period, previous, actor_id)
        return self._to_dto(period)

    def post_period(self, period_id: UUID, actor_id: UUID) -> PayrollPeriodInfo:
        """
        LOCKED -> POSTED.  Every PROCESSED run in the period becomes POSTED.

        Postconditions:
            - period.status is POSTED, posted_at stamped from the clock.
            - No PROCESSED runs remain in the period.
        """
        period, previous = self._transition(period_id, PeriodStatus.POSTED)
        period.post(actor_id, self._clock.now())

        result = self.session.execute(
            update(PayrollRunModel)
            .where(
                PayrollRunModel.payroll_period_id == period_id,
                PayrollRunModel.status == RunStatus.PROCESSED.value,
            )
            .values(status=RunStatus.POSTED.value, updated_by_id=actor_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        self._log_transition(period, previous, actor_id, runs_posted=result.rowcount)
        return self._to_dto(period)

    def _log_transition(
        self,
        period: PayrollPeriod,
        previous: PeriodStatus,
        actor_id: UUID,
        **extra,
    ) -> None:
        logger.info(
            "payroll_period_transitioned",
            extra={
                "period_id": str(period.id),
                "period_code": period.period_code,
                "from_status": previous.value,
                "to_status": PeriodStatus(period.status).value,
                "actor_id": str(actor_id),
                **extra,
            },
        )
