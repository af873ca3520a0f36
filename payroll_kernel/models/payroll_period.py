"""
Module: payroll_kernel.models.payroll_period
Responsibility: ORM persistence for the payroll period lifecycle -- controls
    whether runs may be created or recomputed for an organization's month.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One period per (organization_id, month, year) (uq_payroll_period_org_month).
    - Runs may only be finalized while the period is DRAFT.
    - Transitions: DRAFT -> LOCKED -> POSTED, and LOCKED -> DRAFT (unlock).
      POSTED is terminal.

Failure modes:
    - IntegrityError on a duplicate (organization, month, year) insert; the
      period service turns a lost bootstrap race into a re-read.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle status of a payroll period."""

    DRAFT = "draft"
    LOCKED = "locked"
    POSTED = "posted"


# (from, to) pairs the period service accepts
ALLOWED_PERIOD_TRANSITIONS: frozenset[tuple[PeriodStatus, PeriodStatus]] = frozenset(
    {
        (PeriodStatus.DRAFT, PeriodStatus.LOCKED),
        (PeriodStatus.LOCKED, PeriodStatus.DRAFT),
        (PeriodStatus.LOCKED, PeriodStatus.POSTED),
    }
)


class PayrollPeriod(TrackedBase):
    """
    Payroll period for one organization and calendar month.

    Guarantees:
        - status is stored as its string value.
        - lock/unlock/post require a clock-injected timestamp; the model
          never calls datetime.now().

    Non-goals:
        - Transition legality is checked by PeriodService, not here.
    """

    __tablename__ = "payroll_periods"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "month", "year", name="uq_payroll_period_org_month"
        ),
        Index("idx_payroll_period_status", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    month: Mapped[int] = mapped_column(Integer, nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.DRAFT,
        nullable=False,
    )

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<PayrollPeriod {self.period_code}: {PeriodStatus(self.status).value}>"

    @property
    def period_code(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def is_draft(self) -> bool:
        return self.status == PeriodStatus.DRAFT

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def lock(self, actor_id: UUID, locked_at: datetime) -> None:
        self.status = PeriodStatus.LOCKED
        self.locked_at = locked_at
        self.locked_by_id = actor_id
        self.updated_by_id = actor_id

    def unlock(self, actor_id: UUID) -> None:
        self.status = PeriodStatus.DRAFT
        self.locked_at = None
        self.locked_by_id = None
        self.updated_by_id = actor_id

    def post(self, actor_id: UUID, posted_at: datetime) -> None:
        self.status = PeriodStatus.POSTED
        self.posted_at = posted_at
        self.posted_by_id = actor_id
        self.updated_by_id = actor_id
