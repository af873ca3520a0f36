"""
BulkFinalizer -- fan ``finalize_run`` out over a period's employees.

Contract:
    ``bulk_finalize()`` finalizes every eligible employee (active, employment
    window overlapping the month) of the period's organization and returns
    one ``BulkItemResult`` per employee.  A failing employee never aborts
    the batch.

Architecture: payroll_batch/services.  Imports from payroll_batch.domain,
    payroll_batch.models, payroll_modules.payroll and kernel modules.

Invariants enforced:
    - One session per employee; each finalize is its own transaction.
    - Different employees run in parallel on at most ``max_workers`` threads
      (sized below the connection pool).
    - The same (period, employee) pair is serialized by an in-process keyed
      lock; across processes the run table's unique version slot and the
      finalizer's retry serialize it.
    - Employees that already have a current run in the DRAFT period are
      skipped (idempotent, at-least-once).
    - Every attempted item is checkpointed in ``payroll_bulk_items``; a
      batch resumed with the same ``batch_id`` skips checkpointed employees.
    - Cancellation is cooperative: items already running complete, items
      not yet started report CANCELLED and are not checkpointed.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_batch.domain.types import (
    CHECKPOINTED_STATUSES,
    BulkItemResult,
    BulkItemStatus,
    BulkRunResult,
    summarize_status,
)
from payroll_batch.models.bulk import BulkItemModel
from payroll_config.loader import ReferenceSnapshot, load_reference_snapshot
from payroll_engines.withholding import WithholdingPolicy
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import PayrollEngineError, PeriodNotDraftError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_modules.payroll.config import PayrollConfig
from payroll_modules.payroll.service import PayrollService

logger = get_logger("batch.bulk_finalizer")

SKIP_ALREADY_PROCESSED = "already_processed"
SKIP_CHECKPOINTED = "checkpointed"


class _KeyLock:
    """A (period, employee) lock and the number of workers holding or awaiting it."""

    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class BulkFinalizer:
    """Parallel, resumable bulk finalize.

    Contract:
        - ``bulk_finalize()`` runs one batch and returns ``BulkRunResult``.
        - ``cancel()`` may be called from any thread while a batch runs.
        - ``batch_items()`` reads the checkpoint of a batch.

    Non-goals:
        - Does NOT schedule batches.
        - Does NOT retry failed employees within a batch; resume the batch.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        reference: ReferenceSnapshot | None = None,
        config: PayrollConfig | None = None,
        clock: Clock | None = None,
        max_workers: int | None = None,
        withholding_policy: WithholdingPolicy | None = None,
    ):
        self._session_factory = session_factory
        self._reference = reference or load_reference_snapshot()
        self._config = config or PayrollConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._max_workers = max_workers or self._config.bulk_max_workers
        self._withholding_policy = withholding_policy
        self._cancel_event = threading.Event()
        self._key_locks: dict[tuple[UUID, UUID], _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask the running batch to stop starting new employees."""
        self._cancel_event.set()
        logger.info("bulk_finalize_cancel_requested")

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def bulk_finalize(
        self,
        period_id: UUID,
        actor_id: UUID,
        jurisdiction: str | None = None,
        *,
        batch_id: UUID | None = None,
        recompute_processed: bool = False,
        on_item_complete: Callable[[BulkItemResult], None] | None = None,
    ) -> BulkRunResult:
        """Finalize every eligible employee of the period.

        Args:
            jurisdiction: Overrides every employee's own jurisdiction.
            batch_id: Pass the id of an earlier (cancelled or failed) batch to
                resume it; a new id is generated otherwise.
            recompute_processed: Finalize employees that already have a
                current run instead of skipping them.
            on_item_complete: Called from the worker thread after each
                employee, before the worker picks its next employee.

        Raises:
            PeriodNotFoundError: Unknown period.
            PeriodNotDraftError: Period is LOCKED or POSTED.
        """
        batch_id = batch_id or uuid4()
        self._cancel_event.clear()
        start_time = time.monotonic()
        started_at = self._clock.now()

        with LogContext.bind(batch_id=batch_id, period_id=period_id, actor_id=actor_id):
            employee_ids, processed, checkpointed = self._plan(period_id, batch_id)
            logger.info(
                "bulk_finalize_started",
                extra={
                    "batch_id": str(batch_id),
                    "period_id": str(period_id),
                    "eligible": len(employee_ids),
                    "already_processed": len(processed),
                    "checkpointed": len(checkpointed),
                    "max_workers": self._max_workers,
                },
            )

            results: dict[UUID, BulkItemResult] = {}
            to_run: list[UUID] = []
            for employee_id in employee_ids:
                if employee_id in checkpointed:
                    results[employee_id] = BulkItemResult(
                        employee_id=employee_id,
                        status=BulkItemStatus.SKIPPED,
                        skip_reason=SKIP_CHECKPOINTED,
                    )
                elif employee_id in processed and not recompute_processed:
                    skipped = BulkItemResult(
                        employee_id=employee_id,
                        status=BulkItemStatus.SKIPPED,
                        skip_reason=SKIP_ALREADY_PROCESSED,
                    )
                    self._checkpoint(batch_id, period_id, skipped, actor_id)
                    results[employee_id] = skipped
                else:
                    to_run.append(employee_id)

            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="payroll-bulk"
            ) as executor:
                futures = {
                    employee_id: executor.submit(
                        self._finalize_one,
                        batch_id,
                        period_id,
                        employee_id,
                        actor_id,
                        jurisdiction,
                        on_item_complete,
                    )
                    for employee_id in to_run
                }
                for employee_id, future in futures.items():
                    results[employee_id] = future.result()

            ordered = tuple(results[employee_id] for employee_id in employee_ids)
            counts = {
                status: sum(1 for r in ordered if r.status == status)
                for status in BulkItemStatus
            }
            status = summarize_status(
                counts[BulkItemStatus.SUCCEEDED],
                counts[BulkItemStatus.FAILED],
                counts[BulkItemStatus.SKIPPED],
                counts[BulkItemStatus.CANCELLED],
            )
            result = BulkRunResult(
                batch_id=batch_id,
                period_id=period_id,
                status=status,
                total_items=len(ordered),
                succeeded=counts[BulkItemStatus.SUCCEEDED],
                failed=counts[BulkItemStatus.FAILED],
                skipped=counts[BulkItemStatus.SKIPPED],
                cancelled=counts[BulkItemStatus.CANCELLED],
                item_results=ordered,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            logger.info(
                "bulk_finalize_completed",
                extra={
                    "batch_id": str(batch_id),
                    "status": status.value,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "cancelled": result.cancelled,
                    "duration_ms": result.duration_ms,
                },
            )
            return result

    def batch_items(self, batch_id: UUID) -> list[BulkItemResult]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(BulkItemModel)
                .where(BulkItemModel.batch_id == batch_id)
                .order_by(BulkItemModel.created_at)
            ).scalars()
            items = [row.to_dto() for row in rows]
            session.commit()
            return items
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _service(self, session: Session) -> PayrollService:
        return PayrollService(
            session,
            reference=self._reference,
            config=self._config,
            clock=self._clock,
            withholding_policy=self._withholding_policy,
        )

    def _plan(
        self, period_id: UUID, batch_id: UUID
    ) -> tuple[list[UUID], set[UUID], set[UUID]]:
        """Eligible employees, employees with a current run, checkpointed employees."""
        session = self._session_factory()
        try:
            service = self._service(session)
            period = service.get_period(period_id)
            if not period.is_draft:
                logger.warning(
                    "bulk_finalize_rejected_period_not_draft",
                    extra={"period_id": str(period_id), "status": period.status.value},
                )
                raise PeriodNotDraftError(str(period_id), period.status.value)

            employee_ids = [e.id for e in service.eligible_employees(period_id)]
            processed = service.processed_employee_ids(period_id)
            checkpointed = set(
                session.execute(
                    select(BulkItemModel.employee_id).where(
                        BulkItemModel.batch_id == batch_id,
                        BulkItemModel.status.in_(CHECKPOINTED_STATUSES),
                    )
                ).scalars()
            )
            session.commit()
            return employee_ids, processed, checkpointed
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _serialized(self, period_id: UUID, employee_id: UUID) -> Iterator[None]:
        """Hold the (period, employee) lock; the entry is dropped once unused."""
        key = (period_id, employee_id)
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, _KeyLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._key_locks[key]

    def _finalize_one(
        self,
        batch_id: UUID,
        period_id: UUID,
        employee_id: UUID,
        actor_id: UUID,
        jurisdiction: str | None,
        on_item_complete: Callable[[BulkItemResult], None] | None,
    ) -> BulkItemResult:
        if self._cancel_event.is_set():
            return BulkItemResult(employee_id=employee_id, status=BulkItemStatus.CANCELLED)

        item_start = time.monotonic()
        with LogContext.bind(batch_id=batch_id, period_id=period_id, employee_id=employee_id):
            with self._serialized(period_id, employee_id):
                session = self._session_factory()
                try:
                    run = self._service(session).finalize_run(
                        period_id, employee_id, actor_id, jurisdiction
                    )
                    result = BulkItemResult(
                        employee_id=employee_id,
                        status=BulkItemStatus.SUCCEEDED,
                        run_id=run.id,
                        version=run.version,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
                except PayrollEngineError as exc:
                    logger.warning(
                        "bulk_item_failed",
                        extra={"error_code": exc.code, "error_message": str(exc)},
                    )
                    result = BulkItemResult(
                        employee_id=employee_id,
                        status=BulkItemStatus.FAILED,
                        error_code=exc.code,
                        error_message=str(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
                except Exception as exc:
                    logger.exception("bulk_item_unhandled_exception")
                    result = BulkItemResult(
                        employee_id=employee_id,
                        status=BulkItemStatus.FAILED,
                        error_code="UNHANDLED_EXCEPTION",
                        error_message=str(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    )
                finally:
                    session.close()

            self._checkpoint(batch_id, period_id, result, actor_id)

        if on_item_complete is not None:
            on_item_complete(result)
        return result

    def _checkpoint(
        self,
        batch_id: UUID,
        period_id: UUID,
        result: BulkItemResult,
        actor_id: UUID,
    ) -> None:
        """Upsert the item row.

        A failed write is logged and not raised: the run itself is already
        committed, and a resume re-derives it as already processed.
        """
        session = self._session_factory()
        try:
            row = session.execute(
                select(BulkItemModel).where(
                    BulkItemModel.batch_id == batch_id,
                    BulkItemModel.employee_id == result.employee_id,
                )
            ).scalar_one_or_none()
            if row is None:
                row = BulkItemModel(
                    batch_id=batch_id,
                    period_id=period_id,
                    employee_id=result.employee_id,
                )
                session.add(row)
            row.record(result, actor_id)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "bulk_checkpoint_write_failed",
                extra={
                    "batch_id": str(batch_id),
                    "employee_id": str(result.employee_id),
                    "status": result.status.value,
                },
            )
        finally:
            session.close()
