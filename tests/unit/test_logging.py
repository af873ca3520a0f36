"""Structured JSON logging: formatter output, LogContext binding, setup."""

import json
import logging
import threading
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payroll_kernel.exceptions import PeriodNotDraftError
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def log_stream():
    """Configure payroll logging into a buffer; returns a reader of parsed lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler, level=logging.DEBUG)

    def read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return read


# ===========================================================================
# Formatter
# ===========================================================================


class TestStructuredFormatter:
    def test_envelope(self, log_stream):
        get_logger("modules.payroll").info("payroll_run_finalized")

        (record,) = log_stream()
        assert record["level"] == "INFO"
        assert record["logger"] == "payroll_kernel.modules.payroll"
        assert record["message"] == "payroll_run_finalized"
        assert record["ts"].endswith("+00:00")

    def test_extra_and_typed_values(self, log_stream):
        run_id = uuid4()
        get_logger("test").info(
            "run_totals",
            extra={"run_id": run_id, "net_pay": Decimal("43833.34"), "version": 2},
        )

        (record,) = log_stream()
        assert record["run_id"] == str(run_id)
        assert record["net_pay"] == "43833.34"
        assert record["version"] == 2

    def test_bound_context_merged(self, log_stream):
        with LogContext.bind(employee_id="emp-7", batch_id="b-1"):
            get_logger("batch").info("bulk_item_done")
        get_logger("batch").info("bulk_done")

        inside, outside = log_stream()
        assert (inside["employee_id"], inside["batch_id"]) == ("emp-7", "b-1")
        assert "employee_id" not in outside

    def test_context_wins_over_extra(self, log_stream):
        LogContext.set(period_id="from-context")
        get_logger("test").info("clash", extra={"period_id": "from-extra"})

        (record,) = log_stream()
        assert record["period_id"] == "from-context"

    def test_payroll_exception_attributes(self, log_stream):
        try:
            raise PeriodNotDraftError("period-2024-04", "locked")
        except PeriodNotDraftError:
            get_logger("test").exception("finalize_failed")

        (record,) = log_stream()
        assert record["exc_type"] == "PeriodNotDraftError"
        assert record["exc_code"] == "PERIOD_NOT_DRAFT"
        assert record["exc_period_id"] == "period-2024-04"
        assert record["exc_status"] == "locked"
        assert "Traceback" in record["traceback"]

    def test_plain_exception_has_no_code(self, log_stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = log_stream()
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record


# ===========================================================================
# LogContext
# ===========================================================================


class TestLogContext:
    def test_set_accumulates_and_skips_none(self):
        LogContext.set(correlation_id="c-1")
        LogContext.set(actor_id=None, run_id="r-1")

        assert LogContext.get_all() == {"correlation_id": "c-1", "run_id": "r-1"}

    def test_bind_restores_previous_values(self):
        LogContext.set(employee_id="outer")
        with LogContext.bind(employee_id="inner", run_id="r-2"):
            assert LogContext.get_all() == {"employee_id": "inner", "run_id": "r-2"}
        assert LogContext.get_all() == {"employee_id": "outer"}

    def test_values_are_stringified(self):
        period_id = uuid4()
        with LogContext.bind(period_id=period_id):
            assert LogContext.get_all()["period_id"] == str(period_id)

    @pytest.mark.parametrize("method", ["set", "bind"])
    def test_unknown_field_rejected(self, method):
        with pytest.raises(ValueError, match="Unknown log context field: ledger_id"):
            getattr(LogContext, method)(ledger_id="x")

    def test_worker_binding_stays_in_worker(self):
        LogContext.set(batch_id="b-main")
        seen = {}

        def worker():
            with LogContext.bind(employee_id="emp-worker"):
                seen["worker"] = LogContext.get_all()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen["worker"]["employee_id"] == "emp-worker"
        assert LogContext.get_all() == {"batch_id": "b-main"}


# ===========================================================================
# Setup
# ===========================================================================


class TestConfigureLogging:
    def test_first_call_wins(self):
        configure_logging(handler=logging.NullHandler())
        configure_logging(handler=logging.NullHandler())

        assert len(logging.getLogger("payroll_kernel").handlers) == 1

    def test_level_filters_records(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream), level=logging.WARNING)
        get_logger("test").info("dropped")
        get_logger("test").warning("kept")

        lines = stream.getvalue().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["kept"]

    def test_reset_detaches_handlers(self):
        configure_logging(handler=logging.NullHandler())
        reset_logging()

        root = logging.getLogger("payroll_kernel")
        assert root.handlers == []
        assert root.propagate is True
