"""Tests for the engine tracer (payroll_engines/tracer.py)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from payroll_engines.attendance_basis import AttendanceOverride
from payroll_engines.compensation import resolve_active_compensation
from payroll_engines.tracer import compute_input_fingerprint, traced_engine
from tests.helpers import make_compensation


class TestInputFingerprint:
    def test_same_inputs_same_fingerprint(self):
        kwargs = {"override": AttendanceOverride(lop_days=Decimal("2")), "month": 4}

        first = compute_input_fingerprint(("override", "month"), kwargs)
        second = compute_input_fingerprint(("override", "month"), dict(kwargs))

        assert first == second
        assert len(first) == 16

    def test_only_named_fields_count(self):
        a = compute_input_fingerprint(("month",), {"month": 4, "year": 2024})
        b = compute_input_fingerprint(("month",), {"month": 4, "year": 2025})

        assert a == b

    def test_value_changes_fingerprint(self):
        a = compute_input_fingerprint(("lop",), {"lop": Decimal("1")})
        b = compute_input_fingerprint(("lop",), {"lop": Decimal("2")})

        assert a != b

    def test_rule_set_contributes_its_fingerprint(self, reference_snapshot):
        rules = reference_snapshot.rules_on(date(2024, 4, 15))

        assert compute_input_fingerprint(("rules",), {"rules": rules}) == (
            compute_input_fingerprint(("rules",), {"rules": rules.fingerprint})
        )


class TestTracedEngine:
    def test_trace_record_emitted(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("x",))
        def double(*, x):
            return x * 2

        assert double(x=21) == 42

        (record,) = [r for r in captured_logs() if r["message"] == "PAYROLL_ENGINE_TRACE"]
        assert record["engine_name"] == "demo"
        assert record["engine_version"] == "2.1"
        assert len(record["input_fingerprint"]) == 16
        assert record["duration_ms"] >= 0

    def test_real_engine_traced(self, captured_logs):
        record = make_compensation(uuid4())
        resolve_active_compensation(
            employee_id=record.employee_id,
            reference_date=date(2024, 4, 15),
            records=[record],
        )

        names = [
            r["engine_name"] for r in captured_logs() if r["message"] == "PAYROLL_ENGINE_TRACE"
        ]
        assert names == ["compensation"]
