"""Tests for the engine invocation tracer."""

import pytest

from settleup_engines.tracer import compute_input_fingerprint, traced_engine


class TestEngineTracer:
    def test_decorator_returns_result(self):
        @traced_engine("test_engine", "1.0", fingerprint_fields=("x", "y"))
        def add(x=0, y=0):
            return x + y

        assert add(x=3, y=4) == 7

    def test_trace_record_fields(self, captured_logs):
        @traced_engine("test_engine", "2.1", fingerprint_fields=("x",))
        def double(x=0):
            return x * 2

        double(x=5)

        traces = [r for r in captured_logs() if r["message"] == "SETTLEUP_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "test_engine"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("x",), {"x": 5})
        assert trace["duration_ms"] >= 0
        assert trace["function"].endswith("double")

    def test_no_fingerprint_fields(self, captured_logs):
        @traced_engine("bare", "1.0")
        def noop():
            return None

        noop()
        trace = [r for r in captured_logs() if r["message"] == "SETTLEUP_ENGINE_TRACE"][0]
        assert trace["input_fingerprint"] == ""

    def test_positional_and_keyword_calls_fingerprint_alike(self, captured_logs):
        @traced_engine("binding", "1.0", fingerprint_fields=("x", "y"))
        def combine(x, y=10):
            return x + y

        combine(1)
        combine(x=1, y=10)

        traces = [r for r in captured_logs() if r["message"] == "SETTLEUP_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert traces[0]["input_fingerprint"] == compute_input_fingerprint(
            ("x", "y"), {"x": 1, "y": 10}
        )

    def test_exception_propagates_without_trace(self, captured_logs):
        @traced_engine("failing", "1.0")
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            boom()
        assert not [r for r in captured_logs() if r["message"] == "SETTLEUP_ENGINE_TRACE"]


class TestInputFingerprint:
    def test_deterministic(self):
        fp1 = compute_input_fingerprint(("a", "b"), {"a": 1, "b": "hello"})
        fp2 = compute_input_fingerprint(("a", "b"), {"a": 1, "b": "hello"})
        assert fp1 == fp2
        assert len(fp1) == 16

    def test_changes_with_input(self):
        assert compute_input_fingerprint(("a",), {"a": 1}) != compute_input_fingerprint(
            ("a",), {"a": 2}
        )

    def test_mapping_key_order_irrelevant(self):
        fp1 = compute_input_fingerprint(("m",), {"m": {"x": 1, "y": 2}})
        fp2 = compute_input_fingerprint(("m",), {"m": {"y": 2, "x": 1}})
        assert fp1 == fp2

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("a",), {}) == compute_input_fingerprint(
            ("a",), {"a": None}
        )
