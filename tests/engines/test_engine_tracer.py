"""
REPAIR_ENGINE_TRACE records emitted around pure engine calls.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from repair_engines.tracer import compute_input_fingerprint, traced_engine
from repair_engines.transition_validator import validate_transition
from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import JobState

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def engine_traces(captured_logs):
    return [r for r in captured_logs() if r["message"] == "REPAIR_ENGINE_TRACE"]


def fresh_job():
    return JobSheet(
        id=uuid4(),
        job_number="RX-2024-000001",
        state=JobState.CREATED,
        customer_ref="c",
        device_ref="d",
        problem_description="p",
        created_at=NOW,
        updated_at=NOW,
    )


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        a = compute_input_fingerprint(("payload",), {"payload": {"a": 1, "b": 2}})
        b = compute_input_fingerprint(("payload",), {"payload": {"b": 2, "a": 1}})
        assert a == b
        assert len(a) == 16

    def test_missing_field_differs_from_present(self):
        assert compute_input_fingerprint(("target",), {}) != compute_input_fingerprint(
            ("target",), {"target": JobState.IN_DIAGNOSIS}
        )


def test_validator_trace_carries_catalog_version_and_summary(catalog, captured_logs):
    validate_transition(job=fresh_job(), target=JobState.AWAITING_APPROVAL, catalog=catalog)

    [trace] = engine_traces(captured_logs)
    assert trace["engine_name"] == "transition_validator"
    assert trace["catalog_version"] == catalog.version
    assert trace["engine_outcome"] == "returned"
    assert trace["allowed"] is False
    assert trace["violation_count"] >= 2
    assert trace["level"] == "DEBUG"


def test_same_inputs_same_fingerprint(catalog, captured_logs):
    for _ in range(2):
        validate_transition(job=fresh_job(), target=JobState.IN_DIAGNOSIS, catalog=catalog)
    first, second = engine_traces(captured_logs)
    assert first["input_fingerprint"] == second["input_fingerprint"]
    assert first["allowed"] is second["allowed"] is True


def test_raising_engine_is_still_traced(captured_logs):
    @traced_engine("exploding", "0.1")
    def explode(*, value):
        raise ValueError(value)

    with pytest.raises(ValueError):
        explode(value="boom")

    [trace] = engine_traces(captured_logs)
    assert trace["engine_outcome"] == "raised"
    assert trace["error_type"] == "ValueError"
    assert "duration_ms" in trace
