"""
LifecycleEngine end to end against a real database.

Covers the documented scenarios, idempotency, terminal states,
cancellation, atomicity under persistence failure and the audit chain
written for every committed transition.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from repair_engines.replay import replay_state, verify_history
from repair_kernel.domain.dtos import EffectStatus
from repair_kernel.domain.workflow import JobState
from repair_kernel.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    PersistenceError,
    TerminalStateError,
    TransitionNotFoundError,
    UnknownStateError,
)
from repair_kernel.services.job_repository import SqlJobRepository
from repair_services.lifecycle_engine import LifecycleEngine


def load(repository_factory, job_id):
    repo = repository_factory()
    try:
        return repo.load_job(job_id)
    finally:
        repo.close()


def history(repository_factory, job_id):
    repo = repository_factory()
    try:
        return repo.list_transitions(job_id)
    finally:
        repo.close()


class TestDiagnosisScenario:
    """Quote cannot be requested before diagnosis is written down."""

    def test_direct_jump_from_created_reports_missing_diagnosis(self, lifecycle, create_job):
        job = create_job()
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "AWAITING_APPROVAL", actor="tech-7")
        assert "diagnosis notes required" in exc_info.value.messages
        assert "illegal transition from CREATED to AWAITING_APPROVAL" in exc_info.value.messages

    def test_quote_after_diagnosis_recorded(
        self, lifecycle, job_service, create_job, repository_factory
    ):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "AWAITING_APPROVAL", actor="tech-7")
        assert "diagnosis notes required" in exc_info.value.messages
        assert load(repository_factory, job.id).state is JobState.IN_DIAGNOSIS

        job_service.record_documentation(
            job.id,
            {"diagnosis_notes": "Water damage on logic board", "estimated_hours": "3"},
            actor="tech-7",
        )
        outcome = lifecycle.transition(job.id, "AWAITING_APPROVAL", actor="tech-7")
        assert outcome.job.state is JobState.AWAITING_APPROVAL
        assert outcome.available_transitions == (
            JobState.APPROVED, JobState.IN_DIAGNOSIS, JobState.CANCELLED
        )

    def test_documentation_can_travel_with_transition(self, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        outcome = lifecycle.transition(
            job.id, "AWAITING_APPROVAL", actor="tech-7",
            payload={"diagnosis_notes": "Port corroded", "estimated_hours": "1.5"},
        )
        assert outcome.job.diagnosis_notes == "Port corroded"
        assert outcome.job.estimated_hours == Decimal("1.5")


class TestQualityScenario:
    def test_completion_gated_by_quality_score(
        self, lifecycle, create_job, advance_to, deterministic_clock, repository_factory
    ):
        job = create_job()
        advance_to(job, JobState.QUALITY_CHECK)

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "COMPLETED", actor="qa-1", payload={"quality_score": 80})
        assert "quality score below threshold 95" in exc_info.value.messages
        rejected = load(repository_factory, job.id)
        assert rejected.state is JobState.QUALITY_CHECK
        assert rejected.quality_score is None

        deterministic_clock.advance(300)
        outcome = lifecycle.transition(
            job.id, "COMPLETED", actor="qa-1", payload={"quality_score": 97}
        )
        assert outcome.job.state is JobState.COMPLETED
        assert outcome.job.quality_score == 97
        assert outcome.job.completed_at == deterministic_clock.now()


class TestTransitionRecords:
    def test_one_record_per_transition(self, lifecycle, create_job, advance_to, repository_factory):
        job = create_job()
        advance_to(job, JobState.TESTING)
        records = history(repository_factory, job.id)
        final = load(repository_factory, job.id)
        assert [r.sequence for r in records] == [1, 2, 3, 4, 5]
        assert final.transition_count == 5
        assert final.version == 6
        assert replay_state(records) is final.state

    def test_chain_verifies_after_round_trip(self, lifecycle, create_job, advance_to, repository_factory, catalog):
        job = create_job()
        advance_to(job, JobState.DELIVERED)
        final = load(repository_factory, job.id)
        result = verify_history(
            job_id=job.id,
            records=history(repository_factory, job.id),
            catalog=catalog,
            expected_state=final.state,
        )
        assert result.final_state is JobState.DELIVERED
        assert result.record_count == 9

    def test_record_captures_request(self, lifecycle, create_job, deterministic_clock):
        job = create_job()
        outcome = lifecycle.transition(
            job.id, "IN_DIAGNOSIS", actor="tech-7", reason="bench 3 free",
            metadata={"bench": 3, "estimate": Decimal("1.50")},
        )
        record = outcome.record
        assert record.from_state is JobState.CREATED
        assert record.to_state is JobState.IN_DIAGNOSIS
        assert record.actor == "tech-7"
        assert record.reason == "bench 3 free"
        assert record.occurred_at == deterministic_clock.now()
        assert dict(record.metadata) == {"bench": 3, "estimate": "1.5"}
        assert record.prev_hash is None

    def test_entry_timestamps_stamped(self, create_job, advance_to, repository_factory):
        job = create_job()
        advance_to(job, JobState.DELIVERED)
        final = load(repository_factory, job.id)
        assert final.customer_approved_at is not None
        assert final.started_at is not None
        assert final.completed_at <= final.customer_signed_off_at <= final.delivered_at
        assert final.satisfaction_rating == 5

    def test_rework_keeps_first_entry_timestamp(self, lifecycle, create_job, advance_to, deterministic_clock):
        job = create_job()
        first = advance_to(job, JobState.IN_PROGRESS).job.started_at
        advance_to(job, JobState.TESTING)
        deterministic_clock.advance(600)
        outcome = lifecycle.transition(
            job.id, "IN_PROGRESS", actor="tech-7", payload={"test_results": "Touch still fails"}
        )
        assert outcome.job.started_at == first
        assert outcome.job.state is JobState.IN_PROGRESS


class TestRejections:
    def test_unknown_state(self, lifecycle, create_job):
        job = create_job()
        with pytest.raises(UnknownStateError):
            lifecycle.transition(job.id, "ON_HOLD", actor="tech-7")

    def test_unknown_job(self, lifecycle):
        with pytest.raises(JobNotFoundError):
            lifecycle.transition(uuid4(), "IN_DIAGNOSIS", actor="tech-7")

    def test_target_is_case_insensitive(self, lifecycle, create_job):
        job = create_job()
        assert lifecycle.transition(job.id, "in_diagnosis", actor="t").job.state is JobState.IN_DIAGNOSIS

    def test_delivered_is_terminal(self, lifecycle, create_job, advance_to, repository_factory):
        job = create_job()
        advance_to(job, JobState.DELIVERED)
        with pytest.raises(TerminalStateError) as exc_info:
            lifecycle.transition(job.id, "CANCELLED", actor="mgr", reason="too late")
        assert exc_info.value.code == "TERMINAL_STATE"
        assert len(history(repository_factory, job.id)) == 9

    def test_rejected_transition_writes_nothing(self, lifecycle, create_job, repository_factory, notifier):
        job = create_job()
        sent_before = len(notifier.sent)
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(job.id, "TESTING", actor="tech-7")
        after = load(repository_factory, job.id)
        assert after.version == job.version
        assert history(repository_factory, job.id) == []
        assert len(notifier.sent) == sent_before

    def test_payload_field_outside_state_rejected(self, lifecycle, create_job):
        job = create_job()
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="t", payload={"final_price": "10"})
        assert "field 'final_price' cannot be recorded in state CREATED" in exc_info.value.messages

    def test_non_finite_estimate_rejected(self, lifecycle, create_job, repository_factory):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(
                job.id,
                "AWAITING_APPROVAL",
                actor="tech-7",
                payload={"diagnosis_notes": "Dead board", "estimated_hours": "NaN", "photos": 5},
            )
        assert {v.field_name for v in exc_info.value.violations} >= {"estimated_hours", "photos"}
        assert load(repository_factory, job.id).state is JobState.IN_DIAGNOSIS


class TestCancellation:
    def test_cancel_from_open_state(self, lifecycle, create_job, advance_to, notifier, deterministic_clock):
        job = create_job()
        advance_to(job, JobState.IN_PROGRESS)
        outcome = lifecycle.transition(
            job.id, "CANCELLED", actor="manager-2", reason="Customer collected unrepaired"
        )
        cancelled = outcome.job
        assert cancelled.state is JobState.CANCELLED
        assert cancelled.cancellation_reason == "Customer collected unrepaired"
        assert cancelled.cancelled_by == "manager-2"
        assert cancelled.cancelled_at == deterministic_clock.now()
        assert outcome.available_transitions == ()
        assert notifier.templates()[-1] == "cancellation_processed"

    @pytest.mark.parametrize("state", [JobState.APPROVED, JobState.TESTING, JobState.COMPLETED])
    def test_cancel_not_offered_after_approval(self, lifecycle, create_job, advance_to, repository_factory, state):
        job = create_job()
        advance_to(job, state)
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "CANCELLED", actor="manager-2", reason="Customer changed mind")
        assert f"illegal transition from {state.value} to CANCELLED" in exc_info.value.messages
        assert load(repository_factory, job.id).state is state

    def test_approved_job_cancelled_while_waiting_for_parts(self, lifecycle, create_job, advance_to):
        job = create_job()
        advance_to(job, JobState.IN_PROGRESS)
        lifecycle.transition(job.id, "PARTS_ORDERED", actor="tech-7", payload={"photos": ["teardown.jpg"]})
        outcome = lifecycle.transition(job.id, "CANCELLED", actor="manager-2", reason="Part discontinued")
        assert outcome.job.state is JobState.CANCELLED

    def test_cancel_requires_reason(self, lifecycle, create_job):
        job = create_job()
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(job.id, "CANCELLED", actor="manager-2")
        assert exc_info.value.messages == ("cancellation reason required",)

    def test_cancelled_is_terminal(self, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "CANCELLED", actor="m", reason="duplicate booking")
        with pytest.raises(TerminalStateError):
            lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="m")


class TestIdempotency:
    def test_repeated_key_replays_outcome(self, lifecycle, create_job, notifier, repository_factory):
        job = create_job()
        first = lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-1")
        sent = len(notifier.sent)
        second = lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-1")

        assert not first.replayed
        assert second.replayed
        assert second.record.id == first.record.id
        assert second.job.version == first.job.version
        assert len(history(repository_factory, job.id)) == 1
        assert len(notifier.sent) == sent

    def test_distinct_keys_are_distinct_requests(self, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-1")
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-2")

    def test_keys_are_scoped_per_job(self, lifecycle, create_job):
        a, b = create_job(), create_job()
        lifecycle.transition(a.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-1")
        outcome = lifecycle.transition(b.id, "IN_DIAGNOSIS", actor="t", idempotency_key="req-1")
        assert not outcome.replayed


class _BrokenAuditRepository(SqlJobRepository):
    def append_audit(self, record):
        raise PersistenceError("append_audit", "disk full")


class TestAtomicity:
    def test_failed_audit_write_leaves_job_untouched(
        self, catalog, session_factory, executor, deterministic_clock, create_job,
        repository_factory, notifier,
    ):
        job = create_job()
        sent_before = len(notifier.sent)
        engine = LifecycleEngine(
            catalog, _BrokenAuditRepository.factory(session_factory), executor, deterministic_clock
        )
        with pytest.raises(PersistenceError):
            engine.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")

        after = load(repository_factory, job.id)
        assert after.state is JobState.CREATED
        assert after.version == job.version
        assert after.transition_count == 0
        assert history(repository_factory, job.id) == []
        assert len(notifier.sent) == sent_before


class TestRedispatch:
    def test_only_unattempted_effects_run(
        self, catalog, repository_factory, lifecycle, deterministic_clock, create_job, notifier
    ):
        job = create_job()
        bare = LifecycleEngine(catalog, repository_factory, clock=deterministic_clock)
        outcome = bare.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        assert [e.status for e in outcome.effects] == [EffectStatus.SKIPPED]

        rerun = lifecycle.redispatch_effects(job.id, outcome.record.sequence)
        assert [e.status for e in rerun] == [EffectStatus.SUCCEEDED]
        assert notifier.templates()[-1] == "customer_update"

        again = lifecycle.redispatch_effects(job.id, outcome.record.sequence)
        assert [e.status for e in again] == [EffectStatus.SKIPPED]
        assert again[0].detail["reason"] == "already attempted"

    def test_late_redispatch_reports_the_state_entered(
        self, catalog, repository_factory, lifecycle, deterministic_clock, create_job, notifier
    ):
        job = create_job()
        bare = LifecycleEngine(catalog, repository_factory, clock=deterministic_clock)
        outcome = bare.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        lifecycle.transition(
            job.id,
            "AWAITING_APPROVAL",
            actor="tech-7",
            payload={"diagnosis_notes": "Cracked connector", "estimated_hours": "1.5"},
        )

        lifecycle.redispatch_effects(job.id, outcome.record.sequence)
        message = notifier.sent[-1]
        assert message.template == "customer_update"
        assert message.data["state"] == "IN_DIAGNOSIS"
        assert message.data["state_name"] == catalog.get_state_definition(JobState.IN_DIAGNOSIS).name
        assert message.data["previous_state"] == "CREATED"

    def test_unknown_sequence(self, lifecycle, create_job):
        job = create_job()
        with pytest.raises(TransitionNotFoundError):
            lifecycle.redispatch_effects(job.id, 7)


def test_available_transitions(lifecycle, create_job, advance_to):
    job = create_job()
    assert lifecycle.available_transitions(job.id) == (JobState.IN_DIAGNOSIS, JobState.CANCELLED)
    advance_to(job, JobState.DELIVERED)
    assert lifecycle.available_transitions(job.id) == ()
