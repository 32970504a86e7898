"""
repair_services.lifecycle_engine -- The only way a job changes state.

Responsibility:
    Coordinates one transition request end to end: resolve the target,
    load the job, honour idempotency keys, reject terminal jobs, validate
    through the pure validator, commit the job update and its hash-chained
    transition record atomically, and only then run automation.

Architecture position:
    Services layer.  Thin coordinator -- rule evaluation is delegated to
    ``repair_engines.transition_validator``, record hashing to
    ``repair_engines.replay``, side effects to ``AutomationExecutor`` and
    persistence to a ``JobRepository`` opened per call.

Invariants enforced:
    - No partial transitions: job update + TransitionRecord commit together
      or not at all.
    - Every committed state change has exactly one TransitionRecord; the
      record's sequence equals the job's new ``transition_count``.
    - Terminal jobs accept no transitions.
    - Effects run after commit and never undo it.
    - A repeated idempotency key returns the original outcome without a
      second record or second round of effects.

Failure modes:
    - UnknownStateError / JobNotFoundError for bad ids.
    - TerminalStateError for DELIVERED or CANCELLED jobs.
    - InvalidTransitionError carrying every violation.
    - ConcurrentModificationError when another writer won; retryable.
    - PersistenceError when storage failed; job unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any
from uuid import UUID, uuid4

from repair_engines.replay import build_transition_record
from repair_engines.transition_validator import validate_transition
from repair_kernel.domain.clock import Clock, SystemClock
from repair_kernel.domain.dtos import EffectResult, TransitionOutcome, TransitionRecord
from repair_kernel.domain.job_sheet import JobSheet, apply_documentation, coerce_documentation, enter_state
from repair_kernel.domain.workflow import JobState, StateCatalog
from repair_kernel.exceptions import (
    InvalidTransitionError,
    RepairWorkflowError,
    TerminalStateError,
    TransitionNotFoundError,
)
from repair_kernel.logging_config import LogContext, get_logger
from repair_kernel.services.job_repository import JobRepository
from repair_kernel.utils.hashing import json_safe
from repair_services.automation_executor import AutomationExecutor

logger = get_logger("services.lifecycle_engine")

TRACE_TYPE_JOB_TRANSITION = "JOB_TRANSITION"
OUTCOME_COMMITTED = "committed"
OUTCOME_REPLAYED = "replayed"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"


def _emit_transition_trace(
    job_id: UUID,
    from_state: str | None,
    to_state: str,
    outcome: str,
    duration_ms: float,
    reason: str = "",
    sequence: int | None = None,
    violations: tuple[str, ...] = (),
) -> None:
    """Structured record of every transition attempt, successful or not."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_JOB_TRANSITION,
        "job_id": str(job_id),
        "from_state": from_state,
        "to_state": to_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if sequence is not None:
        record["sequence"] = sequence
    if violations:
        record["violations"] = list(violations)
    level = logger.info if outcome in (OUTCOME_COMMITTED, OUTCOME_REPLAYED) else logger.warning
    level("job_transition", extra=record)


class LifecycleEngine:
    """
    Sole entry point for job state changes.

    Contract:
        ``transition`` either returns a TransitionOutcome for a committed
        (or replayed) transition or raises a RepairWorkflowError subclass
        with the job left exactly as it was.

    Guarantees:
        - Safe to call concurrently for the same job from many threads or
          processes; exactly one of several racing requests from the same
          source state commits.
        - Holds no locks while automation runs.
    """

    def __init__(
        self,
        catalog: StateCatalog,
        repository_factory: Callable[[], JobRepository],
        executor: AutomationExecutor | None = None,
        clock: Clock | None = None,
    ):
        self._catalog = catalog
        self._repository_factory = repository_factory
        self._clock = clock or SystemClock()
        self._executor = executor or AutomationExecutor(catalog, clock=self._clock)

    @property
    def catalog(self) -> StateCatalog:
        return self._catalog

    def transition(
        self,
        job_id: UUID,
        to_state: JobState | str,
        actor: str,
        reason: str = "",
        metadata: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionOutcome:
        """Move a job to ``to_state``.

        Args:
            job_id: Job to transition.
            to_state: Target state id.
            actor: Who requested the change (recorded verbatim).
            reason: Free-text reason; mandatory when cancelling.
            metadata: Extra JSON-serializable context stored on the record.
            payload: Documentation to record together with the transition;
                every field must be editable in the current state.
            idempotency_key: Client request id; a repeat returns the first
                outcome with ``replayed=True``.

        Raises:
            UnknownStateError, JobNotFoundError, TerminalStateError,
            InvalidTransitionError, ConcurrentModificationError,
            PersistenceError.
        """
        target = self._catalog.parse_state(to_state)
        t0 = time.monotonic()
        repository = self._repository_factory()
        try:
            with LogContext.bind(job_id=str(job_id), actor=actor):
                return self._transition(
                    repository,
                    job_id,
                    target,
                    actor,
                    reason,
                    metadata,
                    payload,
                    idempotency_key,
                    t0,
                )
        finally:
            repository.close()

    def _transition(
        self,
        repository: JobRepository,
        job_id: UUID,
        target: JobState,
        actor: str,
        reason: str,
        metadata: Mapping[str, Any] | None,
        payload: Mapping[str, Any] | None,
        idempotency_key: str | None,
        t0: float,
    ) -> TransitionOutcome:
        job = repository.load_job(job_id)
        elapsed = lambda: (time.monotonic() - t0) * 1000  # noqa: E731

        if idempotency_key:
            prior = repository.find_transition(job_id, idempotency_key)
            if prior is not None:
                _emit_transition_trace(
                    job_id, prior.from_state.value, prior.to_state.value,
                    OUTCOME_REPLAYED, elapsed(), sequence=prior.sequence,
                )
                return self._outcome(job, prior, (), replayed=True)

        if job.is_terminal:
            _emit_transition_trace(
                job_id, job.state.value, target.value, OUTCOME_REJECTED, elapsed(),
                reason="terminal state",
            )
            raise TerminalStateError(str(job_id), job.state.value)

        result = validate_transition(
            job=job,
            target=target,
            catalog=self._catalog,
            payload=payload,
            reason=reason,
        )
        if not result.ok:
            _emit_transition_trace(
                job_id, job.state.value, target.value, OUTCOME_REJECTED, elapsed(),
                violations=result.messages,
            )
            raise InvalidTransitionError(
                str(job_id), job.state.value, target.value, result.violations
            )

        now = self._clock.now()
        documented = apply_documentation(job, coerce_documentation(dict(payload or {})))
        moved = enter_state(
            documented,
            target,
            now=now,
            actor=actor,
            reason=reason,
            entry_timestamp=self._catalog.get_state_definition(target).entry_timestamp,
        )
        previous = repository.last_transition(job_id)
        record = build_transition_record(
            record_id=uuid4(),
            job_id=job_id,
            sequence=moved.transition_count,
            from_state=job.state,
            to_state=target,
            actor=actor,
            occurred_at=now,
            reason=reason,
            metadata=json_safe(dict(metadata or {})),
            request_id=idempotency_key,
            prev_hash=previous.hash if previous is not None else None,
        )

        try:
            with repository.atomic():
                saved = repository.save_job(moved, expected_version=job.version)
                repository.append_audit(record)
        except RepairWorkflowError as exc:
            _emit_transition_trace(
                job_id, job.state.value, target.value, OUTCOME_FAILED, elapsed(),
                reason=exc.code,
            )
            raise

        _emit_transition_trace(
            job_id, job.state.value, target.value, OUTCOME_COMMITTED, elapsed(),
            reason=reason, sequence=record.sequence,
        )

        with LogContext.bind(transition_id=str(record.id)):
            effects = self._executor.apply(
                saved, job.state, target, sequence=record.sequence, repository=repository
            )
        return self._outcome(saved, record, effects)

    def _outcome(
        self,
        job: JobSheet,
        record: TransitionRecord,
        effects: tuple[EffectResult, ...],
        replayed: bool = False,
    ) -> TransitionOutcome:
        return TransitionOutcome(
            job=job,
            record=record,
            effects=effects,
            available_transitions=self._catalog.available_transitions(job.state),
            replayed=replayed,
        )

    def available_transitions(self, job_id: UUID) -> tuple[JobState, ...]:
        """States the job may move to next (empty once terminal)."""
        repository = self._repository_factory()
        try:
            job = repository.load_job(job_id)
        finally:
            repository.close()
        return self._catalog.available_transitions(job.state)

    def redispatch_effects(self, job_id: UUID, sequence: int) -> tuple[EffectResult, ...]:
        """Re-run automation for an already committed transition.

        Effects already attempted for that transition are reported as
        SKIPPED; only effects that never ran (e.g. after a crash between
        commit and dispatch) are dispatched.

        Raises:
            JobNotFoundError, TransitionNotFoundError.
        """
        repository = self._repository_factory()
        try:
            job = repository.load_job(job_id)
            record = repository.get_transition(job_id, sequence)
            if record is None:
                raise TransitionNotFoundError(str(job_id), sequence)
            with LogContext.bind(job_id=str(job_id), transition_id=str(record.id)):
                return self._executor.apply(
                    job, record.from_state, record.to_state,
                    sequence=record.sequence, repository=repository,
                )
        finally:
            repository.close()
