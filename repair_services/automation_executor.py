"""
repair_services.automation_executor -- Post-commit side effects of a transition.

Responsibility:
    Runs the automation rules of the state a job just entered: customer
    and technician notifications, follow-up scheduling, quality scoring
    and document generation.  Each rule is dispatched through the
    capability bundle in ``repair_services.collaborators``.

Architecture position:
    Services layer.  Called by the lifecycle engine strictly AFTER the
    transition has committed, and by job creation for the CREATED rules.

Invariants enforced:
    - At most one attempt per (job, transition sequence, effect key): the
      attempt is claimed in the repository's effect ledger before dispatch,
      and a lost or repeated claim reports the effect as SKIPPED.
    - Failures never propagate: each one is logged, wrapped in
      AutomationEffectError and returned as a FAILED EffectResult.
    - Quality scoring is advisory: the score is recorded as a metric and
      returned in the result detail; the job itself is not modified.

Failure modes:
    - Collaborator exceptions -> FAILED result, warning log.
    - Effect ledger unavailable -> FAILED result, effect not dispatched.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID

from repair_kernel.domain.clock import Clock, SystemClock
from repair_kernel.domain.dtos import EffectResult, EffectStatus
from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import (
    AutomationEffect,
    GenerateDocumentEffect,
    JobState,
    NotifyEffect,
    ScheduleEffect,
    ScoreQualityEffect,
    StateCatalog,
)
from repair_kernel.exceptions import AutomationEffectError, PersistenceError
from repair_kernel.logging_config import get_logger
from repair_kernel.services.job_repository import JobRepository
from repair_services.collaborators import AutomationCollaborators

logger = get_logger("services.automation_executor")


class AutomationExecutor:
    """
    Dispatches the automation rules attached to a state.

    Contract:
        ``apply`` returns one EffectResult per rule of ``to_state``, in
        catalog order, and never raises for effect failures.

    Non-goals:
        - Does NOT retry failed effects; ``LifecycleEngine.redispatch_effects``
          re-runs only effects that were never attempted.
    """

    def __init__(
        self,
        catalog: StateCatalog,
        collaborators: AutomationCollaborators | None = None,
        clock: Clock | None = None,
    ):
        self._catalog = catalog
        self._collaborators = collaborators or AutomationCollaborators()
        self._clock = clock or SystemClock()

    def apply(
        self,
        job: JobSheet,
        from_state: JobState | None,
        to_state: JobState,
        *,
        sequence: int,
        repository: JobRepository,
    ) -> tuple[EffectResult, ...]:
        """Run every automation rule of ``to_state`` for one committed transition."""
        definition = self._catalog.get_state_definition(to_state)
        results = tuple(
            self._run(effect, job, from_state, to_state, sequence, repository)
            for effect in definition.automation
        )
        logger.info(
            "automation_applied",
            extra={
                "job_number": job.job_number,
                "to_state": to_state.value,
                "sequence": sequence,
                "succeeded": sum(r.status is EffectStatus.SUCCEEDED for r in results),
                "failed": sum(r.status is EffectStatus.FAILED for r in results),
                "skipped": sum(r.status is EffectStatus.SKIPPED for r in results),
            },
        )
        return results

    # ------------------------------------------------------------------

    def _skip_reason(self, effect: AutomationEffect, job: JobSheet) -> str | None:
        c = self._collaborators
        if isinstance(effect, NotifyEffect):
            if c.notifier is None:
                return "no notification gateway configured"
            if self._recipient(effect, job) is None:
                return f"no {effect.recipient} reference on job"
        elif isinstance(effect, ScheduleEffect):
            if c.scheduler is None:
                return "no follow-up scheduler configured"
        elif isinstance(effect, ScoreQualityEffect):
            if c.quality is None:
                return "no quality scorer configured"
        elif isinstance(effect, GenerateDocumentEffect):
            if c.documents is None:
                return "no document generator configured"
        return None

    @staticmethod
    def _recipient(effect: NotifyEffect, job: JobSheet) -> str | None:
        if effect.recipient == "technician":
            return job.technician_ref
        return job.customer_ref

    def _dispatch(
        self,
        effect: AutomationEffect,
        job: JobSheet,
        from_state: JobState | None,
        to_state: JobState,
    ) -> dict[str, Any]:
        c = self._collaborators
        if isinstance(effect, NotifyEffect):
            definition = self._catalog.get_state_definition(to_state)
            handle = c.notifier.send(
                effect.channel,
                effect.template,
                self._recipient(effect, job),
                {
                    "job_id": str(job.id),
                    "job_number": job.job_number,
                    "state": to_state.value,
                    "state_name": definition.name,
                    "previous_state": from_state.value if from_state else None,
                    "device_ref": job.device_ref,
                    "technician_ref": job.technician_ref,
                },
            )
            return {"delivery_id": handle.delivery_id, "channel": effect.channel.value}
        if isinstance(effect, ScheduleEffect):
            task_ref = c.scheduler.schedule_follow_up(job.id, effect.delay, effect.task)
            return {
                "task": effect.task,
                "task_ref": task_ref,
                "delay_hours": effect.delay.total_seconds() / 3600,
            }
        if isinstance(effect, ScoreQualityEffect):
            assessment = c.quality.score_job(job.id)
            if c.metrics is not None:
                c.metrics.record_quality_metric(job.id, assessment.score, assessment.issues)
            return {"score": assessment.score, "issues": list(assessment.issues)}
        document_ref = c.documents.generate(job.id, effect.document)
        return {"document": effect.document, "document_ref": document_ref}

    def _run(
        self,
        effect: AutomationEffect,
        job: JobSheet,
        from_state: JobState | None,
        to_state: JobState,
        sequence: int,
        repository: JobRepository,
    ) -> EffectResult:
        log_extra = {
            "job_number": job.job_number,
            "effect_key": effect.effect_key,
            "effect_kind": effect.kind.value,
            "sequence": sequence,
        }

        skip = self._skip_reason(effect, job)
        if skip is not None:
            logger.debug("effect_skipped", extra={**log_extra, "reason": skip})
            return EffectResult(effect.effect_key, effect.kind, EffectStatus.SKIPPED, {"reason": skip})

        try:
            claimed = repository.claim_effect(
                job.id, sequence, effect.effect_key, effect.kind.value, self._clock.now()
            )
        except PersistenceError as exc:
            error = AutomationEffectError(effect.effect_key, effect.kind.value, str(exc))
            logger.warning("effect_claim_failed", extra=log_extra, exc_info=True)
            return EffectResult(effect.effect_key, effect.kind, EffectStatus.FAILED, error=str(error))

        if not claimed:
            logger.info("effect_already_attempted", extra=log_extra)
            return EffectResult(
                effect.effect_key, effect.kind, EffectStatus.SKIPPED, {"reason": "already attempted"}
            )

        t0 = time.monotonic()
        try:
            detail = self._dispatch(effect, job, from_state, to_state)
            result = EffectResult(effect.effect_key, effect.kind, EffectStatus.SUCCEEDED, detail)
            logger.info(
                "effect_succeeded",
                extra={**log_extra, "duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
        except Exception as exc:
            error = AutomationEffectError(effect.effect_key, effect.kind.value, str(exc))
            logger.warning("effect_failed", extra=log_extra, exc_info=error)
            result = EffectResult(effect.effect_key, effect.kind, EffectStatus.FAILED, error=str(error))

        self._record(repository, job.id, sequence, result)
        return result

    def _record(
        self, repository: JobRepository, job_id: UUID, sequence: int, result: EffectResult
    ) -> None:
        try:
            repository.complete_effect(
                job_id,
                sequence,
                result.effect_key,
                result.status,
                self._clock.now(),
                detail=dict(result.detail),
                error=result.error,
            )
        except PersistenceError:
            logger.warning(
                "effect_outcome_not_recorded",
                extra={"effect_key": result.effect_key, "sequence": sequence},
                exc_info=True,
            )
