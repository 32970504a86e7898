"""
repair_services.job_sheet_service -- Job intake and in-state documentation.

Responsibility:
    Opens new job sheets in CREATED (numbering them and running the
    CREATED automation) and records documentation against a job without
    changing its state.

Architecture position:
    Services layer.  Shares the repository factory, executor and clock
    with ``LifecycleEngine``; neither service changes state through the
    other's path.

Invariants enforced:
    - Every job starts in CREATED with version 1 and no transitions.
    - Job numbers are unique: allocated from a locked counter row inside
      the same transaction as the job insert.
    - Documentation is recorded only for fields editable in the job's
      current state; terminal jobs accept none.

Failure modes:
    - InvalidJobSheetError for missing intake data or bad field values.
    - FieldNotEditableError for fields outside the current state.
    - TerminalStateError for DELIVERED / CANCELLED jobs.
    - ConcurrentModificationError when ``expected_version`` is stale.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID, uuid4

from repair_engines.transition_validator import validate_documentation
from repair_kernel.domain.clock import Clock, SystemClock
from repair_kernel.domain.dtos import EffectResult, Violation, ViolationCode
from repair_kernel.domain.job_sheet import JobSheet, Priority, apply_documentation
from repair_kernel.domain.workflow import INITIAL_STATE, StateCatalog
from repair_kernel.exceptions import (
    FieldNotEditableError,
    InvalidJobSheetError,
    TerminalStateError,
)
from repair_kernel.logging_config import LogContext, get_logger
from repair_kernel.services.job_repository import JobRepository
from repair_services.automation_executor import AutomationExecutor

logger = get_logger("services.job_sheet_service")

_INTAKE_FIELDS = ("customer_ref", "device_ref", "problem_description")


@dataclass(frozen=True)
class CreatedJob:
    """A freshly opened job and the results of its CREATED automation."""

    job: JobSheet
    effects: tuple[EffectResult, ...] = ()


class JobSheetService:
    """Creates job sheets and records documentation on them."""

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

    def create_job(
        self,
        customer_ref: str,
        device_ref: str,
        problem_description: str,
        actor: str,
        priority: Priority | str = Priority.MEDIUM,
        technician_ref: str | None = None,
        photos: Sequence[str] = (),
    ) -> CreatedJob:
        """Open a job sheet in CREATED and run the CREATED automation.

        Automation for creation is keyed to transition sequence 0.

        Raises:
            InvalidJobSheetError: intake data missing or invalid.
        """
        intake = {
            "customer_ref": customer_ref,
            "device_ref": device_ref,
            "problem_description": problem_description,
        }
        violations = [
            Violation(ViolationCode.MISSING_FIELD, f"{name} is required", name)
            for name in _INTAKE_FIELDS
            if not (intake[name] or "").strip()
        ]

        now = self._clock.now()
        draft = JobSheet(
            id=uuid4(),
            job_number="",
            state=INITIAL_STATE,
            customer_ref=(customer_ref or "").strip(),
            device_ref=(device_ref or "").strip(),
            problem_description=(problem_description or "").strip(),
            created_at=now,
            updated_at=now,
        )

        documentation: dict[str, Any] = {"priority": priority}
        if technician_ref:
            documentation["technician_ref"] = technician_ref
        if photos:
            documentation["photos"] = list(photos)
        coerced, doc_violations = validate_documentation(
            draft, documentation, self._catalog.get_state_definition(INITIAL_STATE)
        )
        violations.extend(doc_violations)
        if violations:
            raise InvalidJobSheetError(draft.device_ref or "<new>", violations)

        repository = self._repository_factory()
        try:
            with repository.atomic():
                number = repository.next_job_number(
                    self._catalog.settings.job_number_prefix, now.year
                )
                job = repository.add_job(
                    replace(apply_documentation(draft, coerced), job_number=number)
                )
            with LogContext.bind(job_id=str(job.id), actor=actor):
                logger.info(
                    "job_created",
                    extra={
                        "job_number": job.job_number,
                        "priority": job.priority.value,
                        "technician_ref": job.technician_ref,
                    },
                )
                effects = self._executor.apply(
                    job, None, INITIAL_STATE, sequence=0, repository=repository
                )
        finally:
            repository.close()
        return CreatedJob(job=job, effects=effects)

    def record_documentation(
        self,
        job_id: UUID,
        fields: Mapping[str, Any],
        actor: str,
        expected_version: int | None = None,
    ) -> JobSheet:
        """Record documentation on a job without changing its state.

        List fields (photos, parts, quality issues) are appended; other
        fields replace the previous value.

        Raises:
            JobNotFoundError, TerminalStateError, FieldNotEditableError,
            InvalidJobSheetError, ConcurrentModificationError.
        """
        repository = self._repository_factory()
        try:
            with LogContext.bind(job_id=str(job_id), actor=actor):
                job = repository.load_job(job_id)
                if job.is_terminal:
                    raise TerminalStateError(str(job_id), job.state.value)

                definition = self._catalog.get_state_definition(job.state)
                coerced, violations = validate_documentation(job, fields, definition)
                locked = [v.field_name for v in violations if v.code is ViolationCode.NOT_EDITABLE]
                if locked:
                    raise FieldNotEditableError(str(job_id), job.state.value, locked)
                if violations:
                    raise InvalidJobSheetError(job.job_number, violations)

                version = job.version if expected_version is None else expected_version
                updated = replace(apply_documentation(job, coerced), updated_at=self._clock.now())
                with repository.atomic():
                    saved = repository.save_job(updated, expected_version=version)

                logger.info(
                    "documentation_recorded",
                    extra={
                        "job_number": saved.job_number,
                        "state": saved.state.value,
                        "fields": sorted(coerced),
                        "version": saved.version,
                    },
                )
                return saved
        finally:
            repository.close()
