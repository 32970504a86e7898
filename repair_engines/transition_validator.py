"""
repair_engines.transition_validator -- Pure transition rule evaluation.

Responsibility:
    Decide whether a job may move to a target state and explain every
    reason it may not.  Also checks documentation a caller wants to record
    (either on its own or alongside a transition).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import repair_kernel.domain types.

Invariants enforced:
    Checks run in this order and ALL violations are collected:
    (a) target is an allowed successor of the current state;
    (b) the state being exited has its required fields present and its
        documentation minimums met -- skipped when cancelling;
    (c) per-target business rules (diagnosis before quote, customer
        approval before work, test results before QA, quality score at or
        above threshold before completion, a reason before cancelling).
    Documentation supplied with the request is merged over the job before
    (b) and (c) are evaluated, and must be editable in the current state.

Failure modes:
    - Never raises for rule violations; returns them in ValidationResult.
    - UnknownStateError if the job's state is missing from the catalog.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from repair_engines.tracer import traced_engine
from repair_kernel.domain.dtos import ValidationResult, Violation, ViolationCode
from repair_kernel.domain.job_sheet import (
    JobSheet,
    apply_documentation,
    coerce_documentation,
    is_present,
)
from repair_kernel.domain.workflow import JobState, StateCatalog, StateDefinition


def validate_documentation(
    job: JobSheet,
    fields: Mapping[str, Any],
    definition: StateDefinition,
) -> tuple[dict[str, Any], tuple[Violation, ...]]:
    """Check documentation ``fields`` against the job's current state.

    Returns:
        The coerced fields that passed and every violation found.  Callers
        must not apply the fields when any violation is returned.
    """
    violations: list[Violation] = []
    state = job.state.value

    for name in sorted(set(fields) - definition.editable_fields):
        violations.append(
            Violation(
                ViolationCode.NOT_EDITABLE,
                f"field '{name}' cannot be recorded in state {state}",
                name,
            )
        )

    editable = {k: v for k, v in fields.items() if k in definition.editable_fields}
    coerced: dict[str, Any] = {}
    for name, raw in editable.items():
        try:
            coerced.update(coerce_documentation({name: raw}))
        except ValueError as exc:
            violations.append(Violation(ViolationCode.INVALID_VALUE, str(exc), name))

    merged = apply_documentation(job, coerced)
    for requirement in definition.documentation:
        if requirement.maximum is None or requirement.field_name not in coerced:
            continue
        count = len(getattr(merged, requirement.field_name))
        if count > requirement.maximum:
            violations.append(
                Violation(
                    ViolationCode.DOCUMENTATION,
                    f"at most {requirement.maximum} {requirement.field_name} allowed "
                    f"in state {state}",
                    requirement.field_name,
                )
            )

    return coerced, tuple(violations)


def _exit_requirements(job: JobSheet, definition: StateDefinition) -> list[Violation]:
    violations: list[Violation] = []
    state = definition.state.value
    for name in definition.required_fields:
        if not is_present(getattr(job, name)):
            violations.append(
                Violation(
                    ViolationCode.MISSING_FIELD,
                    f"missing required field '{name}' to leave {state}",
                    name,
                )
            )
    for requirement in definition.documentation:
        count = len(getattr(job, requirement.field_name))
        if count < requirement.minimum:
            violations.append(
                Violation(
                    ViolationCode.DOCUMENTATION,
                    f"at least {requirement.minimum} {requirement.field_name} "
                    f"required to leave {state}",
                    requirement.field_name,
                )
            )
    return violations


def _state_rules(
    job: JobSheet,
    target: JobState,
    reason: str,
    quality_threshold: int,
) -> list[Violation]:
    violations: list[Violation] = []

    def rule(message: str, field_name: str | None = None) -> None:
        violations.append(Violation(ViolationCode.STATE_RULE, message, field_name))

    if target is JobState.AWAITING_APPROVAL:
        if not is_present(job.diagnosis_notes):
            rule("diagnosis notes required", "diagnosis_notes")
        if job.estimated_hours is None or job.estimated_hours <= 0:
            rule("estimated hours must be positive", "estimated_hours")
    elif target is JobState.IN_PROGRESS:
        if job.customer_approved_at is None:
            rule("customer approval required before work starts", "customer_approved_at")
    elif target is JobState.QUALITY_CHECK:
        if not is_present(job.test_results):
            rule("test results required", "test_results")
    elif target is JobState.COMPLETED:
        if job.quality_score is None or job.quality_score < quality_threshold:
            rule(f"quality score below threshold {quality_threshold}", "quality_score")
    elif target is JobState.CANCELLED:
        if not reason.strip():
            rule("cancellation reason required")

    return violations


@traced_engine(
    "transition_validator",
    "1.0",
    fingerprint_fields=("target", "payload", "reason"),
    summarize=lambda r: {"allowed": r.ok, "violation_count": len(r.violations)},
)
def validate_transition(
    *,
    job: JobSheet,
    target: JobState,
    catalog: StateCatalog,
    payload: Mapping[str, Any] | None = None,
    reason: str = "",
    quality_threshold: int | None = None,
) -> ValidationResult:
    """Evaluate a requested transition without side effects.

    Args:
        job: Current job snapshot.
        target: Requested next state.
        catalog: State catalog in force.
        payload: Documentation recorded together with the transition.
        reason: Caller-supplied reason (mandatory when cancelling).
        quality_threshold: Minimum score to complete; defaults to the
            catalog setting.

    Returns:
        ValidationResult whose ``ok`` is True only when no rule is violated.
    """
    threshold = (
        catalog.settings.quality_threshold
        if quality_threshold is None
        else quality_threshold
    )
    current = catalog.get_state_definition(job.state)
    violations: list[Violation] = []

    candidate = job
    if payload:
        coerced, payload_violations = validate_documentation(job, payload, current)
        violations.extend(payload_violations)
        candidate = apply_documentation(job, coerced)

    # (a) adjacency
    if not current.allows(target):
        violations.append(
            Violation(
                ViolationCode.ILLEGAL_TRANSITION,
                f"illegal transition from {job.state.value} to {target.value}",
            )
        )

    # (b) exit requirements; cancelling skips them
    if target is not JobState.CANCELLED:
        violations.extend(_exit_requirements(candidate, current))

    # (c) target rules
    violations.extend(_state_rules(candidate, target, reason, threshold))

    return ValidationResult(violations=tuple(violations))
