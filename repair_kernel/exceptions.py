"""
Typed Exception Hierarchy for the Repair Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine must tell a rejected request apart from a
lost race or a storage outage without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (job id, states, violations)

Example:
    try:
        engine.transition(job_id, "COMPLETED", actor="qa-7")
    except InvalidTransitionError as e:
        api_response(code=e.code, violations=[v.message for v in e.violations])
    except ConcurrentModificationError:
        retry_after_reload()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RepairWorkflowError (base)
    |
    +-- NotFoundError
    |   +-- JobNotFoundError
    |   +-- UnknownStateError
    |   +-- TransitionNotFoundError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- TerminalStateError
    |   +-- FieldNotEditableError
    |   +-- InvalidJobSheetError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- PersistenceError
    |
    +-- AutomationEffectError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised                    | Retry?
-------------|---------------------------|--------------------------------|-------
Not found    | JOB_NOT_FOUND             | Job id doesn't exist           | no
             | UNKNOWN_STATE             | State id not in the catalog    | no
             | TRANSITION_NOT_FOUND      | No audit record at sequence    | no
-------------|---------------------------|--------------------------------|-------
Workflow     | INVALID_TRANSITION        | Business rules violated        | after fix
             | TERMINAL_STATE            | Job is DELIVERED or CANCELLED  | never
             | FIELD_NOT_EDITABLE        | Edit outside its state         | no
             | INVALID_JOB_SHEET         | Bad intake or field value      | after fix
-------------|---------------------------|--------------------------------|-------
Concurrency  | CONCURRENT_MODIFICATION   | Lost optimistic race           | yes
-------------|---------------------------|--------------------------------|-------
Storage      | PERSISTENCE_FAILURE       | Commit failed, state unchanged | maybe
-------------|---------------------------|--------------------------------|-------
Automation   | AUTOMATION_EFFECT_FAILED  | Side effect failed (warning)   | n/a
-------------|---------------------------|--------------------------------|-------
Audit        | AUDIT_CHAIN_BROKEN        | Hash chain / replay mismatch   | no
             | IMMUTABILITY_VIOLATION    | Update/delete of audit record  | no
"""

from collections.abc import Sequence
from typing import Any


class RepairWorkflowError(Exception):
    """Base exception for all repair workflow errors."""

    code: str = "REPAIR_WORKFLOW_ERROR"


# Not-found exceptions


class NotFoundError(RepairWorkflowError):
    """Base exception for ids the caller supplied that do not resolve."""

    code: str = "NOT_FOUND"


class JobNotFoundError(NotFoundError):
    """Job sheet not found."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job sheet not found: {job_id}")


class UnknownStateError(NotFoundError):
    """State id is not one of the canonical catalog states."""

    code: str = "UNKNOWN_STATE"

    def __init__(self, state_id: str):
        self.state_id = state_id
        super().__init__(f"Unknown job state: {state_id!r}")


class TransitionNotFoundError(NotFoundError):
    """No transition record exists at the requested sequence."""

    code: str = "TRANSITION_NOT_FOUND"

    def __init__(self, job_id: str, sequence: int):
        self.job_id = job_id
        self.sequence = sequence
        super().__init__(f"No transition {sequence} recorded for job {job_id}")


# Workflow exceptions


class WorkflowError(RepairWorkflowError):
    """Base exception for rejected workflow requests."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """
    Transition rejected by the validator.

    Carries every violation found, not just the first.  The job is left
    untouched and no audit record is written.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        job_id: str,
        from_state: str,
        to_state: str,
        violations: Sequence[Any],
    ):
        self.job_id = job_id
        self.from_state = from_state
        self.to_state = to_state
        self.violations = tuple(violations)
        messages = "; ".join(getattr(v, "message", str(v)) for v in self.violations)
        super().__init__(
            f"Transition {from_state} -> {to_state} rejected for job {job_id}: "
            f"{messages}"
        )

    @property
    def messages(self) -> tuple[str, ...]:
        return tuple(getattr(v, "message", str(v)) for v in self.violations)


class TerminalStateError(WorkflowError):
    """Job is in a terminal state and accepts no further transitions."""

    code: str = "TERMINAL_STATE"

    def __init__(self, job_id: str, state: str):
        self.job_id = job_id
        self.state = state
        super().__init__(f"Job {job_id} is in terminal state {state}")


class FieldNotEditableError(WorkflowError):
    """Documentation fields cannot be recorded in the job's current state."""

    code: str = "FIELD_NOT_EDITABLE"

    def __init__(self, job_id: str, state: str, fields: Sequence[str], reason: str = ""):
        self.job_id = job_id
        self.state = state
        self.fields = tuple(fields)
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Fields {', '.join(self.fields)} cannot be recorded for job {job_id} "
            f"in state {state}{detail}"
        )


class InvalidJobSheetError(WorkflowError):
    """Intake data or documentation values failed validation."""

    code: str = "INVALID_JOB_SHEET"

    def __init__(self, job_ref: str, violations: Sequence[Any]):
        self.job_ref = job_ref
        self.violations = tuple(violations)
        super().__init__(f"Job sheet {job_ref} rejected: {'; '.join(self.messages)}")

    @property
    def messages(self) -> tuple[str, ...]:
        return tuple(getattr(v, "message", str(v)) for v in self.violations)


# Concurrency exceptions


class ConcurrencyError(RepairWorkflowError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    Another transition committed first.

    Retryable: re-read the job and re-issue the request.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, job_id: str, expected_version: int | None = None):
        self.job_id = job_id
        self.expected_version = expected_version
        version = f" at version {expected_version}" if expected_version is not None else ""
        super().__init__(
            f"Job {job_id} was modified concurrently{version}; reload and retry"
        )


# Storage exceptions


class PersistenceError(RepairWorkflowError):
    """The persistence collaborator failed; no state change was recorded."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


# Automation exceptions


class AutomationEffectError(RepairWorkflowError):
    """
    A post-commit side effect failed.

    Never raised out of a transition: the executor returns it inside a
    failed EffectResult and the outcome reports it as a warning.
    """

    code: str = "AUTOMATION_EFFECT_FAILED"

    def __init__(self, effect_key: str, kind: str, reason: str):
        self.effect_key = effect_key
        self.kind = kind
        self.reason = reason
        super().__init__(f"Automation effect {effect_key} ({kind}) failed: {reason}")


# Audit exceptions


class AuditError(RepairWorkflowError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Transition history failed hash-chain or replay verification."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, job_id: str, sequence: int, reason: str):
        self.job_id = job_id
        self.sequence = sequence
        self.reason = reason
        super().__init__(
            f"Audit chain broken for job {job_id} at sequence {sequence}: {reason}"
        )


# Immutability exceptions


class ImmutabilityError(RepairWorkflowError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
