"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    The immutable records that flow across the lifecycle pipeline:
    validator output (Violation, ValidationResult), the append-only
    TransitionRecord, automation results, escalation notices and the
    outcome handed back to callers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ORM models convert
    to and from these at the persistence boundary; nothing here imports
    SQLAlchemy.

Data flow:
    validate -> ValidationResult -> TransitionRecord -> EffectResult[]
        -> TransitionOutcome
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import EffectKind, JobState


def _freeze(data: dict[str, Any] | None) -> MappingProxyType:
    return MappingProxyType(dict(data or {}))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ViolationCode(str, Enum):
    ILLEGAL_TRANSITION = "illegal_transition"
    MISSING_FIELD = "missing_field"
    DOCUMENTATION = "documentation"
    STATE_RULE = "state_rule"
    NOT_EDITABLE = "not_editable"
    INVALID_VALUE = "invalid_value"


@dataclass(frozen=True)
class Violation:
    code: ViolationCode
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    """Every violation found for one requested transition."""

    violations: tuple[Violation, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def messages(self) -> tuple[str, ...]:
        return tuple(v.message for v in self.violations)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable audit entry for one committed transition.

    ``sequence`` is contiguous from 1 per job; ``hash`` chains to the
    previous record's hash.
    """

    id: UUID
    job_id: UUID
    sequence: int
    from_state: JobState
    to_state: JobState
    actor: str
    occurred_at: datetime
    payload_hash: str
    hash: str
    reason: str = ""
    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    request_id: str | None = None
    prev_hash: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", _freeze(self.metadata))

    def payload(self) -> dict[str, Any]:
        """Fields covered by ``payload_hash``."""
        return {
            "reason": self.reason,
            "actor": self.actor,
            "occurred_at": self.occurred_at,
            "metadata": dict(self.metadata),
            "request_id": self.request_id,
        }


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


class EffectStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class EffectResult:
    effect_key: str
    kind: EffectKind
    status: EffectStatus
    detail: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    error: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.detail, MappingProxyType):
            object.__setattr__(self, "detail", _freeze(self.detail))

    @property
    def failed(self) -> bool:
        return self.status is EffectStatus.FAILED


@dataclass(frozen=True)
class TransitionOutcome:
    """What a caller gets back from a transition request.

    ``warnings`` lists failed side effects; they never undo the transition.
    ``replayed`` is True when an idempotency key matched an earlier commit.
    """

    job: JobSheet
    record: TransitionRecord
    effects: tuple[EffectResult, ...] = ()
    available_transitions: tuple[JobState, ...] = ()
    replayed: bool = False

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(
            f"{e.effect_key}: {e.error}" for e in self.effects if e.failed
        )


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscalationNotice:
    """One advisory notice for one residency of a job in a state."""

    id: UUID
    job_id: UUID
    job_number: str
    state: JobState
    state_sequence: int
    role: str
    overdue_by_seconds: int
    sent_at: datetime
    delivery_id: str | None = None
