"""
Canonical job-sheet workflow types (``repair_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the repair state machine: the twelve canonical
states, the per-state definition (display metadata, allowed successors,
exit requirements, editable documentation, automation rules, escalation
policy) and the immutable catalog that indexes them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  The YAML
loader in ``repair_config`` builds a ``StateCatalog``; everything else
only reads it.

Invariants enforced
-------------------
* ``allowed_next`` references only canonical states.
* Terminal states (``DELIVERED``, ``CANCELLED``) have no successors.
* Cancelling is an explicit edge: once work is approved the job must go
  back to IN_PROGRESS or PARTS_ORDERED before it can be cancelled, and
  from COMPLETED onward it can only be delivered.
* The catalog is frozen after construction and safe to share across
  threads.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Union

from repair_kernel.exceptions import UnknownStateError


class JobState(str, Enum):
    """The twelve canonical job-sheet states."""

    CREATED = "CREATED"
    IN_DIAGNOSIS = "IN_DIAGNOSIS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    PARTS_ORDERED = "PARTS_ORDERED"
    TESTING = "TESTING"
    QUALITY_CHECK = "QUALITY_CHECK"
    COMPLETED = "COMPLETED"
    CUSTOMER_APPROVED = "CUSTOMER_APPROVED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


INITIAL_STATE = JobState.CREATED
TERMINAL_STATES: frozenset[JobState] = frozenset(
    {JobState.DELIVERED, JobState.CANCELLED}
)


def parse_state(state_id: JobState | str) -> JobState:
    """Resolve a state id to a JobState or raise UnknownStateError."""
    if isinstance(state_id, JobState):
        return state_id
    try:
        return JobState(str(state_id).strip().upper())
    except ValueError:
        raise UnknownStateError(str(state_id)) from None


class Channel(str, Enum):
    """Notification delivery channel."""

    SMS = "SMS"
    EMAIL = "EMAIL"


class EffectKind(str, Enum):
    NOTIFY = "notify"
    SCHEDULE = "schedule"
    SCORE_QUALITY = "score_quality"
    GENERATE_DOCUMENT = "generate_document"


# ---------------------------------------------------------------------------
# Automation effects (tagged variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotifyEffect:
    """Send a templated message to the customer or the assigned technician."""

    effect_key: str
    channel: Channel
    template: str
    recipient: str
    kind: EffectKind = field(default=EffectKind.NOTIFY, init=False)


@dataclass(frozen=True)
class ScheduleEffect:
    """Schedule a follow-up task after ``delay``."""

    effect_key: str
    delay: timedelta
    task: str
    kind: EffectKind = field(default=EffectKind.SCHEDULE, init=False)


@dataclass(frozen=True)
class ScoreQualityEffect:
    """Ask the quality collaborator to score the job and record the metric."""

    effect_key: str
    kind: EffectKind = field(default=EffectKind.SCORE_QUALITY, init=False)


@dataclass(frozen=True)
class GenerateDocumentEffect:
    """Generate a job document (invoice, purchase order, receipt...)."""

    effect_key: str
    document: str
    kind: EffectKind = field(default=EffectKind.GENERATE_DOCUMENT, init=False)


AutomationEffect = Union[
    NotifyEffect, ScheduleEffect, ScoreQualityEffect, GenerateDocumentEffect
]


# ---------------------------------------------------------------------------
# State definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentationRequirement:
    """Bounds on a list-valued documentation field (e.g. photos).

    ``minimum`` is checked when the state is exited; ``maximum`` whenever
    the field is recorded in the state.
    """

    field_name: str
    minimum: int = 0
    maximum: int | None = None
    description: str = ""


@dataclass(frozen=True)
class EscalationPolicy:
    """Advisory escalation once a job sits in a state longer than timeout."""

    timeout: timedelta
    role: str

    @property
    def timeout_hours(self) -> float:
        return self.timeout.total_seconds() / 3600


@dataclass(frozen=True)
class StateDefinition:
    """Static definition of one job state.

    Contract: frozen; every referenced state is canonical.
    Guarantees: ``is_terminal`` iff ``allowed_next`` is empty.
    Non-goals: does not evaluate rules -- the transition validator does.
    """

    state: JobState
    name: str
    description: str
    order: int
    allowed_next: tuple[JobState, ...]
    required_fields: tuple[str, ...] = ()
    editable_fields: frozenset[str] = frozenset()
    documentation: tuple[DocumentationRequirement, ...] = ()
    automation: tuple[AutomationEffect, ...] = ()
    escalation: EscalationPolicy | None = None
    entry_timestamp: str | None = None
    color: str = ""

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_next

    def allows(self, target: JobState) -> bool:
        return target in self.allowed_next

    def documentation_for(self, field_name: str) -> DocumentationRequirement | None:
        for requirement in self.documentation:
            if requirement.field_name == field_name:
                return requirement
        return None


@dataclass(frozen=True)
class WorkflowSettings:
    """Tunable thresholds that travel with the catalog version."""

    quality_threshold: int = 95
    escalation_sweep_interval_seconds: int = 300
    escalation_channel: Channel = Channel.EMAIL
    escalation_template: str = "escalation_notice"
    job_number_prefix: str = "RX"


@dataclass(frozen=True)
class StateCatalog:
    """Immutable, versioned index of every state definition.

    Contract: built once by the configuration loader and shared read-only.
    Guarantees: all twelve canonical states are present; lookups by an
    unknown id raise ``UnknownStateError``.
    """

    name: str
    version: int
    checksum: str
    states: Mapping[JobState, StateDefinition]
    settings: WorkflowSettings = WorkflowSettings()

    def get_state_definition(self, state_id: JobState | str) -> StateDefinition:
        state = parse_state(state_id)
        try:
            return self.states[state]
        except KeyError:
            raise UnknownStateError(state.value) from None

    def parse_state(self, state_id: JobState | str) -> JobState:
        state = parse_state(state_id)
        if state not in self.states:
            raise UnknownStateError(state.value)
        return state

    def definitions(self) -> tuple[StateDefinition, ...]:
        """All state definitions in display order."""
        return tuple(sorted(self.states.values(), key=lambda d: d.order))

    def graph(self) -> dict[str, tuple[str, ...]]:
        """Adjacency mapping keyed by state value."""
        return {
            d.state.value: tuple(s.value for s in d.allowed_next)
            for d in self.definitions()
        }

    def available_transitions(self, state_id: JobState | str) -> tuple[JobState, ...]:
        return self.get_state_definition(state_id).allowed_next

    @property
    def terminal_states(self) -> frozenset[JobState]:
        return frozenset(s for s, d in self.states.items() if d.is_terminal)
