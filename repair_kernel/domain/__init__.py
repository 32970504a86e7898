"""
Pure domain layer.

Value objects and pure functions with NO dependencies on the ORM, the
database, the wall clock or any other I/O.  All domain objects are
immutable.
"""

from repair_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from repair_kernel.domain.dtos import (
    EffectResult,
    EffectStatus,
    EscalationNotice,
    TransitionOutcome,
    TransitionRecord,
    ValidationResult,
    Violation,
    ViolationCode,
)
from repair_kernel.domain.job_sheet import JobSheet, Priority
from repair_kernel.domain.workflow import (
    AutomationEffect,
    Channel,
    DocumentationRequirement,
    EffectKind,
    EscalationPolicy,
    GenerateDocumentEffect,
    JobState,
    NotifyEffect,
    ScheduleEffect,
    ScoreQualityEffect,
    StateCatalog,
    StateDefinition,
    WorkflowSettings,
)

__all__ = [
    "AutomationEffect",
    "Channel",
    "Clock",
    "DeterministicClock",
    "DocumentationRequirement",
    "EffectKind",
    "EffectResult",
    "EffectStatus",
    "EscalationNotice",
    "EscalationPolicy",
    "GenerateDocumentEffect",
    "JobSheet",
    "JobState",
    "NotifyEffect",
    "Priority",
    "ScheduleEffect",
    "ScoreQualityEffect",
    "StateCatalog",
    "StateDefinition",
    "SystemClock",
    "TransitionOutcome",
    "TransitionRecord",
    "ValidationResult",
    "Violation",
    "ViolationCode",
    "WorkflowSettings",
]
