"""
Module: repair_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the lifecycle services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import repair_kernel domain types, exceptions and utils.
    MUST NOT import repair_services or repair_config.

Invariants enforced:
    - Purity: engines never read the clock; callers pass ``now``.
    - Determinism: identical inputs always produce identical outputs.
"""

from repair_engines.analytics import WorkflowAnalytics, compute_workflow_analytics
from repair_engines.escalation import OverdueJob, find_overdue_jobs
from repair_engines.replay import (
    ReplayResult,
    build_transition_record,
    replay_state,
    verify_history,
)
from repair_engines.transition_validator import validate_documentation, validate_transition

__all__ = [
    "OverdueJob",
    "ReplayResult",
    "WorkflowAnalytics",
    "build_transition_record",
    "compute_workflow_analytics",
    "find_overdue_jobs",
    "replay_state",
    "validate_documentation",
    "validate_transition",
    "verify_history",
]
