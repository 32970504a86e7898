"""
repair_engines.analytics -- Workflow analytics from pre-aggregated counts.

Responsibility:
    Turn per-state job counts and delivered-job cycle times into the
    figures operations looks at: completion rate, cancellation rate and
    average cycle time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The selector supplies
    the counts; this module only does arithmetic.

Invariants enforced:
    - Decimal-only arithmetic, rates in percent rounded half-up to 2 places.
    - An empty population yields zero rates and no average, never a
      division error.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from repair_engines.tracer import traced_engine
from repair_kernel.domain.workflow import TERMINAL_STATES, JobState

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class WorkflowAnalytics:
    total_jobs: int
    active_jobs: int
    counts_by_state: Mapping[str, int]
    completion_rate: Decimal
    cancellation_rate: Decimal
    average_cycle_hours: Decimal | None


def _percent(part: int, whole: int) -> Decimal:
    if whole == 0:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(_TWO_PLACES, ROUND_HALF_UP)


@traced_engine("workflow_analytics", "1.0", summarize=lambda r: {"total_jobs": r.total_jobs})
def compute_workflow_analytics(
    *,
    counts: Mapping[JobState, int],
    cycle_seconds: Iterable[float],
) -> WorkflowAnalytics:
    total = sum(counts.values())
    delivered = counts.get(JobState.DELIVERED, 0)
    cancelled = counts.get(JobState.CANCELLED, 0)
    active = sum(n for state, n in counts.items() if state not in TERMINAL_STATES)

    durations = [Decimal(str(s)) for s in cycle_seconds]
    average = None
    if durations:
        average = (sum(durations) / len(durations) / 3600).quantize(
            _TWO_PLACES, ROUND_HALF_UP
        )

    return WorkflowAnalytics(
        total_jobs=total,
        active_jobs=active,
        counts_by_state={state.value: counts.get(state, 0) for state in JobState},
        completion_rate=_percent(delivered, total),
        cancellation_rate=_percent(cancelled, total),
        average_cycle_hours=average,
    )
