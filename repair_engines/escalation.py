"""
repair_engines.escalation -- Pure overdue-job detection.

Responsibility:
    Given open jobs, the catalog and "now", list the jobs that have sat in
    their current state longer than the state's escalation timeout.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The escalation sweeper
    supplies jobs and time and owns every side effect.

Invariants enforced:
    - Terminal jobs and states without an escalation policy never appear.
    - Overdue means strictly greater: ``now - updated_at > timeout``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from repair_engines.tracer import traced_engine
from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import StateCatalog


@dataclass(frozen=True)
class OverdueJob:
    job: JobSheet
    role: str
    timeout: timedelta
    overdue_by: timedelta

    @property
    def state_sequence(self) -> int:
        """Identifies this residency: the job's transition count on entry."""
        return self.job.transition_count


@traced_engine("escalation", "1.0", summarize=lambda r: {"overdue_count": len(r)})
def find_overdue_jobs(
    *,
    jobs: Iterable[JobSheet],
    catalog: StateCatalog,
    now: datetime,
) -> list[OverdueJob]:
    """Jobs past their state's timeout, most overdue first."""
    overdue: list[OverdueJob] = []
    for job in jobs:
        if job.is_terminal:
            continue
        policy = catalog.get_state_definition(job.state).escalation
        if policy is None:
            continue
        elapsed = now - job.updated_at
        if elapsed > policy.timeout:
            overdue.append(
                OverdueJob(
                    job=job,
                    role=policy.role,
                    timeout=policy.timeout,
                    overdue_by=elapsed - policy.timeout,
                )
            )
    overdue.sort(key=lambda o: (-o.overdue_by, o.job.job_number))
    return overdue
