"""
repair_services.reporting -- Read-side views over jobs and their audit.

Responsibility:
    Assembles what operators look at: a job's state report (where it is,
    what it needs to move on, when it escalates), a verified audit export,
    per-state job lists, workflow analytics and the catalog itself.

Architecture position:
    Services layer, read-only.  Queries through ``JobSelector``; all
    arithmetic and verification is delegated to ``repair_engines``.

Failure modes:
    - JobNotFoundError for an unknown job id.
    - AuditChainBrokenError from ``export_audit`` when the stored history
      does not verify.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from repair_engines.analytics import WorkflowAnalytics, compute_workflow_analytics
from repair_engines.replay import ReplayResult, verify_history
from repair_kernel.domain.clock import Clock, SystemClock
from repair_kernel.domain.dtos import EscalationNotice, TransitionRecord
from repair_kernel.domain.job_sheet import JobSheet, is_present
from repair_kernel.domain.workflow import JobState, StateCatalog
from repair_kernel.logging_config import get_logger
from repair_kernel.selectors.job_selector import JobSelector

logger = get_logger("services.reporting")


@dataclass(frozen=True)
class JobStateReport:
    """Current position of one job in the workflow."""

    job: JobSheet
    state_name: str
    description: str
    color: str
    available_transitions: tuple[JobState, ...]
    missing_fields: tuple[str, ...]
    escalation_role: str | None
    escalation_due_at: datetime | None
    is_overdue: bool


@dataclass(frozen=True)
class AuditExport:
    job: JobSheet
    records: tuple[TransitionRecord, ...]
    escalations: tuple[EscalationNotice, ...]
    verification: ReplayResult

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job.id),
            "job_number": self.job.job_number,
            "state": self.job.state.value,
            "head_hash": self.verification.head_hash,
            "transitions": [
                {
                    "sequence": r.sequence,
                    "from_state": r.from_state.value,
                    "to_state": r.to_state.value,
                    "actor": r.actor,
                    "reason": r.reason,
                    "occurred_at": r.occurred_at.isoformat(),
                    "metadata": dict(r.metadata),
                    "request_id": r.request_id,
                    "payload_hash": r.payload_hash,
                    "prev_hash": r.prev_hash,
                    "hash": r.hash,
                }
                for r in self.records
            ],
            "escalations": [
                {
                    "state": n.state.value,
                    "state_sequence": n.state_sequence,
                    "role": n.role,
                    "overdue_by_seconds": n.overdue_by_seconds,
                    "sent_at": n.sent_at.isoformat(),
                }
                for n in self.escalations
            ],
        }


class WorkflowReportService:
    """Read-only reporting; opens one session per call."""

    def __init__(
        self,
        catalog: StateCatalog,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._catalog = catalog
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _selector(self) -> tuple[Session, JobSelector]:
        session = self._session_factory()
        return session, JobSelector(session)

    def state_report(self, job_id: UUID) -> JobStateReport:
        session, selector = self._selector()
        try:
            job = selector.get_job(job_id)
        finally:
            session.close()

        definition = self._catalog.get_state_definition(job.state)
        missing = tuple(
            name for name in definition.required_fields if not is_present(getattr(job, name))
        ) + tuple(
            req.field_name
            for req in definition.documentation
            if len(getattr(job, req.field_name)) < req.minimum
        )
        due_at = None
        if definition.escalation is not None:
            due_at = job.updated_at + definition.escalation.timeout
        return JobStateReport(
            job=job,
            state_name=definition.name,
            description=definition.description,
            color=definition.color,
            available_transitions=definition.allowed_next,
            missing_fields=missing,
            escalation_role=definition.escalation.role if definition.escalation else None,
            escalation_due_at=due_at,
            is_overdue=due_at is not None and self._clock.now() > due_at,
        )

    def export_audit(self, job_id: UUID) -> AuditExport:
        """Full, verified transition history of a job."""
        session, selector = self._selector()
        try:
            job = selector.get_job(job_id)
            records = selector.audit_trail(job_id)
            escalations = selector.escalations(job_id)
        finally:
            session.close()

        verification = verify_history(
            job_id=job_id,
            records=records,
            catalog=self._catalog,
            expected_state=job.state,
        )
        logger.info(
            "audit_exported",
            extra={
                "job_id": str(job_id),
                "record_count": verification.record_count,
                "head_hash": verification.head_hash,
            },
        )
        return AuditExport(
            job=job,
            records=tuple(records),
            escalations=tuple(escalations),
            verification=verification,
        )

    def list_by_state(
        self, state: JobState | str, *, limit: int | None = None, offset: int = 0
    ) -> list[JobSheet]:
        target = self._catalog.parse_state(state)
        session, selector = self._selector()
        try:
            return selector.list_by_state(target, limit=limit, offset=offset)
        finally:
            session.close()

    def analytics(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> WorkflowAnalytics:
        session, selector = self._selector()
        try:
            counts = selector.count_by_state(created_from=created_from, created_to=created_to)
            cycles = selector.delivered_cycle_times(
                created_from=created_from, created_to=created_to
            )
        finally:
            session.close()
        return compute_workflow_analytics(counts=counts, cycle_seconds=cycles)

    def catalog_view(self) -> list[dict[str, Any]]:
        """Display metadata for every state, in workflow order."""
        return [
            {
                "state": d.state.value,
                "name": d.name,
                "description": d.description,
                "color": d.color,
                "order": d.order,
                "terminal": d.is_terminal,
                "allowed_next": [s.value for s in d.allowed_next],
                "required_fields": list(d.required_fields),
                "editable_fields": sorted(d.editable_fields),
                "escalation": (
                    {"timeout_hours": d.escalation.timeout_hours, "role": d.escalation.role}
                    if d.escalation
                    else None
                ),
                "automation": [e.effect_key for e in d.automation],
            }
            for d in self._catalog.definitions()
        ]
