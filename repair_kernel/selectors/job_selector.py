"""
Module: repair_kernel.selectors.job_selector
Responsibility: Read-side queries over job sheets and their transition audit:
    single-job lookup, listing by state, per-state counts, cycle times of
    delivered jobs and the ordered audit trail.
Architecture position: Kernel > Selectors.

Failure modes:
    - JobNotFoundError from get_job for an unknown id.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from repair_kernel.domain.dtos import EscalationNotice, TransitionRecord
from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import JobState, parse_state
from repair_kernel.exceptions import JobNotFoundError
from repair_kernel.models.automation import EscalationNoticeModel
from repair_kernel.models.job_sheet import JobSheetModel
from repair_kernel.models.transition_record import TransitionRecordModel
from repair_kernel.selectors.base import BaseSelector


class JobSelector(BaseSelector):
    """Read-only queries for job sheets."""

    def get_job(self, job_id: UUID) -> JobSheet:
        model = self.session.get(JobSheetModel, job_id, populate_existing=True)
        if model is None:
            raise JobNotFoundError(str(job_id))
        return model.to_dto()

    def get_by_number(self, job_number: str) -> JobSheet:
        model = self.session.scalars(
            select(JobSheetModel).where(JobSheetModel.job_number == job_number)
        ).one_or_none()
        if model is None:
            raise JobNotFoundError(job_number)
        return model.to_dto()

    def list_by_state(
        self,
        state: JobState | str,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[JobSheet]:
        """Jobs currently in ``state``, oldest activity first."""
        query = (
            select(JobSheetModel)
            .where(JobSheetModel.state == parse_state(state).value)
            .order_by(JobSheetModel.updated_at, JobSheetModel.job_number)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return [row.to_dto() for row in self.session.scalars(query).all()]

    def _created_between(self, query, created_from: datetime | None, created_to: datetime | None):
        if created_from is not None:
            query = query.where(JobSheetModel.created_at >= created_from)
        if created_to is not None:
            query = query.where(JobSheetModel.created_at < created_to)
        return query

    def count_by_state(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> dict[JobState, int]:
        """Number of jobs per state; every canonical state is present."""
        query = self._created_between(
            select(JobSheetModel.state, func.count(JobSheetModel.id)).group_by(
                JobSheetModel.state
            ),
            created_from,
            created_to,
        )
        counts = {state: 0 for state in JobState}
        for state, count in self.session.execute(query).all():
            counts[JobState(state)] = count
        return counts

    def delivered_cycle_times(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[float]:
        """Seconds from creation to delivery for every delivered job."""
        query = self._created_between(
            select(JobSheetModel.created_at, JobSheetModel.delivered_at).where(
                JobSheetModel.state == JobState.DELIVERED.value,
                JobSheetModel.delivered_at.is_not(None),
            ),
            created_from,
            created_to,
        )
        return [
            (delivered - created).total_seconds()
            for created, delivered in self.session.execute(query).all()
        ]

    def audit_trail(self, job_id: UUID) -> list[TransitionRecord]:
        """Every transition record of a job, in commit order."""
        rows = self.session.scalars(
            select(TransitionRecordModel)
            .where(TransitionRecordModel.job_id == job_id)
            .order_by(TransitionRecordModel.sequence)
        ).all()
        return [row.to_dto() for row in rows]

    def escalations(self, job_id: UUID) -> list[EscalationNotice]:
        rows = self.session.scalars(
            select(EscalationNoticeModel)
            .where(EscalationNoticeModel.job_id == job_id)
            .order_by(EscalationNoticeModel.sent_at)
        ).all()
        return [row.to_dto() for row in rows]
