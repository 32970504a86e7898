"""
JobRepository -- persistence boundary for job sheets and their audit.

Responsibility:
    Defines the ``JobRepository`` protocol the lifecycle engine, the
    automation executor and the escalation sweeper depend on, and
    ``SqlJobRepository``, its SQLAlchemy implementation.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  The repository
    is the unit of work: one instance per engine call, one session per
    instance, and ``atomic()`` is the only place a commit happens.

Invariants enforced:
    - Atomicity: the job UPDATE and its TransitionRecord INSERT share one
      transaction (``atomic()``); either both commit or neither does.
    - Optimistic concurrency: ``save_job`` refuses a job whose loaded
      version differs from ``expected_version``; the database enforces the
      same check via ``version_id_col``.
    - At-most-once effects: ``claim_effect`` returns True for exactly one
      caller per (job, transition sequence, effect key).

Failure modes:
    - JobNotFoundError from ``load_job`` for an unknown id.
    - ConcurrentModificationError when another writer committed first
      (StaleDataError, or a unique-key collision on the audit record).
    - PersistenceError for any other SQLAlchemy failure; the transaction
      is rolled back before the error propagates.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from repair_kernel.domain.dtos import EffectStatus, EscalationNotice, TransitionRecord
from repair_kernel.domain.job_sheet import JobSheet
from repair_kernel.domain.workflow import TERMINAL_STATES
from repair_kernel.exceptions import (
    ConcurrentModificationError,
    JobNotFoundError,
    PersistenceError,
    RepairWorkflowError,
)
from repair_kernel.logging_config import get_logger
from repair_kernel.models.automation import EffectAttemptModel, EscalationNoticeModel
from repair_kernel.models.job_sheet import JobSheetModel
from repair_kernel.models.transition_record import TransitionRecordModel
from repair_kernel.services.sequence_service import SequenceService

logger = get_logger("services.job_repository")


@runtime_checkable
class JobRepository(Protocol):
    """Persistence collaborator used by the lifecycle services."""

    def atomic(self) -> AbstractContextManager[None]: ...

    def load_job(self, job_id: UUID) -> JobSheet: ...

    def add_job(self, job: JobSheet) -> JobSheet: ...

    def save_job(self, job: JobSheet, expected_version: int) -> JobSheet: ...

    def append_audit(self, record: TransitionRecord) -> None: ...

    def find_transition(self, job_id: UUID, request_id: str) -> TransitionRecord | None: ...

    def get_transition(self, job_id: UUID, sequence: int) -> TransitionRecord | None: ...

    def last_transition(self, job_id: UUID) -> TransitionRecord | None: ...

    def list_transitions(self, job_id: UUID) -> list[TransitionRecord]: ...

    def next_job_number(self, prefix: str, year: int) -> str: ...

    def claim_effect(
        self, job_id: UUID, sequence: int, effect_key: str, kind: str, at: datetime
    ) -> bool: ...

    def complete_effect(
        self,
        job_id: UUID,
        sequence: int,
        effect_key: str,
        status: EffectStatus,
        at: datetime,
        detail: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None: ...

    def list_open_jobs(self) -> list[JobSheet]: ...

    def has_escalation(self, job_id: UUID, state_sequence: int) -> bool: ...

    def record_escalation(self, notice: EscalationNotice) -> bool: ...

    def close(self) -> None: ...


class SqlJobRepository:
    """
    SQLAlchemy implementation of ``JobRepository``.

    Contract:
        Owns one session.  Reads happen outside ``atomic()``; every write
        happens inside it.  Nested ``atomic()`` blocks join the outermost
        one, which commits on success and rolls back on any exception.

    Non-goals:
        - Does NOT validate business rules -- callers hand it jobs that
          the transition validator already accepted.
    """

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    @classmethod
    def factory(cls, session_factory: Callable[[], Session]) -> Callable[[], SqlJobRepository]:
        """Build a zero-argument factory that opens a fresh repository per call."""

        def _open() -> SqlJobRepository:
            return cls(session_factory())

        return _open

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield
            if outermost:
                self.session.commit()
        except RepairWorkflowError:
            if outermost:
                self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            if outermost:
                self.session.rollback()
            logger.warning("repository_transaction_failed", exc_info=True)
            raise PersistenceError("commit", str(exc)) from exc
        except BaseException:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    # Job sheets
    # ------------------------------------------------------------------

    def _get_model(self, job_id: UUID, *, refresh: bool) -> JobSheetModel:
        try:
            model = self.session.get(JobSheetModel, job_id, populate_existing=refresh)
        except SQLAlchemyError as exc:
            raise PersistenceError("load_job", str(exc)) from exc
        if model is None:
            raise JobNotFoundError(str(job_id))
        return model

    def load_job(self, job_id: UUID) -> JobSheet:
        return self._get_model(job_id, refresh=True).to_dto()

    def add_job(self, job: JobSheet) -> JobSheet:
        model = JobSheetModel.from_dto(job)
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    def save_job(self, job: JobSheet, expected_version: int) -> JobSheet:
        model = self._get_model(job.id, refresh=False)
        if model.version != expected_version:
            raise ConcurrentModificationError(str(job.id), expected_version)
        model.apply_dto(job)
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.info(
                "job_version_conflict",
                extra={"job_id": str(job.id), "expected_version": expected_version},
            )
            raise ConcurrentModificationError(str(job.id), expected_version) from exc
        return model.to_dto()

    def next_job_number(self, prefix: str, year: int) -> str:
        return SequenceService(self.session).next_job_number(prefix, year)

    def list_open_jobs(self) -> list[JobSheet]:
        terminal = [s.value for s in TERMINAL_STATES]
        rows = self.session.scalars(
            select(JobSheetModel)
            .where(JobSheetModel.state.not_in(terminal))
            .order_by(JobSheetModel.updated_at)
        ).all()
        return [row.to_dto() for row in rows]

    # ------------------------------------------------------------------
    # Transition audit
    # ------------------------------------------------------------------

    def append_audit(self, record: TransitionRecord) -> None:
        self.session.add(TransitionRecordModel.from_dto(record))
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Same (job, sequence) or (job, request key) already committed
            raise ConcurrentModificationError(str(record.job_id)) from exc

    def _transitions(self, job_id: UUID):
        return select(TransitionRecordModel).where(TransitionRecordModel.job_id == job_id)

    def find_transition(self, job_id: UUID, request_id: str) -> TransitionRecord | None:
        row = self.session.scalars(
            self._transitions(job_id).where(TransitionRecordModel.request_id == request_id)
        ).one_or_none()
        return row.to_dto() if row is not None else None

    def get_transition(self, job_id: UUID, sequence: int) -> TransitionRecord | None:
        row = self.session.scalars(
            self._transitions(job_id).where(TransitionRecordModel.sequence == sequence)
        ).one_or_none()
        return row.to_dto() if row is not None else None

    def last_transition(self, job_id: UUID) -> TransitionRecord | None:
        row = self.session.scalars(
            self._transitions(job_id)
            .order_by(TransitionRecordModel.sequence.desc())
            .limit(1)
        ).first()
        return row.to_dto() if row is not None else None

    def list_transitions(self, job_id: UUID) -> list[TransitionRecord]:
        rows = self.session.scalars(
            self._transitions(job_id).order_by(TransitionRecordModel.sequence)
        ).all()
        return [row.to_dto() for row in rows]

    # ------------------------------------------------------------------
    # Effect ledger
    # ------------------------------------------------------------------

    def _attempt(self, job_id: UUID, sequence: int, effect_key: str) -> EffectAttemptModel | None:
        return self.session.scalars(
            select(EffectAttemptModel).where(
                EffectAttemptModel.job_id == job_id,
                EffectAttemptModel.transition_sequence == sequence,
                EffectAttemptModel.effect_key == effect_key,
            )
        ).one_or_none()

    def claim_effect(
        self, job_id: UUID, sequence: int, effect_key: str, kind: str, at: datetime
    ) -> bool:
        if self._attempt(job_id, sequence, effect_key) is not None:
            return False
        try:
            with self.atomic():
                self.session.add(
                    EffectAttemptModel(
                        job_id=job_id,
                        transition_sequence=sequence,
                        effect_key=effect_key,
                        kind=kind,
                        status="pending",
                        attempted_at=at,
                        detail={},
                    )
                )
                self.session.flush()
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                logger.info(
                    "effect_claim_lost",
                    extra={"effect_key": effect_key, "sequence": sequence},
                )
                return False
            raise
        return True

    def complete_effect(
        self,
        job_id: UUID,
        sequence: int,
        effect_key: str,
        status: EffectStatus,
        at: datetime,
        detail: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        with self.atomic():
            attempt = self._attempt(job_id, sequence, effect_key)
            if attempt is None:
                raise PersistenceError(
                    "complete_effect", f"no claimed attempt for {effect_key}"
                )
            attempt.status = status.value
            attempt.completed_at = at
            attempt.detail = dict(detail or {})
            attempt.error = error
            self.session.flush()

    def effect_statuses(self, job_id: UUID, sequence: int) -> dict[str, str]:
        rows = self.session.scalars(
            select(EffectAttemptModel).where(
                EffectAttemptModel.job_id == job_id,
                EffectAttemptModel.transition_sequence == sequence,
            )
        ).all()
        return {row.effect_key: row.status for row in rows}

    # ------------------------------------------------------------------
    # Escalation log
    # ------------------------------------------------------------------

    def has_escalation(self, job_id: UUID, state_sequence: int) -> bool:
        found = self.session.scalars(
            select(EscalationNoticeModel.id).where(
                EscalationNoticeModel.job_id == job_id,
                EscalationNoticeModel.state_sequence == state_sequence,
            )
        ).first()
        return found is not None

    def record_escalation(self, notice: EscalationNotice) -> bool:
        try:
            with self.atomic():
                self.session.add(EscalationNoticeModel.from_dto(notice))
                self.session.flush()
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                return False
            raise
        return True

    def list_escalations(self, job_id: UUID) -> list[EscalationNotice]:
        rows = self.session.scalars(
            select(EscalationNoticeModel)
            .where(EscalationNoticeModel.job_id == job_id)
            .order_by(EscalationNoticeModel.sent_at)
        ).all()
        return [row.to_dto() for row in rows]
