"""
Module: repair_kernel.models.transition_record
Responsibility: ORM persistence for the append-only transition audit.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Total order per job: UNIQUE(job_id, sequence).  Two writers that both
      computed the same next sequence cannot both commit.
    - Idempotency: UNIQUE(job_id, request_id) -- a request key maps to at
      most one committed transition per job.
    - Append-only: ORM listeners reject UPDATE and DELETE.
    - Tamper evidence: hash = H(job, sequence, states, payload_hash, prev_hash).

Failure modes:
    - IntegrityError on a duplicate (job_id, sequence) or (job_id, request_id).
    - ImmutabilityViolationError on any UPDATE/DELETE through the ORM.

Audit relevance:
    Replaying a job's records from CREATED reproduces its current state;
    the hash chain makes any rewrite of history detectable.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from repair_kernel.db.base import Base, UUIDString
from repair_kernel.domain.dtos import TransitionRecord
from repair_kernel.domain.workflow import JobState
from repair_kernel.exceptions import ImmutabilityViolationError


class TransitionRecordModel(Base):
    """Persistent transition record. Append-only.

    Contract:
        Written exactly once, in the same transaction as the job update it
        describes.
    """

    __tablename__ = "job_transition_records"

    __table_args__ = (
        UniqueConstraint("job_id", "sequence", name="uq_transition_records_job_sequence"),
        UniqueConstraint("job_id", "request_id", name="uq_transition_records_job_request"),
        Index("ix_transition_records_job_occurred", "job_id", "occurred_at"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("job_sheets.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    from_state: Mapped[str] = mapped_column(String(30), nullable=False)
    to_state: Mapped[str] = mapped_column(String(30), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    record_metadata: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    request_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<TransitionRecord job={self.job_id} #{self.sequence} "
            f"{self.from_state}->{self.to_state}>"
        )

    def to_dto(self) -> TransitionRecord:
        """Convert ORM model to frozen domain DTO."""
        return TransitionRecord(
            id=self.id,
            job_id=self.job_id,
            sequence=self.sequence,
            from_state=JobState(self.from_state),
            to_state=JobState(self.to_state),
            reason=self.reason,
            actor=self.actor,
            occurred_at=self.occurred_at,
            metadata=dict(self.record_metadata or {}),
            request_id=self.request_id,
            payload_hash=self.payload_hash,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )

    @classmethod
    def from_dto(cls, dto: TransitionRecord) -> TransitionRecordModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.id,
            job_id=dto.job_id,
            sequence=dto.sequence,
            from_state=dto.from_state.value,
            to_state=dto.to_state.value,
            reason=dto.reason,
            actor=dto.actor,
            occurred_at=dto.occurred_at,
            record_metadata=dict(dto.metadata),
            request_id=dto.request_id,
            payload_hash=dto.payload_hash,
            prev_hash=dto.prev_hash,
            hash=dto.hash,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(TransitionRecordModel, "before_update")
def prevent_transition_record_update(mapper, connection, target):
    """Prevent updates to transition records."""
    raise ImmutabilityViolationError(
        entity_type="TransitionRecord",
        entity_id=str(target.id),
        reason="Transition records are append-only -- cannot modify",
    )


@event.listens_for(TransitionRecordModel, "before_delete")
def prevent_transition_record_delete(mapper, connection, target):
    """Prevent deletion of transition records."""
    raise ImmutabilityViolationError(
        entity_type="TransitionRecord",
        entity_id=str(target.id),
        reason="Transition records are append-only -- cannot delete",
    )
