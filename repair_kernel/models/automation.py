"""
Module: repair_kernel.models.automation
Responsibility: ORM persistence for the automation effect ledger and the
    escalation notice log.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At-most-once dispatch: UNIQUE(job_id, transition_sequence, effect_key).
      The executor claims a row before dispatching; a second claim for the
      same effect of the same transition fails and the effect is skipped.
    - One escalation per state residency: UNIQUE(job_id, state_sequence).

Failure modes:
    - IntegrityError on a duplicate claim (expected; mapped to "skipped").
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from repair_kernel.db.base import Base, UUIDString
from repair_kernel.domain.dtos import EscalationNotice
from repair_kernel.domain.workflow import JobState


class EffectAttemptModel(Base):
    """Ledger row for one automation effect of one transition."""

    __tablename__ = "job_effect_attempts"

    __table_args__ = (
        UniqueConstraint(
            "job_id", "transition_sequence", "effect_key",
            name="uq_effect_attempts_job_transition_effect",
        ),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed')",
            name="ck_effect_attempts_valid_status",
        ),
        Index("ix_effect_attempts_status", "status", "attempted_at"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("job_sheets.id"), nullable=False,
    )
    transition_sequence: Mapped[int] = mapped_column(nullable=False)
    effect_key: Mapped[str] = mapped_column(String(120), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    detail: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EffectAttempt job={self.job_id} #{self.transition_sequence} "
            f"{self.effect_key} status={self.status}>"
        )


class EscalationNoticeModel(Base):
    """Log of advisory escalation notices already sent."""

    __tablename__ = "job_escalation_notices"

    __table_args__ = (
        UniqueConstraint(
            "job_id", "state_sequence",
            name="uq_escalation_notices_job_residency",
        ),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("job_sheets.id"), nullable=False,
    )
    job_number: Mapped[str] = mapped_column(String(40), nullable=False)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    state_sequence: Mapped[int] = mapped_column(nullable=False)
    role: Mapped[str] = mapped_column(String(60), nullable=False)
    overdue_by_seconds: Mapped[int] = mapped_column(nullable=False)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    delivery_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dto(self) -> EscalationNotice:
        """Convert ORM model to frozen domain DTO."""
        return EscalationNotice(
            id=self.id,
            job_id=self.job_id,
            job_number=self.job_number,
            state=JobState(self.state),
            state_sequence=self.state_sequence,
            role=self.role,
            overdue_by_seconds=self.overdue_by_seconds,
            sent_at=self.sent_at,
            delivery_id=self.delivery_id,
        )

    @classmethod
    def from_dto(cls, dto: EscalationNotice) -> EscalationNoticeModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.id,
            job_id=dto.job_id,
            job_number=dto.job_number,
            state=dto.state.value,
            state_sequence=dto.state_sequence,
            role=dto.role,
            overdue_by_seconds=dto.overdue_by_seconds,
            sent_at=dto.sent_at,
            delivery_id=dto.delivery_id,
        )
