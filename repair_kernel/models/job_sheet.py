"""
Module: repair_kernel.models.job_sheet
Responsibility: ORM persistence for job sheets.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - state is one of the twelve canonical states (DB check constraint).
    - Optimistic concurrency: ``version`` is SQLAlchemy's version_id_col, so
      every UPDATE carries ``WHERE version = <loaded version>``.  A writer
      that loaded an older version updates zero rows and gets StaleDataError.
    - job_number is unique.

Failure modes:
    - StaleDataError on UPDATE when another transaction committed first.
    - IntegrityError on duplicate job_number or an out-of-range score.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from repair_kernel.db.base import Base
from repair_kernel.domain.job_sheet import JobSheet, Priority
from repair_kernel.domain.workflow import JobState

_STATE_VALUES = ", ".join(f"'{s.value}'" for s in JobState)
_PRIORITY_VALUES = ", ".join(f"'{p.value}'" for p in Priority)


class JobSheetModel(Base):
    """Persistent job sheet.

    Contract:
        Mutated only by the job repository on behalf of the lifecycle
        engine and the documentation service.

    Guarantees:
        - ``version`` increases by one on every committed UPDATE.
        - ``transition_count`` equals the sequence of the job's latest
          transition record.
    """

    __tablename__ = "job_sheets"

    __table_args__ = (
        CheckConstraint(
            f"state IN ({_STATE_VALUES})",
            name="ck_job_sheets_valid_state",
        ),
        CheckConstraint(
            f"priority IN ({_PRIORITY_VALUES})",
            name="ck_job_sheets_valid_priority",
        ),
        CheckConstraint(
            "quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)",
            name="ck_job_sheets_quality_score_range",
        ),
        CheckConstraint(
            "satisfaction_rating IS NULL OR "
            "(satisfaction_rating >= 1 AND satisfaction_rating <= 5)",
            name="ck_job_sheets_satisfaction_range",
        ),
        Index("ix_job_sheets_state_updated", "state", "updated_at"),
        Index("ix_job_sheets_created_at", "created_at"),
    )

    job_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    version: Mapped[int] = mapped_column(nullable=False)
    transition_count: Mapped[int] = mapped_column(nullable=False, default=0)

    customer_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    device_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    technician_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    problem_description: Mapped[str] = mapped_column(Text, nullable=False)

    diagnosis_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    estimated_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    photos: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    parts_ordered: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    test_results: Mapped[str | None] = mapped_column(Text, nullable=True)
    quality_score: Mapped[int | None] = mapped_column(nullable=True)
    quality_issues: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    final_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    satisfaction_rating: Mapped[int | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    customer_approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    customer_signed_off_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    # Columns copied verbatim between model and DTO
    _PLAIN_FIELDS = (
        "job_number",
        "transition_count",
        "customer_ref",
        "device_ref",
        "technician_ref",
        "problem_description",
        "diagnosis_notes",
        "estimated_hours",
        "estimated_cost",
        "actual_hours",
        "test_results",
        "quality_score",
        "final_price",
        "satisfaction_rating",
        "created_at",
        "updated_at",
        "started_at",
        "customer_approved_at",
        "completed_at",
        "customer_signed_off_at",
        "delivered_at",
        "cancelled_at",
        "cancellation_reason",
        "cancelled_by",
    )
    _LIST_FIELDS = ("photos", "parts_ordered", "quality_issues")

    def __repr__(self) -> str:
        return f"<JobSheet {self.job_number} state={self.state} v{self.version}>"

    def to_dto(self) -> JobSheet:
        """Convert ORM model to frozen domain DTO."""
        values = {name: getattr(self, name) for name in self._PLAIN_FIELDS}
        values.update(
            {name: tuple(getattr(self, name) or ()) for name in self._LIST_FIELDS}
        )
        return JobSheet(
            id=self.id,
            state=JobState(self.state),
            priority=Priority(self.priority),
            version=self.version,
            **values,
        )

    @classmethod
    def from_dto(cls, dto: JobSheet) -> JobSheetModel:
        """Create ORM model from domain DTO.  ``version`` is assigned on INSERT."""
        model = cls(id=dto.id, state=dto.state.value, priority=dto.priority.value)
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: JobSheet) -> None:
        """Copy every mutable field from ``dto`` onto this row."""
        self.state = dto.state.value
        self.priority = dto.priority.value
        for name in self._PLAIN_FIELDS:
            setattr(self, name, getattr(dto, name))
        for name in self._LIST_FIELDS:
            setattr(self, name, list(getattr(dto, name)))
