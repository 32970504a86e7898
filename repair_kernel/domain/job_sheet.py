"""
JobSheet -- the unit of repair work.

Responsibility:
    Immutable JobSheet value object plus the pure functions that derive a
    new JobSheet from an old one: recording documentation and entering a
    state.  Nothing here persists or validates business rules; the
    transition validator decides *whether*, these functions decide *what*.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``state`` is always a canonical JobState.
    - List-valued documentation (photos, parts, quality issues) is only
      ever appended to.
    - Entry timestamps are stamped once, on first entry to their state.

Failure modes:
    - ValueError from ``coerce_documentation`` for unknown fields or values
      that cannot be converted to the field's type.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from repair_kernel.domain.workflow import JobState


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


@dataclass(frozen=True)
class JobSheet:
    """One repair job and everything documented about it so far."""

    id: UUID
    job_number: str
    state: JobState
    customer_ref: str
    device_ref: str
    problem_description: str
    created_at: datetime
    updated_at: datetime
    priority: Priority = Priority.MEDIUM
    version: int = 1
    transition_count: int = 0
    technician_ref: str | None = None
    diagnosis_notes: str | None = None
    estimated_hours: Decimal | None = None
    estimated_cost: Decimal | None = None
    actual_hours: Decimal | None = None
    photos: tuple[str, ...] = ()
    parts_ordered: tuple[str, ...] = ()
    test_results: str | None = None
    quality_score: int | None = None
    quality_issues: tuple[str, ...] = ()
    final_price: Decimal | None = None
    satisfaction_rating: int | None = None
    started_at: datetime | None = None
    customer_approved_at: datetime | None = None
    completed_at: datetime | None = None
    customer_signed_off_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.DELIVERED, JobState.CANCELLED)


# ---------------------------------------------------------------------------
# Documentation fields
# ---------------------------------------------------------------------------


def _to_text(value: Any) -> str:
    return str(value).strip()


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        d = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"not a decimal: {value!r}") from None
    if not d.is_finite():
        raise ValueError(f"not a finite decimal: {value!r}")
    return d


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"not an integer: {value!r}") from None


def _to_items(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"not a list of strings: {value!r}")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _to_priority(value: Any) -> Priority:
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value).upper())
    except ValueError:
        raise ValueError(f"not a priority: {value!r}") from None


# Field name -> converter.  List fields append; everything else replaces.
DOCUMENTATION_FIELDS: dict[str, Any] = {
    "technician_ref": _to_text,
    "priority": _to_priority,
    "problem_description": _to_text,
    "diagnosis_notes": _to_text,
    "estimated_hours": _to_decimal,
    "estimated_cost": _to_decimal,
    "actual_hours": _to_decimal,
    "photos": _to_items,
    "parts_ordered": _to_items,
    "test_results": _to_text,
    "quality_score": _to_int,
    "quality_issues": _to_items,
    "final_price": _to_decimal,
    "satisfaction_rating": _to_int,
}

LIST_FIELDS = frozenset({"photos", "parts_ordered", "quality_issues"})

_RANGES: dict[str, tuple[int, int]] = {
    "quality_score": (0, 100),
    "satisfaction_rating": (1, 5),
}

_NON_NEGATIVE = frozenset({"estimated_hours", "estimated_cost", "actual_hours", "final_price"})


def coerce_documentation(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert raw documentation values to their field types.

    Raises:
        ValueError: unknown field, unconvertible value, or value out of range.
    """
    coerced: dict[str, Any] = {}
    for name, raw in fields.items():
        converter = DOCUMENTATION_FIELDS.get(name)
        if converter is None:
            raise ValueError(f"unknown documentation field {name!r}")
        if raw is None:
            raise ValueError(f"{name} cannot be cleared")
        value = converter(raw)
        if name in _RANGES:
            low, high = _RANGES[name]
            if not low <= value <= high:
                raise ValueError(f"{name} must be between {low} and {high}")
        if name in _NON_NEGATIVE and value < 0:
            raise ValueError(f"{name} must not be negative")
        coerced[name] = value
    return coerced


def apply_documentation(job: JobSheet, fields: dict[str, Any]) -> JobSheet:
    """Return a copy of ``job`` with already-coerced ``fields`` recorded."""
    changes: dict[str, Any] = {}
    for name, value in fields.items():
        if name in LIST_FIELDS:
            changes[name] = tuple(getattr(job, name)) + tuple(value)
        else:
            changes[name] = value
    return replace(job, **changes)


def is_present(value: Any) -> bool:
    """A field counts as present unless it is None or empty."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (tuple, list, frozenset, set, dict)):
        return len(value) > 0
    return True


def enter_state(
    job: JobSheet,
    target: JobState,
    *,
    now: datetime,
    actor: str,
    reason: str = "",
    entry_timestamp: str | None = None,
) -> JobSheet:
    """Return a copy of ``job`` moved into ``target``.

    ``entry_timestamp`` names the job field stamped on first entry; a
    field that is already set keeps its original value.
    """
    changes: dict[str, Any] = {
        "state": target,
        "updated_at": now,
        "transition_count": job.transition_count + 1,
    }
    if entry_timestamp and getattr(job, entry_timestamp) is None:
        changes[entry_timestamp] = now
    if target is JobState.CANCELLED:
        changes["cancellation_reason"] = reason.strip()
        changes["cancelled_by"] = actor
    return replace(job, **changes)
