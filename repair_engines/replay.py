"""
repair_engines.replay -- Transition record construction and history replay.

Responsibility:
    Build hash-chained TransitionRecords and verify a job's recorded
    history: contiguous sequences, an unbroken hash chain, state continuity
    from CREATED, and (optionally) that every step was a legal edge of
    the catalog.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Replaying a job's records from CREATED yields its current state.
    - record.hash == H(job, sequence, from, to, payload_hash, prev_hash)
      and record.prev_hash == previous record's hash.

Failure modes:
    - AuditChainBrokenError describing the first inconsistency found.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from repair_engines.tracer import traced_engine
from repair_kernel.domain.dtos import TransitionRecord
from repair_kernel.domain.workflow import INITIAL_STATE, JobState, StateCatalog
from repair_kernel.exceptions import AuditChainBrokenError
from repair_kernel.utils.hashing import hash_payload, hash_transition


@dataclass(frozen=True)
class ReplayResult:
    job_id: UUID
    final_state: JobState
    record_count: int
    head_hash: str | None


def build_transition_record(
    *,
    record_id: UUID,
    job_id: UUID,
    sequence: int,
    from_state: JobState,
    to_state: JobState,
    actor: str,
    occurred_at: datetime,
    reason: str = "",
    metadata: Mapping[str, Any] | None = None,
    request_id: str | None = None,
    prev_hash: str | None = None,
) -> TransitionRecord:
    """Construct a record with its payload hash and chained hash filled in."""
    draft = TransitionRecord(
        id=record_id,
        job_id=job_id,
        sequence=sequence,
        from_state=from_state,
        to_state=to_state,
        actor=actor,
        occurred_at=occurred_at,
        reason=reason,
        metadata=dict(metadata or {}),
        request_id=request_id,
        prev_hash=prev_hash,
        payload_hash="",
        hash="",
    )
    payload_hash = hash_payload(draft.payload())
    return TransitionRecord(
        id=record_id,
        job_id=job_id,
        sequence=sequence,
        from_state=from_state,
        to_state=to_state,
        actor=actor,
        occurred_at=occurred_at,
        reason=reason,
        metadata=draft.metadata,
        request_id=request_id,
        prev_hash=prev_hash,
        payload_hash=payload_hash,
        hash=hash_transition(
            job_id, sequence, from_state.value, to_state.value, payload_hash, prev_hash
        ),
    )


def replay_state(records: Sequence[TransitionRecord]) -> JobState:
    """State reached by applying ``records`` in order from CREATED."""
    state = INITIAL_STATE
    for record in sorted(records, key=lambda r: r.sequence):
        state = record.to_state
    return state


@traced_engine(
    "history_replay",
    "1.0",
    fingerprint_fields=("job_id", "expected_state"),
    summarize=lambda r: {"record_count": r.record_count, "final_state": r.final_state},
)
def verify_history(
    *,
    job_id: UUID,
    records: Sequence[TransitionRecord],
    catalog: StateCatalog | None = None,
    expected_state: JobState | None = None,
) -> ReplayResult:
    """Verify a job's full transition history.

    Raises:
        AuditChainBrokenError: on the first gap, hash mismatch, state
            discontinuity, illegal edge or final-state mismatch.
    """
    state = INITIAL_STATE
    prev_hash: str | None = None
    ordered = sorted(records, key=lambda r: r.sequence)

    for expected_sequence, record in enumerate(ordered, start=1):

        def broken(reason: str) -> AuditChainBrokenError:
            return AuditChainBrokenError(str(job_id), record.sequence, reason)

        if record.job_id != job_id:
            raise broken(f"record belongs to job {record.job_id}")
        if record.sequence != expected_sequence:
            raise broken(f"expected sequence {expected_sequence}")
        if record.from_state is not state:
            raise broken(f"from_state {record.from_state.value} but job was {state.value}")
        if catalog is not None and not catalog.get_state_definition(state).allows(
            record.to_state
        ):
            raise broken(f"illegal edge {state.value} -> {record.to_state.value}")
        if record.prev_hash != prev_hash:
            raise broken("prev_hash does not match previous record")

        payload_hash = hash_payload(record.payload())
        if payload_hash != record.payload_hash:
            raise broken("payload hash mismatch")
        expected_hash = hash_transition(
            job_id,
            record.sequence,
            record.from_state.value,
            record.to_state.value,
            payload_hash,
            prev_hash,
        )
        if expected_hash != record.hash:
            raise broken("record hash mismatch")

        state = record.to_state
        prev_hash = record.hash

    if expected_state is not None and state is not expected_state:
        raise AuditChainBrokenError(
            str(job_id),
            len(ordered),
            f"replayed state {state.value} differs from current {expected_state.value}",
        )

    return ReplayResult(
        job_id=job_id,
        final_state=state,
        record_count=len(ordered),
        head_hash=prev_hash,
    )
