"""
Hash-chained transition records and history verification.

Replaying a job's records from CREATED must reproduce its state; any
tampering, gap or discontinuity must be detected.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from repair_engines.replay import build_transition_record, replay_state, verify_history
from repair_kernel.domain.workflow import JobState
from repair_kernel.exceptions import AuditChainBrokenError
from repair_kernel.utils.hashing import GENESIS, hash_transition

T0 = datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)

PATH = [
    JobState.CREATED,
    JobState.IN_DIAGNOSIS,
    JobState.AWAITING_APPROVAL,
    JobState.APPROVED,
    JobState.IN_PROGRESS,
]


def build_chain(job_id, states=PATH, **overrides):
    records = []
    prev = None
    for seq, (src, dst) in enumerate(zip(states, states[1:]), start=1):
        record = build_transition_record(
            record_id=uuid4(),
            job_id=job_id,
            sequence=seq,
            from_state=src,
            to_state=dst,
            actor="tech-7",
            occurred_at=T0 + timedelta(minutes=seq),
            reason=overrides.get("reason", ""),
            metadata={"bench": seq},
            prev_hash=prev,
        )
        records.append(record)
        prev = record.hash
    return records


@pytest.fixture
def job_id():
    return uuid4()


class TestBuildRecord:
    def test_first_record_chains_to_genesis(self, job_id):
        record = build_chain(job_id)[0]
        assert record.prev_hash is None
        assert record.hash == hash_transition(
            job_id, 1, "CREATED", "IN_DIAGNOSIS", record.payload_hash, GENESIS
        )

    def test_chain_links(self, job_id):
        records = build_chain(job_id)
        for prev, current in zip(records, records[1:]):
            assert current.prev_hash == prev.hash

    def test_payload_changes_change_hash(self, job_id):
        plain = build_chain(job_id)[0]
        with_reason = build_chain(job_id, reason="customer asked")[0]
        assert plain.payload_hash != with_reason.payload_hash
        assert plain.hash != with_reason.hash


class TestReplay:
    def test_replay_reaches_last_state(self, job_id):
        assert replay_state(build_chain(job_id)) is JobState.IN_PROGRESS

    def test_replay_of_nothing_is_created(self):
        assert replay_state([]) is JobState.CREATED

    def test_verify_valid_history(self, job_id, catalog):
        records = build_chain(job_id)
        result = verify_history(
            job_id=job_id, records=records, catalog=catalog, expected_state=JobState.IN_PROGRESS
        )
        assert result.final_state is JobState.IN_PROGRESS
        assert result.record_count == 4
        assert result.head_hash == records[-1].hash

    def test_order_of_input_does_not_matter(self, job_id):
        records = build_chain(job_id)
        assert verify_history(job_id=job_id, records=list(reversed(records))).record_count == 4


class TestTamperDetection:
    def test_altered_reason_detected(self, job_id):
        records = build_chain(job_id)
        records[1] = replace(records[1], reason="edited later")
        with pytest.raises(AuditChainBrokenError, match="payload hash mismatch"):
            verify_history(job_id=job_id, records=records)

    def test_altered_state_detected(self, job_id):
        records = build_chain(job_id)
        records[-1] = replace(records[-1], to_state=JobState.PARTS_ORDERED)
        with pytest.raises(AuditChainBrokenError, match="record hash mismatch"):
            verify_history(job_id=job_id, records=records)

    def test_missing_record_detected(self, job_id):
        records = build_chain(job_id)
        del records[1]
        with pytest.raises(AuditChainBrokenError, match="expected sequence 2"):
            verify_history(job_id=job_id, records=records)

    def test_broken_link_detected(self, job_id):
        records = build_chain(job_id)
        records[2] = replace(records[2], prev_hash="0" * 64)
        with pytest.raises(AuditChainBrokenError, match="prev_hash"):
            verify_history(job_id=job_id, records=records)

    def test_discontinuity_detected(self, job_id):
        records = build_chain(job_id, states=[JobState.CREATED, JobState.IN_DIAGNOSIS])
        bogus = build_transition_record(
            record_id=uuid4(), job_id=job_id, sequence=2,
            from_state=JobState.TESTING, to_state=JobState.QUALITY_CHECK,
            actor="x", occurred_at=T0, prev_hash=records[0].hash,
        )
        with pytest.raises(AuditChainBrokenError, match="from_state TESTING"):
            verify_history(job_id=job_id, records=records + [bogus])

    def test_illegal_edge_detected_with_catalog(self, job_id, catalog):
        records = build_chain(job_id, states=[JobState.CREATED, JobState.DELIVERED])
        verify_history(job_id=job_id, records=records)
        with pytest.raises(AuditChainBrokenError, match="illegal edge"):
            verify_history(job_id=job_id, records=records, catalog=catalog)

    def test_foreign_record_detected(self, job_id):
        records = build_chain(uuid4())
        with pytest.raises(AuditChainBrokenError, match="belongs to job"):
            verify_history(job_id=job_id, records=records)

    def test_state_mismatch_detected(self, job_id):
        with pytest.raises(AuditChainBrokenError, match="differs from current"):
            verify_history(
                job_id=job_id, records=build_chain(job_id), expected_state=JobState.TESTING
            )
