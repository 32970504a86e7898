"""
Job intake and in-state documentation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from repair_kernel.domain.dtos import EffectStatus
from repair_kernel.domain.job_sheet import Priority
from repair_kernel.domain.workflow import JobState
from repair_kernel.exceptions import (
    ConcurrentModificationError,
    FieldNotEditableError,
    InvalidJobSheetError,
    JobNotFoundError,
    TerminalStateError,
)


class TestCreateJob:
    def test_new_job_starts_in_created(self, job_service, deterministic_clock):
        created = job_service.create_job(
            customer_ref="cust-9",
            device_ref="pixel-7",
            problem_description="Cracked back glass",
            actor="front-desk",
            priority="high",
        )
        job = created.job
        assert job.state is JobState.CREATED
        assert job.version == 1
        assert job.transition_count == 0
        assert job.priority is Priority.HIGH
        assert job.created_at == job.updated_at == deterministic_clock.now()

    def test_job_numbers_are_sequential_per_year(self, create_job):
        first, second = create_job(), create_job()
        assert first.job_number == "RX-2024-000001"
        assert second.job_number == "RX-2024-000002"

    def test_created_automation_runs_at_sequence_zero(self, job_service, notifier):
        created = job_service.create_job(
            customer_ref="cust-9", device_ref="d", problem_description="p",
            actor="desk", technician_ref="tech-3",
        )
        assert [e.status for e in created.effects] == [EffectStatus.SUCCEEDED] * 2
        assert notifier.templates() == ["customer_confirmation", "technician_assignment"]
        assert notifier.sent[1].recipient == "tech-3"
        assert notifier.sent[0].data["job_number"] == created.job.job_number

    def test_technician_notice_skipped_without_technician(self, job_service, notifier):
        created = job_service.create_job(
            customer_ref="cust-9", device_ref="d", problem_description="p", actor="desk",
        )
        statuses = {e.effect_key: e.status for e in created.effects}
        assert statuses["notify:email:customer_confirmation"] is EffectStatus.SUCCEEDED
        assert statuses["notify:sms:technician_assignment"] is EffectStatus.SKIPPED

    def test_intake_photos_recorded(self, create_job):
        job = create_job(photos=["front.jpg", "back.jpg"])
        assert job.photos == ("front.jpg", "back.jpg")

    @pytest.mark.parametrize("missing", ["customer_ref", "device_ref", "problem_description"])
    def test_intake_fields_required(self, create_job, missing):
        with pytest.raises(InvalidJobSheetError) as exc_info:
            create_job(**{missing: "  "})
        assert f"{missing} is required" in exc_info.value.messages

    def test_too_many_intake_photos(self, create_job):
        with pytest.raises(InvalidJobSheetError) as exc_info:
            create_job(photos=[f"p{i}.jpg" for i in range(6)])
        assert "at most 5 photos allowed in state CREATED" in exc_info.value.messages


class TestRecordDocumentation:
    def test_records_editable_fields(self, job_service, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        updated = job_service.record_documentation(
            job.id, {"diagnosis_notes": "Swollen battery", "estimated_cost": "89.90"}, actor="tech-7"
        )
        assert updated.diagnosis_notes == "Swollen battery"
        assert updated.estimated_cost == Decimal("89.90")
        assert updated.state is JobState.IN_DIAGNOSIS
        assert updated.version == 3

    def test_photos_append(self, job_service, create_job):
        job = create_job(photos=["intake.jpg"])
        updated = job_service.record_documentation(job.id, {"photos": ["extra.jpg"]}, actor="desk")
        assert updated.photos == ("intake.jpg", "extra.jpg")

    def test_field_outside_state_rejected(self, job_service, create_job):
        job = create_job()
        with pytest.raises(FieldNotEditableError) as exc_info:
            job_service.record_documentation(job.id, {"quality_score": 99}, actor="desk")
        assert exc_info.value.fields == ("quality_score",)

    def test_bad_value_rejected(self, job_service, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        with pytest.raises(InvalidJobSheetError):
            job_service.record_documentation(job.id, {"estimated_hours": "-2"}, actor="tech-7")

    @pytest.mark.parametrize("fields", [{"photos": 5}, {"estimated_hours": "NaN"}])
    def test_malformed_value_rejected(self, job_service, lifecycle, create_job, fields):
        job = create_job()
        lifecycle.transition(job.id, "IN_DIAGNOSIS", actor="tech-7")
        with pytest.raises(InvalidJobSheetError):
            job_service.record_documentation(job.id, fields, actor="tech-7")

    def test_stale_version_rejected(self, job_service, create_job):
        job = create_job()
        job_service.record_documentation(job.id, {"technician_ref": "tech-2"}, actor="desk")
        with pytest.raises(ConcurrentModificationError):
            job_service.record_documentation(
                job.id, {"technician_ref": "tech-3"}, actor="desk", expected_version=job.version
            )

    def test_terminal_job_rejected(self, job_service, lifecycle, create_job):
        job = create_job()
        lifecycle.transition(job.id, "CANCELLED", actor="m", reason="no show")
        with pytest.raises(TerminalStateError):
            job_service.record_documentation(job.id, {"technician_ref": "tech-2"}, actor="m")

    def test_unknown_job(self, job_service):
        with pytest.raises(JobNotFoundError):
            job_service.record_documentation(uuid4(), {"technician_ref": "x"}, actor="m")
