"""
Recording collaborators for automation and escalation tests.

Each fake records every call it receives so tests can assert exactly which
side effects ran, and with what data.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from repair_kernel.domain.workflow import Channel
from repair_services.collaborators import DeliveryHandle, QualityAssessment


@dataclass
class SentMessage:
    channel: Channel
    template: str
    recipient: str
    data: dict[str, Any]


class RecordingNotifier:
    def __init__(self):
        self.sent: list[SentMessage] = []

    def send(self, channel, template, recipient, data):
        self.sent.append(SentMessage(channel, template, recipient, dict(data)))
        return DeliveryHandle(delivery_id=f"msg-{len(self.sent)}", channel=channel)

    def templates(self) -> list[str]:
        return [m.template for m in self.sent]


class FailingNotifier(RecordingNotifier):
    """Raises for the templates listed in ``fail_on`` (all when empty)."""

    def __init__(self, *fail_on: str):
        super().__init__()
        self.fail_on = set(fail_on)
        self.attempts = 0

    def send(self, channel, template, recipient, data):
        self.attempts += 1
        if not self.fail_on or template in self.fail_on:
            raise ConnectionError(f"gateway unavailable for {template}")
        return super().send(channel, template, recipient, data)


class StubQualityScorer:
    def __init__(self, score: int = 97, issues: tuple[str, ...] = ()):
        self.score = score
        self.issues = issues
        self.calls: list[UUID] = []

    def score_job(self, job_id):
        self.calls.append(job_id)
        return QualityAssessment(score=self.score, issues=self.issues)


@dataclass
class RecordingScheduler:
    scheduled: list[tuple[UUID, timedelta, str]] = field(default_factory=list)

    def schedule_follow_up(self, job_id, delay, task):
        self.scheduled.append((job_id, delay, task))
        return f"task-{len(self.scheduled)}"


@dataclass
class RecordingDocuments:
    generated: list[tuple[UUID, str]] = field(default_factory=list)

    def generate(self, job_id, document):
        self.generated.append((job_id, document))
        return f"doc-{document}-{len(self.generated)}"


@dataclass
class RecordingMetrics:
    recorded: list[tuple[UUID, int, tuple[str, ...]]] = field(default_factory=list)

    def record_quality_metric(self, job_id, score, issues):
        self.recorded.append((job_id, score, tuple(issues)))
