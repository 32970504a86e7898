"""
repair_services.collaborators -- Capability interfaces for side effects.

Responsibility:
    Structural protocols for the external systems automation talks to:
    notification delivery, quality scoring, follow-up scheduling, document
    generation and metrics.  ``AutomationCollaborators`` bundles them so
    the executor receives one capability object.

Architecture position:
    Services layer.  Interfaces only -- concrete adapters live with the
    deployment; tests substitute recording fakes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from repair_kernel.domain.workflow import Channel
from repair_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


@dataclass(frozen=True)
class DeliveryHandle:
    """Receipt returned by the notification gateway."""

    delivery_id: str
    channel: Channel


@dataclass(frozen=True)
class QualityAssessment:
    score: int
    issues: tuple[str, ...] = ()


@runtime_checkable
class NotificationGateway(Protocol):
    def send(
        self,
        channel: Channel,
        template: str,
        recipient: str,
        data: Mapping[str, Any],
    ) -> DeliveryHandle: ...


@runtime_checkable
class QualityScorer(Protocol):
    def score_job(self, job_id: UUID) -> QualityAssessment: ...


@runtime_checkable
class FollowUpScheduler(Protocol):
    def schedule_follow_up(self, job_id: UUID, delay: timedelta, task: str) -> str: ...


@runtime_checkable
class DocumentGenerator(Protocol):
    def generate(self, job_id: UUID, document: str) -> str: ...


@runtime_checkable
class MetricsRecorder(Protocol):
    def record_quality_metric(
        self, job_id: UUID, score: int, issues: Sequence[str]
    ) -> None: ...


@dataclass(frozen=True)
class AutomationCollaborators:
    """Everything automation may call.  A missing collaborator skips its effects."""

    notifier: NotificationGateway | None = None
    quality: QualityScorer | None = None
    scheduler: FollowUpScheduler | None = None
    documents: DocumentGenerator | None = None
    metrics: MetricsRecorder | None = None


class LoggingNotificationGateway:
    """Notification gateway that only writes each message to the log.

    Used by the command-line sweep when no delivery provider is wired in.
    """

    def __init__(self) -> None:
        self._count = 0

    def send(
        self,
        channel: Channel,
        template: str,
        recipient: str,
        data: Mapping[str, Any],
    ) -> DeliveryHandle:
        self._count += 1
        delivery_id = f"log-{self._count}"
        logger.info(
            "notification_logged",
            extra={
                "channel": channel.value,
                "template": template,
                "recipient": recipient,
                "delivery_id": delivery_id,
                "job_number": data.get("job_number"),
            },
        )
        return DeliveryHandle(delivery_id=delivery_id, channel=channel)
