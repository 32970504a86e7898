"""
repair_services -- Imperative shell of the job-sheet workflow.

Coordinates the pure engines with persistence, the clock and external
collaborators.  Only ``LifecycleEngine`` changes job state.
"""

from repair_services.automation_executor import AutomationExecutor
from repair_services.collaborators import (
    AutomationCollaborators,
    DeliveryHandle,
    DocumentGenerator,
    FollowUpScheduler,
    LoggingNotificationGateway,
    MetricsRecorder,
    NotificationGateway,
    QualityAssessment,
    QualityScorer,
)
from repair_services.escalation_sweeper import EscalationSweeper, SweepResult
from repair_services.job_sheet_service import CreatedJob, JobSheetService
from repair_services.lifecycle_engine import LifecycleEngine
from repair_services.reporting import AuditExport, JobStateReport, WorkflowReportService

__all__ = [
    "AuditExport",
    "AutomationCollaborators",
    "AutomationExecutor",
    "CreatedJob",
    "DeliveryHandle",
    "DocumentGenerator",
    "EscalationSweeper",
    "FollowUpScheduler",
    "JobSheetService",
    "JobStateReport",
    "LifecycleEngine",
    "LoggingNotificationGateway",
    "MetricsRecorder",
    "NotificationGateway",
    "QualityAssessment",
    "QualityScorer",
    "SweepResult",
    "WorkflowReportService",
]
