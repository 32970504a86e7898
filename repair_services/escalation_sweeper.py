"""
EscalationSweeper -- Periodic overdue-job notifier.

Contract:
    ``sweep()`` finds open jobs that have stayed in their current state
    longer than the state's escalation timeout and sends one advisory
    notice per job per residency to the state's escalation role.
    ``start()`` / ``stop()`` run sweeps on a background thread.

Architecture: repair_services.  Uses repair_engines.escalation for the
    pure overdue evaluation; this class owns the clock, the notification
    and the escalation log.

Invariants enforced:
    - Advisory only: a sweep never changes job state, version or audit.
    - At most one notice per (job, residency): the escalation log is keyed
      on the job's transition count, so a job that leaves and re-enters a
      state can be escalated again.
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop signal is checked between jobs.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from repair_engines.escalation import OverdueJob, find_overdue_jobs
from repair_kernel.domain.clock import Clock, SystemClock
from repair_kernel.domain.dtos import EscalationNotice
from repair_kernel.domain.workflow import StateCatalog
from repair_kernel.exceptions import PersistenceError
from repair_kernel.logging_config import LogContext, get_logger
from repair_kernel.services.job_repository import JobRepository
from repair_services.collaborators import NotificationGateway

logger = get_logger("services.escalation_sweeper")


@dataclass(frozen=True)
class SweepResult:
    """Counts from one sweep."""

    checked: int = 0
    overdue: int = 0
    notified: int = 0
    already_notified: int = 0
    failed: int = 0


class EscalationSweeper:
    """Sends escalation notices for jobs stuck past their state timeout.

    Contract:
        - ``sweep()`` is safe to run from several processes at once; the
          unique escalation log entry decides which one records a notice.
        - A notice that fails to send is logged and retried next sweep.

    Non-goals:
        - Does NOT move jobs between states.
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        catalog: StateCatalog,
        repository_factory: Callable[[], JobRepository],
        notifier: NotificationGateway,
        clock: Clock | None = None,
        interval_seconds: int | None = None,
    ):
        self._catalog = catalog
        self._repository_factory = repository_factory
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else catalog.settings.escalation_sweep_interval_seconds
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def sweep(self) -> SweepResult:
        """Evaluate every open job once and notify the overdue ones."""
        now = self._clock.now()
        repository = self._repository_factory()
        try:
            jobs = repository.list_open_jobs()
            overdue = find_overdue_jobs(jobs=jobs, catalog=self._catalog, now=now)

            notified = already = failed = 0
            for item in overdue:
                if self._stop_event.is_set():
                    break
                with LogContext.bind(job_id=str(item.job.id)):
                    outcome = self._escalate(repository, item)
                if outcome == "notified":
                    notified += 1
                elif outcome == "already_notified":
                    already += 1
                else:
                    failed += 1
        finally:
            repository.close()

        result = SweepResult(
            checked=len(jobs),
            overdue=len(overdue),
            notified=notified,
            already_notified=already,
            failed=failed,
        )
        logger.info(
            "escalation_sweep_completed",
            extra={
                "checked": result.checked,
                "overdue": result.overdue,
                "notified": result.notified,
                "already_notified": result.already_notified,
                "failed": result.failed,
            },
        )
        return result

    def start(self) -> None:
        """Start sweeping in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("escalation_sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("escalation_sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("escalation_sweep_failed")
            self._stop_event.wait(timeout=self._interval)

    def _escalate(self, repository: JobRepository, item: OverdueJob) -> str:
        job = item.job
        if repository.has_escalation(job.id, item.state_sequence):
            return "already_notified"

        settings = self._catalog.settings
        definition = self._catalog.get_state_definition(job.state)
        overdue_seconds = int(item.overdue_by.total_seconds())
        try:
            handle = self._notifier.send(
                settings.escalation_channel,
                settings.escalation_template,
                f"role:{item.role}",
                {
                    "job_id": str(job.id),
                    "job_number": job.job_number,
                    "state": job.state.value,
                    "state_name": definition.name,
                    "role": item.role,
                    "timeout_hours": item.timeout.total_seconds() / 3600,
                    "overdue_by_seconds": overdue_seconds,
                    "priority": job.priority.value,
                },
            )
        except Exception:
            logger.warning(
                "escalation_send_failed",
                extra={"job_number": job.job_number, "role": item.role},
                exc_info=True,
            )
            return "failed"

        notice = EscalationNotice(
            id=uuid4(),
            job_id=job.id,
            job_number=job.job_number,
            state=job.state,
            state_sequence=item.state_sequence,
            role=item.role,
            overdue_by_seconds=overdue_seconds,
            sent_at=self._clock.now(),
            delivery_id=handle.delivery_id,
        )
        try:
            recorded = repository.record_escalation(notice)
        except PersistenceError:
            logger.error(
                "escalation_not_recorded",
                extra={"job_number": job.job_number, "delivery_id": handle.delivery_id},
                exc_info=True,
            )
            return "failed"
        if not recorded:
            return "already_notified"

        logger.warning(
            "job_escalated",
            extra={
                "job_number": job.job_number,
                "state": job.state.value,
                "role": item.role,
                "overdue_by_seconds": overdue_seconds,
            },
        )
        return "notified"
