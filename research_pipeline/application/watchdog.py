"""Periodic sweep that re-signals research jobs whose worker went quiet."""
from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from research_pipeline.application.jobs import JobController, get_job_controller
from research_pipeline.application.recovery import RecoveryDispatcher, get_recovery_dispatcher
from research_pipeline.core.clock import Clock
from research_pipeline.core.stall import StallThresholds, heartbeat_age
from research_pipeline.domain import (
    ACTIVE_STATUSES,
    DispatchError,
    JobStatus,
    JobTransitionError,
    RecoveryInProgressError,
)

# Queued jobs have not been picked up yet and review_ready jobs wait on a human.
SWEEP_STATUSES = frozenset(ACTIVE_STATUSES - {JobStatus.QUEUED, JobStatus.REVIEW_READY})


@dataclass(slots=True)
class SweepReport:
    checked: int = 0
    restarted: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "checked": self.checked,
            "restarted": self.restarted,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class RecoveryWatchdog:
    def __init__(
        self,
        controller: JobController,
        dispatcher: RecoveryDispatcher,
        *,
        thresholds: StallThresholds | None = None,
        max_retries: int = 3,
        clock: Clock | None = None,
    ) -> None:
        self._controller = controller
        self._dispatcher = dispatcher
        self._thresholds = thresholds or StallThresholds()
        self._max_retries = max_retries
        self._clock = clock or controller.clock

    def configure(self, *, thresholds: StallThresholds | None = None, max_retries: int | None = None) -> None:
        if thresholds is not None:
            self._thresholds = thresholds
        if max_retries is not None:
            self._max_retries = max_retries

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        now = self._clock.now()
        stale_after = self._thresholds.stale_after

        for record in self._controller.list_active():
            if record.status not in SWEEP_STATUSES:
                continue
            if heartbeat_age(record, now) <= stale_after:
                continue
            report.checked += 1

            if record.last_recovery_at is not None and now - record.last_recovery_at <= stale_after:
                report.skipped += 1
                continue
            if self._dispatcher.is_in_flight(record.id):
                logger.debug("Recovery of job {} already in flight; leaving it alone", record.id)
                report.skipped += 1
                continue

            if record.retry_count + 1 > self._max_retries:
                message = f"Job stalled after {self._max_retries} retries"
                if self._controller.fail_stalled(record.id, message) is not None:
                    report.failed += 1
                continue

            if self._controller.note_recovery_attempt(record.id, now) is None:
                continue
            try:
                await self._dispatcher.recover(record.id)
            except (RecoveryInProgressError, JobTransitionError):
                report.skipped += 1
                continue
            except DispatchError as exc:
                logger.warning("Watchdog could not restart job {}: {}", record.id, exc.message)
                report.errors.append(f"{record.id}: {exc.message}")
                continue
            report.restarted += 1

        logger.info(
            "Watchdog sweep: checked={} restarted={} failed={} skipped={}",
            report.checked,
            report.restarted,
            report.failed,
            report.skipped,
        )
        return report


_watchdog: RecoveryWatchdog | None = None


def get_recovery_watchdog() -> RecoveryWatchdog:
    global _watchdog
    if _watchdog is None:
        _watchdog = RecoveryWatchdog(get_job_controller(), get_recovery_dispatcher())
    return _watchdog
