"""Application service layer for research job lifecycle."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from research_pipeline.core.clock import Clock, SystemClock
from research_pipeline.core.queries import build_search_queries, clean_service_area
from research_pipeline.core.schema import (
    CreateJobRequest,
    ProgressUpdate,
    record_from_document,
    record_to_document,
)
from research_pipeline.core.stall import PhaseTracker
from research_pipeline.domain import (
    ACTIVE_STATUSES,
    COUNTER_FIELDS,
    ActiveJobExistsError,
    InvalidJobInputError,
    JobCounters,
    JobNotFoundError,
    JobRecord,
    JobStatus,
    JobTransitionError,
)
from research_pipeline.infrastructure import InMemoryJobRepository, JobRepository

SUPERSEDED_REASON = "Superseded by a new research job"

_ACTIVE_VALUES = frozenset(status.value for status in ACTIVE_STATUSES)


def _first_error(exc: ValidationError) -> InvalidJobInputError:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
    message = str(error.get("msg") or "invalid input").removeprefix("Value error, ")
    return InvalidJobInputError(message, field=location or None)


class JobController:
    """Creates, cancels, resumes and advances research jobs."""

    def __init__(self, repository: JobRepository, *, clock: Clock | None = None) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()
        self._create_lock = threading.Lock()

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, job_id: str) -> JobRecord:
        document = self._repository.get(job_id)
        if document is None:
            raise JobNotFoundError(job_id)
        return record_from_document(document)

    def resume(self, workspace_id: str) -> JobRecord | None:
        """Return the workspace's latest job while it is still active."""

        document = self._repository.latest_for_workspace(workspace_id)
        if document is None:
            return None
        record = record_from_document(document)
        return None if record.is_terminal else record

    def list_for_workspace(self, workspace_id: str) -> list[JobRecord]:
        return [record_from_document(item) for item in self._repository.list_for_workspace(workspace_id)]

    def list_active(self) -> list[JobRecord]:
        return [record_from_document(item) for item in self._repository.list_by_status(_ACTIVE_VALUES)]

    # ------------------------------------------------------------------
    # lifecycle writes
    # ------------------------------------------------------------------
    def create(
        self,
        workspace_id: str,
        niche_query: str,
        *,
        service_area: str | None = None,
        target_count: int | None = None,
        exclude_domains: list[str] | None = None,
        replace_active: bool = False,
    ) -> JobRecord:
        payload: dict[str, Any] = {
            "workspace_id": workspace_id or "",
            "niche_query": niche_query or "",
            "service_area": clean_service_area(service_area),
            "exclude_domains": exclude_domains or [],
        }
        if target_count is not None:
            payload["target_count"] = target_count
        try:
            request = CreateJobRequest(**payload)
        except ValidationError as exc:
            raise _first_error(exc) from exc

        with self._create_lock:
            active = self.resume(request.workspace_id)
            if active is not None:
                if not replace_active:
                    raise ActiveJobExistsError(request.workspace_id, active.id)
                self.cancel(active.id, SUPERSEDED_REASON)

            now = self._clock.now()
            record = JobRecord(
                id=self._repository.next_job_id(),
                workspace_id=request.workspace_id,
                status=JobStatus.QUEUED,
                niche_query=request.niche_query,
                service_area=request.service_area,
                target_count=request.target_count,
                search_queries=build_search_queries(request.niche_query, request.service_area),
                exclude_domains=request.exclude_domains,
                counters=JobCounters(),
                heartbeat_at=now,
                created_at=now,
                updated_at=now,
            )
            self._repository.insert(record_to_document(record))

        logger.info(
            "Created research job {} for workspace {} ({!r}, target {})",
            record.id,
            record.workspace_id,
            record.niche_query,
            record.target_count,
        )
        return record

    def cancel(self, job_id: str, reason: str | None = None) -> JobRecord:
        """Move an active job to ``cancelled``.

        The write is conditional on the job still being active. Work already
        dispatched to the engine is not stopped; the engine is expected to check
        the status before continuing.
        """

        current = self.get(job_id)
        if current.is_terminal:
            raise JobTransitionError(f"job {job_id} is already {current.status.value}")

        now = self._clock.now()
        updated = self._repository.update(
            job_id,
            {
                "status": JobStatus.CANCELLED.value,
                "completed_at": now.isoformat(),
                "error_message": reason or "Cancelled by user",
                "heartbeat_at": now.isoformat(),
                "updated_at": now.isoformat(),
                "current_scraping_domain": None,
            },
            expected_statuses=_ACTIVE_VALUES,
        )
        if updated is None:
            latest = self.get(job_id)
            raise JobTransitionError(f"job {job_id} is already {latest.status.value}")

        logger.info("Cancelled research job {}: {}", job_id, reason or "no reason given")
        return record_from_document(updated)

    # ------------------------------------------------------------------
    # review decisions
    # ------------------------------------------------------------------
    def confirm_review(self, job_id: str) -> JobRecord:
        """Accept the discovered sites and hand the job on to validation."""

        return self._leave_review(job_id, JobStatus.VALIDATING)

    def restart_discovery(self, job_id: str) -> JobRecord:
        """Reject the discovered sites and run discovery again."""

        return self._leave_review(job_id, JobStatus.DISCOVERING)

    def _leave_review(self, job_id: str, target: JobStatus) -> JobRecord:
        current = self.get(job_id)
        if current.status is not JobStatus.REVIEW_READY:
            raise JobTransitionError(f"job {job_id} is {current.status.value}, not awaiting review")

        now = self._clock.now()
        updated = self._repository.update(
            job_id,
            {
                "status": target.value,
                "heartbeat_at": now.isoformat(),
                "updated_at": now.isoformat(),
            },
            expected_statuses={JobStatus.REVIEW_READY.value},
        )
        if updated is None:
            latest = self.get(job_id)
            raise JobTransitionError(f"job {job_id} moved to {latest.status.value} before the review was applied")

        logger.info("Research job {} left review for {}", job_id, target.value)
        return record_from_document(updated)

    # ------------------------------------------------------------------
    # engine writes
    # ------------------------------------------------------------------
    def apply_progress(self, job_id: str, update: ProgressUpdate | dict[str, Any]) -> JobRecord:
        """Record a progress report from the workflow engine.

        Reports for terminal jobs are rejected, which is how a cancelled job is
        kept from being re-activated by a worker that has not noticed yet.
        """

        if not isinstance(update, ProgressUpdate):
            try:
                update = ProgressUpdate.model_validate(update)
            except ValidationError as exc:
                raise _first_error(exc) from exc

        current = self.get(job_id)
        if current.is_terminal:
            raise JobTransitionError(f"job {job_id} is {current.status.value}; progress ignored")

        next_status = update.status or current.status
        self._check_transition(current, next_status)

        now = self._clock.now()
        changes: dict[str, Any] = {
            "status": next_status.value,
            "heartbeat_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        for name in COUNTER_FIELDS:
            if name not in update.counters:
                continue
            previous = getattr(current.counters, name)
            reported = update.counters[name]
            if reported < previous:
                logger.debug("Ignoring decrease of {} for job {} ({} -> {})", name, job_id, previous, reported)
            changes[name] = max(previous, reported)

        if update.clear_current_domain or next_status is not JobStatus.SCRAPING:
            changes["current_scraping_domain"] = None
        if update.current_scraping_domain:
            changes["current_scraping_domain"] = update.current_scraping_domain
        if update.error_message is not None:
            changes["error_message"] = update.error_message
        if next_status in (JobStatus.COMPLETED, JobStatus.ERROR):
            changes["completed_at"] = now.isoformat()
            changes["current_scraping_domain"] = None

        updated = self._repository.update(job_id, changes, expected_statuses={current.status.value})
        if updated is None:
            latest = self.get(job_id)
            raise JobTransitionError(
                f"job {job_id} moved to {latest.status.value} while applying progress; report rejected"
            )

        record = record_from_document(updated)
        if next_status is not current.status:
            logger.info("Research job {} advanced {} -> {}", job_id, current.status.value, next_status.value)
        if next_status is JobStatus.ERROR:
            logger.warning("Research job {} failed: {}", job_id, record.error_message or "no message")
        return record

    @staticmethod
    def _check_transition(current: JobRecord, target: JobStatus) -> None:
        if target is current.status or target is JobStatus.ERROR:
            return
        if target is JobStatus.CANCELLED:
            raise JobTransitionError("cancellation must go through the cancel operation")
        if current.status is JobStatus.REVIEW_READY and target is JobStatus.DISCOVERING:
            return
        if target.order < current.status.order:
            raise JobTransitionError(
                f"job {current.id} cannot move back from {current.status.value} to {target.value}"
            )

    # ------------------------------------------------------------------
    # recovery bookkeeping
    # ------------------------------------------------------------------
    def note_recovery_attempt(self, job_id: str, at: datetime) -> JobRecord | None:
        """Bump ``retry_count`` for an active job; ``None`` if it went terminal."""

        current = self.get(job_id)
        updated = self._repository.update(
            job_id,
            {
                "retry_count": current.retry_count + 1,
                "last_recovery_at": at.isoformat(),
                "updated_at": at.isoformat(),
            },
            expected_statuses=_ACTIVE_VALUES,
        )
        return record_from_document(updated) if updated is not None else None

    def fail_stalled(self, job_id: str, message: str) -> JobRecord | None:
        now = self._clock.now()
        updated = self._repository.update(
            job_id,
            {
                "status": JobStatus.ERROR.value,
                "error_message": message,
                "completed_at": now.isoformat(),
                "updated_at": now.isoformat(),
                "current_scraping_domain": None,
            },
            expected_statuses=_ACTIVE_VALUES,
        )
        if updated is None:
            return None
        logger.warning("Research job {} marked as error: {}", job_id, message)
        return record_from_document(updated)

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._repository.reset()


_repository = InMemoryJobRepository()
_controller = JobController(_repository)


def get_job_controller() -> JobController:
    """Return the singleton job controller for the process."""

    return _controller


def get_job_repository() -> JobRepository:
    return _repository


_phase_tracker = PhaseTracker()


def get_phase_tracker() -> PhaseTracker:
    """Phase entry times seen by this process's poll endpoint."""

    return _phase_tracker


def reset_job_state() -> None:
    """Reset the in-memory store and phase tracking (used in tests)."""

    _controller.reset()
    _phase_tracker.reset()
