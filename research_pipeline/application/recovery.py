"""Recovery dispatch for stalled research jobs."""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from research_pipeline.application.jobs import JobController, get_job_controller
from research_pipeline.core.clock import Clock
from research_pipeline.domain import (
    DispatchError,
    JobTransitionError,
    RecoveryInProgressError,
)
from research_pipeline.infrastructure import WorkflowEngine, get_workflow_engine, resume_target


@dataclass(slots=True)
class RecoveryResult:
    job_id: str
    target: str
    action: str
    dispatched_at: datetime
    metadata: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "target": self.target,
            "action": self.action,
            "dispatched_at": self.dispatched_at.isoformat(),
            "metadata": self.metadata,
        }


class RecoveryDispatcher:
    """Asks the workflow engine to resume a job, one request per job at a time.

    The dispatcher never changes the job's status. It is safe to call again after
    a reload; the engine is responsible for idempotency across processes.
    """

    def __init__(
        self,
        controller: JobController,
        engine: WorkflowEngine | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._controller = controller
        self._engine = engine
        self._clock = clock or controller.clock
        self._in_flight: set[str] = set()
        self._guard = threading.Lock()

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine or get_workflow_engine()

    def is_in_flight(self, job_id: str) -> bool:
        with self._guard:
            return job_id in self._in_flight

    def _claim(self, job_id: str) -> None:
        with self._guard:
            if job_id in self._in_flight:
                raise RecoveryInProgressError(job_id)
            self._in_flight.add(job_id)

    def _release(self, job_id: str) -> None:
        with self._guard:
            self._in_flight.discard(job_id)

    async def recover(self, job_id: str) -> RecoveryResult:
        record = self._controller.get(job_id)
        if record.is_terminal:
            raise JobTransitionError(f"job {job_id} is {record.status.value}; start a new job instead")
        target = resume_target(record.status)
        if target is None:
            raise JobTransitionError(f"job {job_id} is waiting for review; nothing to resume")

        self._claim(job_id)
        try:
            logger.info("Dispatching recovery of {} for job {}", target, job_id)
            try:
                receipt = await asyncio.to_thread(self.engine.resume, record, target)
            except DispatchError:
                logger.warning("Recovery dispatch for job {} failed", job_id)
                raise
            except Exception as exc:
                logger.exception("Unexpected error dispatching recovery for job {}", job_id)
                raise DispatchError(f"recovery dispatch for job {job_id} failed", detail=str(exc)) from exc
        finally:
            self._release(job_id)

        return RecoveryResult(
            job_id=job_id,
            target=receipt.target,
            action=receipt.action,
            dispatched_at=self._clock.now(),
            metadata=receipt.metadata,
        )

    async def continue_after_review(self, job_id: str, *, restart: bool = False) -> RecoveryResult:
        """Apply the review decision, then signal the worker for the new phase.

        The status is written before the engine is called. When the dispatch
        fails the job is left in its new phase with a fresh heartbeat, so the
        watchdog picks it up once the heartbeat goes stale.
        """

        if restart:
            self._controller.restart_discovery(job_id)
        else:
            self._controller.confirm_review(job_id)
        return await self.recover(job_id)


_dispatcher: RecoveryDispatcher | None = None


def get_recovery_dispatcher() -> RecoveryDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = RecoveryDispatcher(get_job_controller())
    return _dispatcher
