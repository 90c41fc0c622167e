"""Polling observer that keeps a consolidated view of one research job.

The observer never writes the job record. It re-reads it on an interval,
derives the stage vector and stall state, and hands the resulting
:class:`JobView` to a subscriber callback. Two job sources are provided: an
in-process one backed by the controller, and an HTTP one that talks to the API.
"""
from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import httpx
from loguru import logger

from research_pipeline.application import JobController, RecoveryDispatcher
from research_pipeline.core.clock import Clock, SystemClock
from research_pipeline.core.schema import record_from_document
from research_pipeline.core.stall import PhaseTracker, StallThresholds
from research_pipeline.core.views import JobView, build_job_view
from research_pipeline.domain import (
    DispatchError,
    InvalidJobInputError,
    JobNotFoundError,
    JobRecord,
    JobStatus,
    JobTransitionError,
    RecoveryInProgressError,
    ResearchJobError,
)

EARLY_POLL_SECONDS = 3.0
WORK_POLL_SECONDS = 5.0
REVIEW_POLL_SECONDS = 10.0


def poll_interval(status: JobStatus) -> float:
    if status is JobStatus.REVIEW_READY:
        return REVIEW_POLL_SECONDS
    if status.order <= JobStatus.VALIDATING.order:
        return EARLY_POLL_SECONDS
    return WORK_POLL_SECONDS


class JobSource(Protocol):
    async def fetch_job(self, job_id: str) -> JobRecord: ...

    async def resume(self, workspace_id: str) -> JobRecord | None: ...

    async def cancel_job(self, job_id: str, reason: str | None = None) -> JobRecord: ...

    async def recover_job(self, job_id: str) -> dict[str, Any]: ...


class LocalJobSource:
    """Reads jobs straight from the in-process controller."""

    def __init__(self, controller: JobController, dispatcher: RecoveryDispatcher) -> None:
        self._controller = controller
        self._dispatcher = dispatcher

    async def fetch_job(self, job_id: str) -> JobRecord:
        return self._controller.get(job_id)

    async def resume(self, workspace_id: str) -> JobRecord | None:
        return self._controller.resume(workspace_id)

    async def cancel_job(self, job_id: str, reason: str | None = None) -> JobRecord:
        return self._controller.cancel(job_id, reason)

    async def recover_job(self, job_id: str) -> dict[str, Any]:
        result = await self._dispatcher.recover(job_id)
        return result.as_dict()


class HttpJobSource:
    """Reads jobs through the HTTP API, e.g. ``http://localhost:8000/api``."""

    def __init__(self, base_url: str, *, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must include scheme and host")
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def _request(self, method: str, path: str, *, job_id: str | None = None, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, f"{self._base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise ResearchJobError("research API unreachable", detail=str(exc)) from exc
        if response.is_success:
            return response

        detail = _error_detail(response)
        if response.status_code == 400:
            raise InvalidJobInputError(detail)
        if response.status_code == 404:
            raise JobNotFoundError(job_id or path)
        if response.status_code == 409:
            raise JobTransitionError(detail)
        if response.status_code == 502:
            raise DispatchError(detail)
        raise ResearchJobError(f"research API returned HTTP {response.status_code}", detail=detail)

    async def fetch_job(self, job_id: str) -> JobRecord:
        response = await self._request("GET", f"/research-jobs/{job_id}/record", job_id=job_id)
        return record_from_document(_json_body(response))

    async def resume(self, workspace_id: str) -> JobRecord | None:
        response = await self._request("GET", f"/workspaces/{workspace_id}/research-jobs/active")
        body = _json_body(response)
        view = body.get("job") if isinstance(body, dict) else None
        if not view:
            return None
        return await self.fetch_job(view["job_id"])

    async def cancel_job(self, job_id: str, reason: str | None = None) -> JobRecord:
        response = await self._request(
            "POST", f"/research-jobs/{job_id}/cancel", job_id=job_id, json={"reason": reason}
        )
        return record_from_document(_json_body(response))

    async def recover_job(self, job_id: str) -> dict[str, Any]:
        response = await self._request("POST", f"/research-jobs/{job_id}/recover", job_id=job_id)
        return _json_body(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ResearchJobError("research API returned a non-JSON body", detail=response.text[:200]) from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.text


class ObserverState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TERMINAL = "terminal"


class JobObserver:
    """Attach to a workspace's job and publish a fresh view on every tick."""

    def __init__(
        self,
        source: JobSource,
        *,
        clock: Clock | None = None,
        thresholds: StallThresholds | None = None,
        on_update: Callable[[JobView], None] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._clock = clock or SystemClock()
        self._thresholds = thresholds or StallThresholds()
        self._on_update = on_update
        self._sleep = sleep
        self._tracker = PhaseTracker()
        self._state = ObserverState.IDLE
        self._job_id: str | None = None
        self._view: JobView | None = None
        self._task: asyncio.Task[None] | None = None
        self._recovering = False

    @property
    def state(self) -> ObserverState:
        return self._state

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def view(self) -> JobView | None:
        return self._view

    async def attach(self, workspace_id: str, job_id: str | None = None) -> JobView | None:
        """Start observing; returns the first view or ``None`` when nothing is running.

        The workspace's active job is looked up first so that a reloaded client
        picks up where it left off. An explicit ``job_id`` is fetched directly
        when it is not the active one.
        """

        await self.detach()
        record = await self._source.resume(workspace_id)
        if job_id is not None and (record is None or record.id != job_id):
            record = await self._source.fetch_job(job_id)
        if record is None:
            logger.debug("No active research job for workspace {}", workspace_id)
            return None

        self._job_id = record.id
        self._state = ObserverState.ACTIVE
        view = self._publish(record)
        if self._state is ObserverState.ACTIVE:
            self._task = asyncio.create_task(self._run())
        return view

    async def tick(self) -> JobView:
        if self._job_id is None:
            raise RuntimeError("observer is not attached to a job")
        record = await self._source.fetch_job(self._job_id)
        return self._publish(record)

    async def detach(self) -> None:
        task, self._task = self._task, None
        if self._job_id is not None:
            self._tracker.forget(self._job_id)
        self._state = ObserverState.IDLE
        self._job_id = None
        self._view = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def wait(self) -> JobView | None:
        """Block until the polling loop ends (terminal status or detach)."""

        if self._task is not None:
            await asyncio.shield(self._task)
        return self._view

    async def recover(self) -> dict[str, Any]:
        if self._job_id is None:
            raise RuntimeError("observer is not attached to a job")
        if self._recovering:
            raise RecoveryInProgressError(self._job_id)
        self._recovering = True
        try:
            result = await self._source.recover_job(self._job_id)
        finally:
            self._recovering = False
        await self.tick()
        return result

    async def cancel(self, reason: str | None = None) -> JobView:
        if self._job_id is None:
            raise RuntimeError("observer is not attached to a job")
        record = await self._source.cancel_job(self._job_id, reason)
        return self._publish(record)

    def _publish(self, record: JobRecord) -> JobView:
        now = self._clock.now()
        entered_at = self._tracker.observe(record, now)
        view = build_job_view(record, now, phase_entered_at=entered_at, thresholds=self._thresholds)
        self._view = view
        if view.is_terminal:
            self._state = ObserverState.TERMINAL
        if self._on_update is not None:
            self._on_update(view)
        return view

    async def _run(self) -> None:
        while self._state is ObserverState.ACTIVE and self._view is not None:
            await self._sleep(poll_interval(self._view.status))
            if self._state is not ObserverState.ACTIVE:
                break
            try:
                await self.tick()
            except JobNotFoundError:
                logger.warning("Research job {} disappeared; stopping observer", self._job_id)
                self._state = ObserverState.IDLE
                break
            except ResearchJobError as exc:
                logger.warning("Polling research job {} failed: {}", self._job_id, exc.message)
            except Exception:
                logger.exception("Observer for research job {} stopped on an unexpected error", self._job_id)
                self._state = ObserverState.IDLE
                break
