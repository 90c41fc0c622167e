"""Hooks for signalling the external research workflow engine.

The engine owns the scraping and extraction workers. This service never runs
them; it only asks the engine to resume the worker that owns a job's current
phase. Without ``RESEARCH_ENGINE_URL`` a no-op engine is installed so the API
and tests run without a remote dependency.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from research_pipeline.domain import DispatchError, JobRecord, JobStatus

# Worker that must be re-signalled to resume a job in the given phase.
RESUME_TARGETS: dict[JobStatus, str] = {
    JobStatus.QUEUED: "discover",
    JobStatus.GEOCODING: "discover",
    JobStatus.DISCOVERING: "discover",
    JobStatus.FILTERING: "discover",
    JobStatus.VALIDATING: "validate",
    JobStatus.SCRAPING: "scrape",
    JobStatus.EXTRACTING: "extract",
    JobStatus.DEDUPLICATING: "dedupe",
    JobStatus.REFINING: "refine",
    JobStatus.EMBEDDING: "refine",
}


def resume_target(status: JobStatus) -> str | None:
    return RESUME_TARGETS.get(status)


@dataclass(slots=True)
class DispatchReceipt:
    """What the engine acknowledged for a resume request."""

    job_id: str
    target: str
    action: str = "resume_requested"
    metadata: dict[str, Any] | None = None


class WorkflowEngine(Protocol):
    """Contract for engine integrations."""

    def resume(self, job: JobRecord, target: str) -> DispatchReceipt:
        """Ask the engine to resume ``target`` for ``job``; raise on failure."""


class NoOpWorkflowEngine:
    """Fallback engine used when no engine endpoint is configured."""

    def resume(self, job: JobRecord, target: str) -> DispatchReceipt:
        logger.info("No workflow engine configured; skipping resume of {} for job {}", target, job.id)
        return DispatchReceipt(job_id=job.id, target=target, action="noop", metadata={"provider": "noop"})


class HttpWorkflowEngine:
    """Signals the engine over HTTP: ``POST {base_url}/jobs/{job_id}/resume``."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must include scheme and host")
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def _payload(self, job: JobRecord, target: str) -> dict[str, Any]:
        return {
            "job_id": job.id,
            "workspace_id": job.workspace_id,
            "status": job.status.value,
            "target": target,
            "retry_count": job.retry_count,
        }

    def resume(self, job: JobRecord, target: str) -> DispatchReceipt:
        url = f"{self._base_url}/jobs/{job.id}/resume"
        try:
            response = self._client.post(url, json=self._payload(job, target), headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DispatchError(
                f"engine rejected resume of {target} for job {job.id}",
                detail=f"HTTP {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"engine unreachable while resuming job {job.id}", detail=str(exc)) from exc

        body: dict[str, Any] = {}
        if response.content:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                body = parsed
        if body.get("success") is False:
            raise DispatchError(f"engine refused resume of job {job.id}", detail=str(body.get("error") or ""))

        return DispatchReceipt(
            job_id=job.id,
            target=target,
            action=str(body.get("action") or "resume_requested"),
            metadata=body or None,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


_engine: WorkflowEngine = NoOpWorkflowEngine()


def configure_workflow_engine(engine: WorkflowEngine) -> None:
    """Install the engine used by the recovery dispatcher."""

    global _engine
    _engine = engine


def get_workflow_engine() -> WorkflowEngine:
    return _engine


__all__ = [
    "DispatchReceipt",
    "HttpWorkflowEngine",
    "NoOpWorkflowEngine",
    "RESUME_TARGETS",
    "WorkflowEngine",
    "configure_workflow_engine",
    "get_workflow_engine",
    "resume_target",
]
