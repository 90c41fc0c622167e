from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import Response

from research_pipeline.application import (
    get_job_controller,
    get_phase_tracker,
    get_recovery_dispatcher,
    get_recovery_watchdog,
)
from research_pipeline.config import Settings, load_settings
from research_pipeline.core.schema import record_to_document
from research_pipeline.core.views import build_job_view
from research_pipeline.domain import (
    ActiveJobExistsError,
    DispatchError,
    InvalidJobInputError,
    JobNotFoundError,
    JobRecord,
    JobTransitionError,
    RecoveryInProgressError,
    ResearchJobError,
    SignatureError,
)
from research_pipeline.exporters.job_history_csv import job_history_frame

SIGNATURE_HEADER = "X-Research-Signature"

workspace_router = APIRouter(prefix="/workspaces", tags=["research"])
router = APIRouter(prefix="/research-jobs", tags=["research"])


def _http_error(exc: ResearchJobError) -> HTTPException:
    if isinstance(exc, InvalidJobInputError):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, SignatureError):
        return HTTPException(status_code=401, detail=exc.message)
    if isinstance(exc, JobNotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, (ActiveJobExistsError, JobTransitionError, RecoveryInProgressError)):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, DispatchError):
        return HTTPException(status_code=502, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def _settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else load_settings()


def _view(record: JobRecord, settings: Settings) -> dict[str, Any]:
    controller = get_job_controller()
    now = controller.clock.now()
    tracker = get_phase_tracker()
    entered_at = tracker.observe(record, now)
    if record.is_terminal:
        tracker.forget(record.id)
    view = build_job_view(record, now, phase_entered_at=entered_at, thresholds=settings.thresholds)
    return view.as_dict()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    if not secret:
        return
    if not signature:
        raise SignatureError(f"{SIGNATURE_HEADER} header is required")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise SignatureError("progress signature does not match")


@workspace_router.post("/{ws_id}/research-jobs")
async def create_research_job(ws_id: str, payload: dict[str, Any]) -> dict:
    """Start a competitor research run for the workspace."""
    exclude_domains = payload.get("exclude_domains")
    if exclude_domains is not None and not isinstance(exclude_domains, list):
        raise HTTPException(status_code=400, detail="exclude_domains must be a list")

    controller = get_job_controller()
    try:
        record = controller.create(
            ws_id,
            payload.get("niche_query") or "",
            service_area=payload.get("service_area"),
            target_count=payload.get("target_count"),
            exclude_domains=exclude_domains,
            replace_active=bool(payload.get("replace_active")),
        )
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return record_to_document(record)


@workspace_router.get("/{ws_id}/research-jobs/active")
async def get_active_research_job(ws_id: str, request: Request) -> dict:
    record = get_job_controller().resume(ws_id)
    if record is None:
        return {"job": None}
    return {"job": _view(record, _settings(request))}


@workspace_router.get("/{ws_id}/research-jobs")
async def list_research_jobs(ws_id: str) -> dict:
    records = get_job_controller().list_for_workspace(ws_id)
    return {"ws_id": ws_id, "items": [record_to_document(record) for record in records]}


@workspace_router.get("/{ws_id}/research-jobs/export")
async def export_research_jobs(ws_id: str) -> Response:
    records = get_job_controller().list_for_workspace(ws_id)
    content = job_history_frame(records).to_csv(index=False)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{ws_id}_research_jobs.csv"'},
    )


@router.post("/watchdog")
async def run_watchdog() -> dict:
    report = await get_recovery_watchdog().sweep()
    get_phase_tracker().prune(record.id for record in get_job_controller().list_active())
    return report.as_dict()


@router.get("/{job_id}")
async def poll_research_job(job_id: str, request: Request) -> dict:
    try:
        record = get_job_controller().get(job_id)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return _view(record, _settings(request))


@router.get("/{job_id}/record")
async def get_research_job_record(job_id: str) -> dict:
    try:
        record = get_job_controller().get(job_id)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return record_to_document(record)


@router.post("/{job_id}/cancel")
async def cancel_research_job(job_id: str, payload: dict[str, Any] | None = Body(default=None)) -> dict:
    reason = (payload or {}).get("reason")
    try:
        record = get_job_controller().cancel(job_id, reason)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    get_phase_tracker().forget(job_id)
    return record_to_document(record)


@router.post("/{job_id}/recover")
async def recover_research_job(job_id: str) -> dict:
    """Re-signal the worker owning the job's current phase; the status is left as is."""
    try:
        result = await get_recovery_dispatcher().recover(job_id)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return {"job_id": result.job_id, "action": result.action, "target": result.target}


async def _leave_review(job_id: str, *, restart: bool) -> dict:
    dispatcher = get_recovery_dispatcher()
    try:
        result = await dispatcher.continue_after_review(job_id, restart=restart)
        record = get_job_controller().get(job_id)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return {"job_id": job_id, "status": record.status.value, "action": result.action, "target": result.target}


@router.post("/{job_id}/confirm")
async def confirm_research_review(job_id: str) -> dict:
    """Accept the reviewed site list and continue with validation."""
    return await _leave_review(job_id, restart=False)


@router.post("/{job_id}/rediscover")
async def rediscover_research_sites(job_id: str) -> dict:
    return await _leave_review(job_id, restart=True)


@router.post("/{job_id}/progress")
async def report_research_progress(job_id: str, request: Request) -> dict:
    """Progress callback used by the workflow engine."""
    body = await request.body()
    try:
        verify_signature(_settings(request).callback_secret, body, request.headers.get(SIGNATURE_HEADER))
    except SignatureError as exc:
        raise _http_error(exc) from exc

    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="progress body must be JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="progress body must be a JSON object")

    try:
        record = get_job_controller().apply_progress(job_id, payload)
    except ResearchJobError as exc:
        raise _http_error(exc) from exc
    return record_to_document(record)
