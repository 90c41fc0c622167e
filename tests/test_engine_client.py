from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from research_pipeline.domain import DispatchError, JobRecord, JobStatus
from research_pipeline.infrastructure import (
    HttpWorkflowEngine,
    NoOpWorkflowEngine,
    configure_workflow_engine,
    get_workflow_engine,
)

CREATED = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _job() -> JobRecord:
    return JobRecord(
        id="job-00003",
        workspace_id="ws-9",
        status=JobStatus.EXTRACTING,
        niche_query="roofing",
        created_at=CREATED,
        updated_at=CREATED,
        retry_count=1,
    )


def _engine(handler) -> HttpWorkflowEngine:
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpWorkflowEngine("https://engine.example.com/api/", token="secret-token", http_client=http_client)


def test_resume_posts_job_and_target():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"success": True, "action": "extraction_restarted"})

    receipt = _engine(handler).resume(_job(), "extract")

    assert captured["url"] == "https://engine.example.com/api/jobs/job-00003/resume"
    assert captured["auth"] == "Bearer secret-token"
    assert captured["body"] == {
        "job_id": "job-00003",
        "workspace_id": "ws-9",
        "status": "extracting",
        "target": "extract",
        "retry_count": 1,
    }
    assert receipt.action == "extraction_restarted"
    assert receipt.target == "extract"


def test_empty_response_body_is_accepted():
    receipt = _engine(lambda request: httpx.Response(202)).resume(_job(), "extract")

    assert receipt.action == "resume_requested"
    assert receipt.metadata is None


def test_http_error_raises_dispatch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "busy"})

    with pytest.raises(DispatchError) as excinfo:
        _engine(handler).resume(_job(), "extract")

    assert excinfo.value.detail == "HTTP 503"


def test_transport_error_raises_dispatch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DispatchError):
        _engine(handler).resume(_job(), "extract")


def test_engine_refusal_raises_dispatch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "job locked"})

    with pytest.raises(DispatchError) as excinfo:
        _engine(handler).resume(_job(), "extract")

    assert excinfo.value.detail == "job locked"


def test_base_url_requires_scheme():
    with pytest.raises(ValueError):
        HttpWorkflowEngine("engine.example.com")


def test_configure_workflow_engine_swaps_global():
    engine = NoOpWorkflowEngine()
    try:
        configure_workflow_engine(engine)
        assert get_workflow_engine() is engine
        receipt = engine.resume(_job(), "extract")
        assert receipt.action == "noop"
    finally:
        configure_workflow_engine(NoOpWorkflowEngine())
