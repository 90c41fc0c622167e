from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from research_pipeline.domain import (
    COUNTER_FIELDS,
    DEFAULT_TARGET_COUNT,
    STATUS_ALIASES,
    TARGET_COUNT_TIERS,
    JobCounters,
    JobRecord,
    JobStatus,
    ResearchJobError,
)

# canonical field -> legacy field written by older pipeline versions
COUNTER_ALIASES: dict[str, str] = {
    "sites_validated": "sites_approved",
    "faqs_extracted": "faqs_generated",
}


def parse_status(value: Any) -> JobStatus:
    """Map a raw status string (including legacy spellings) onto :class:`JobStatus`."""

    if isinstance(value, JobStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in STATUS_ALIASES:
        return STATUS_ALIASES[raw]
    return JobStatus(raw)


def _to_count(value: Any) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return 0
    return max(result, 0)


def fold_counter_aliases(raw: dict[str, Any]) -> dict[str, int]:
    """Resolve legacy counter names into the canonical counter set.

    Whichever of a canonical/legacy pair is populated wins; neither field is
    assumed to be present.
    """

    counters: dict[str, int] = {}
    for name in COUNTER_FIELDS:
        value = _to_count(raw.get(name))
        legacy = COUNTER_ALIASES.get(name)
        if not value and legacy:
            value = _to_count(raw.get(legacy))
        counters[name] = value
    if not counters["faqs_added"]:
        counters["faqs_added"] = counters["faqs_refined"]
    return counters


class JobDocument(BaseModel):
    """Stored shape of a research job, validated at the read boundary."""

    id: str
    workspace_id: str
    status: JobStatus
    niche_query: str
    service_area: str | None = None
    target_count: int = DEFAULT_TARGET_COUNT
    search_queries: list[str] = Field(default_factory=list)
    exclude_domains: list[str] = Field(default_factory=list)
    counters: dict[str, int] = Field(default_factory=dict)
    heartbeat_at: datetime | None = None
    current_scraping_domain: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0
    last_recovery_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        payload["status"] = parse_status(payload.get("status"))
        nested = payload.get("counters")
        source = {**payload, **nested} if isinstance(nested, dict) else payload
        payload["counters"] = fold_counter_aliases(source)
        payload["search_queries"] = list(payload.get("search_queries") or [])
        payload["exclude_domains"] = list(payload.get("exclude_domains") or [])
        payload["retry_count"] = _to_count(payload.get("retry_count"))
        if payload.get("target_count") is None:
            payload["target_count"] = DEFAULT_TARGET_COUNT
        return payload

    @field_validator("heartbeat_at", "created_at", "updated_at", "completed_at", "last_recovery_at")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            workspace_id=self.workspace_id,
            status=self.status,
            niche_query=self.niche_query,
            service_area=self.service_area,
            target_count=self.target_count,
            search_queries=list(self.search_queries),
            exclude_domains=list(self.exclude_domains),
            counters=JobCounters(**self.counters),
            heartbeat_at=self.heartbeat_at,
            current_scraping_domain=self.current_scraping_domain,
            created_at=self.created_at,
            updated_at=self.updated_at or self.created_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
            retry_count=self.retry_count,
            last_recovery_at=self.last_recovery_at,
        )


def record_from_document(document: dict[str, Any]) -> JobRecord:
    """Validate a stored or fetched document; unreadable ones raise :class:`ResearchJobError`."""

    try:
        return JobDocument.model_validate(document).to_record()
    except ValidationError as exc:
        job_id = document.get("id") if isinstance(document, dict) else None
        raise ResearchJobError(f"job document {job_id or '?'} is unreadable", detail=str(exc)) from exc



def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def record_to_document(record: JobRecord) -> dict[str, Any]:
    """Flatten a record into the stored/serialised document shape."""

    document: dict[str, Any] = {
        "id": record.id,
        "workspace_id": record.workspace_id,
        "status": record.status.value,
        "niche_query": record.niche_query,
        "service_area": record.service_area,
        "target_count": record.target_count,
        "search_queries": list(record.search_queries),
        "exclude_domains": list(record.exclude_domains),
        "heartbeat_at": _isoformat(record.heartbeat_at),
        "current_scraping_domain": record.current_scraping_domain,
        "created_at": _isoformat(record.created_at),
        "updated_at": _isoformat(record.updated_at),
        "completed_at": _isoformat(record.completed_at),
        "error_message": record.error_message,
        "retry_count": record.retry_count,
        "last_recovery_at": _isoformat(record.last_recovery_at),
    }
    for name in COUNTER_FIELDS:
        document[name] = getattr(record.counters, name)
    return document


class CreateJobRequest(BaseModel):
    workspace_id: str
    niche_query: str
    service_area: str | None = None
    target_count: int = DEFAULT_TARGET_COUNT
    exclude_domains: list[str] = Field(default_factory=list)

    @field_validator("workspace_id", "niche_query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("target_count")
    @classmethod
    def _known_tier(cls, value: int) -> int:
        if value not in TARGET_COUNT_TIERS:
            tiers = ", ".join(str(tier) for tier in TARGET_COUNT_TIERS)
            raise ValueError(f"must be one of {tiers}")
        return value

    @field_validator("exclude_domains")
    @classmethod
    def _clean_domains(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for item in value:
            domain = str(item).strip().lower()
            if domain.startswith("www."):
                domain = domain[4:]
            if domain and domain not in cleaned:
                cleaned.append(domain)
        return cleaned


class ProgressUpdate(BaseModel):
    """Partial update reported by the external workflow engine."""

    status: JobStatus | None = None
    counters: dict[str, int] = Field(default_factory=dict)
    current_scraping_domain: str | None = None
    clear_current_domain: bool = False
    error_message: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        if payload.get("status") is not None:
            payload["status"] = parse_status(payload["status"])
        nested = payload.get("counters")
        source = {**payload, **nested} if isinstance(nested, dict) else payload
        counters: dict[str, int] = {}
        for name in COUNTER_FIELDS:
            legacy = COUNTER_ALIASES.get(name)
            if source.get(name) is not None:
                counters[name] = _to_count(source[name])
            elif legacy and source.get(legacy) is not None:
                counters[name] = _to_count(source[legacy])
        payload["counters"] = counters
        if "current_scraping_domain" in payload and payload["current_scraping_domain"] is None:
            payload["clear_current_domain"] = True
        return payload
