from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime

from research_pipeline.core.progress import (
    StageVector,
    current_stage_index,
    derive_stages,
    estimate_runtime,
    scrape_percent,
)
from research_pipeline.core.stall import DISCOVERY_TIMEOUT, StallState, StallThresholds, detect_stall
from research_pipeline.domain import JobCounters, JobRecord, JobStatus

DISCOVERY_STALL_MESSAGE = "Competitor discovery timed out without finding any businesses. Please retry."


@dataclass(slots=True)
class JobView:
    """Consolidated, presentation-ready state of one research job."""

    job_id: str
    workspace_id: str
    status: JobStatus
    display_status: JobStatus
    stages: StageVector
    current_stage: int
    counters: JobCounters
    stall: StallState
    elapsed_seconds: int
    phase_elapsed_seconds: int | None
    scrape_percent: int
    estimated_runtime: str
    niche_query: str
    service_area: str | None
    target_count: int
    current_scraping_domain: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    observed_at: datetime | None = None
    flags: dict[str, bool] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def as_dict(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "workspace_id": self.workspace_id,
            "status": self.status.value,
            "display_status": self.display_status.value,
            "stages": self.stages.as_dict(),
            "current_stage": self.current_stage,
            "counters": asdict(self.counters),
            "stall": self.stall.as_dict(),
            "elapsed_seconds": self.elapsed_seconds,
            "phase_elapsed_seconds": self.phase_elapsed_seconds,
            "scrape_percent": self.scrape_percent,
            "estimated_runtime": self.estimated_runtime,
            "niche_query": self.niche_query,
            "service_area": self.service_area,
            "target_count": self.target_count,
            "current_scraping_domain": self.current_scraping_domain,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
            **self.flags,
        }


def build_job_view(
    record: JobRecord,
    now: datetime,
    *,
    phase_entered_at: datetime | None = None,
    thresholds: StallThresholds | None = None,
) -> JobView:
    stages = derive_stages(record)
    stall = detect_stall(record, now, phase_entered_at, thresholds)

    display_status = record.status
    error_message = record.error_message
    # Presentation only: the stored status stays untouched.
    if stall.reason == DISCOVERY_TIMEOUT:
        display_status = JobStatus.ERROR
        error_message = error_message or DISCOVERY_STALL_MESSAGE

    phase_elapsed = int((now - phase_entered_at).total_seconds()) if phase_entered_at else None
    active = not record.is_terminal

    return JobView(
        job_id=record.id,
        workspace_id=record.workspace_id,
        status=record.status,
        display_status=display_status,
        stages=stages,
        current_stage=current_stage_index(stages),
        counters=record.counters,
        stall=stall,
        elapsed_seconds=max(0, int((now - record.created_at).total_seconds())),
        phase_elapsed_seconds=phase_elapsed,
        scrape_percent=scrape_percent(record),
        estimated_runtime=estimate_runtime(record.target_count),
        niche_query=record.niche_query,
        service_area=record.service_area,
        target_count=record.target_count,
        current_scraping_domain=record.current_scraping_domain,
        error_message=error_message,
        retry_count=record.retry_count,
        observed_at=now,
        flags={
            "is_terminal": record.is_terminal,
            "can_cancel": active,
            "can_recover": active and stall.stalled,
            "can_retry": record.status in (JobStatus.ERROR, JobStatus.CANCELLED),
        },
    )
