"""Domain entities for competitor research jobs."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    """Authoritative phase of a research run."""

    QUEUED = "queued"
    GEOCODING = "geocoding"
    DISCOVERING = "discovering"
    FILTERING = "filtering"
    REVIEW_READY = "review_ready"
    VALIDATING = "validating"
    SCRAPING = "scraping"
    EXTRACTING = "extracting"
    DEDUPLICATING = "deduplicating"
    REFINING = "refining"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def order(self) -> int:
        """Position in the canonical phase sequence (terminal failures sort last)."""

        try:
            return PHASE_ORDER.index(self)
        except ValueError:
            return len(PHASE_ORDER)


PHASE_ORDER: tuple[JobStatus, ...] = (
    JobStatus.QUEUED,
    JobStatus.GEOCODING,
    JobStatus.DISCOVERING,
    JobStatus.FILTERING,
    JobStatus.REVIEW_READY,
    JobStatus.VALIDATING,
    JobStatus.SCRAPING,
    JobStatus.EXTRACTING,
    JobStatus.DEDUPLICATING,
    JobStatus.REFINING,
    JobStatus.EMBEDDING,
    JobStatus.COMPLETED,
)

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED}
)

ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(set(JobStatus) - TERMINAL_STATUSES)

# Older pipeline versions wrote these status strings.
STATUS_ALIASES: dict[str, JobStatus] = {
    "failed": JobStatus.ERROR,
    "complete": JobStatus.COMPLETED,
}

TARGET_COUNT_TIERS: tuple[int, ...] = (50, 100, 250)
DEFAULT_TARGET_COUNT = 100


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ERROR = "error"


class Stage(str, Enum):
    """The five user-facing pipeline stages, in display order."""

    DISCOVER = "discover"
    VALIDATE = "validate"
    SCRAPE = "scrape"
    EXTRACT = "extract"
    REFINE = "refine"


STAGES: tuple[Stage, ...] = tuple(Stage)


@dataclass(slots=True)
class JobCounters:
    """Canonical counter set, after legacy aliases have been folded in."""

    sites_discovered: int = 0
    sites_validated: int = 0
    sites_scraped: int = 0
    pages_scraped: int = 0
    faqs_extracted: int = 0
    faqs_after_dedup: int = 0
    faqs_refined: int = 0
    faqs_embedded: int = 0
    faqs_added: int = 0

    def stage_counter(self, stage: Stage) -> int:
        """Counter that proves a stage was attempted."""

        return {
            Stage.DISCOVER: self.sites_discovered,
            Stage.VALIDATE: self.sites_validated,
            Stage.SCRAPE: self.sites_scraped,
            Stage.EXTRACT: self.faqs_extracted,
            Stage.REFINE: self.faqs_refined,
        }[stage]


COUNTER_FIELDS: tuple[str, ...] = tuple(item.name for item in fields(JobCounters))


@dataclass(slots=True)
class JobRecord:
    """A single competitor research run bound to a workspace."""

    id: str
    workspace_id: str
    status: JobStatus
    niche_query: str
    created_at: datetime
    updated_at: datetime
    service_area: str | None = None
    target_count: int = DEFAULT_TARGET_COUNT
    search_queries: list[str] = field(default_factory=list)
    exclude_domains: list[str] = field(default_factory=list)
    counters: JobCounters = field(default_factory=JobCounters)
    heartbeat_at: datetime | None = None
    current_scraping_domain: str | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    retry_count: int = 0
    last_recovery_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
