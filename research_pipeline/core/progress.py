"""Stage derivation for the five-step research progress display."""
from __future__ import annotations

from dataclasses import dataclass

from research_pipeline.domain import STAGES, JobRecord, JobStatus, Stage, StageStatus

_P = StageStatus.PENDING
_I = StageStatus.IN_PROGRESS
_D = StageStatus.DONE


@dataclass(frozen=True, slots=True)
class StageVector:
    discover: StageStatus = _P
    validate: StageStatus = _P
    scrape: StageStatus = _P
    extract: StageStatus = _P
    refine: StageStatus = _P

    def __getitem__(self, stage: Stage) -> StageStatus:
        return getattr(self, stage.value)

    def items(self) -> list[tuple[Stage, StageStatus]]:
        return [(stage, self[stage]) for stage in STAGES]

    def as_dict(self) -> dict[str, str]:
        return {stage.value: status.value for stage, status in self.items()}

    @classmethod
    def from_sequence(cls, statuses: list[StageStatus]) -> "StageVector":
        return cls(**{stage.value: status for stage, status in zip(STAGES, statuses)})


def _active_at(index: int) -> StageVector:
    statuses = [_D] * index + [_I] + [_P] * (len(STAGES) - index - 1)
    return StageVector.from_sequence(statuses)


# Must cover every JobStatus except the counter-derived ones (checked below).
STATUS_STAGE_TABLE: dict[JobStatus, StageVector] = {
    JobStatus.QUEUED: _active_at(0),
    JobStatus.GEOCODING: _active_at(0),
    JobStatus.DISCOVERING: _active_at(0),
    JobStatus.FILTERING: _active_at(0),
    JobStatus.REVIEW_READY: StageVector(discover=_D),
    JobStatus.VALIDATING: _active_at(1),
    JobStatus.SCRAPING: _active_at(2),
    JobStatus.EXTRACTING: _active_at(3),
    JobStatus.DEDUPLICATING: _active_at(3),
    JobStatus.REFINING: _active_at(4),
    JobStatus.EMBEDDING: _active_at(4),
    JobStatus.COMPLETED: StageVector.from_sequence([_D] * len(STAGES)),
}

_COUNTER_DERIVED = {JobStatus.ERROR, JobStatus.CANCELLED}

if set(STATUS_STAGE_TABLE) | _COUNTER_DERIVED != set(JobStatus):  # pragma: no cover - import-time guard
    missing = sorted(status.value for status in set(JobStatus) - set(STATUS_STAGE_TABLE) - _COUNTER_DERIVED)
    raise RuntimeError(f"stage table is missing statuses: {missing}")


def _walk_counters(record: JobRecord, marker: StageStatus) -> StageVector:
    """Mark stages done until the first one whose counter is still zero."""

    statuses: list[StageStatus] = []
    stop_at: int | None = None
    for index, stage in enumerate(STAGES):
        if record.counters.stage_counter(stage) == 0:
            stop_at = index
            break
    if stop_at is None:
        stop_at = len(STAGES) - 1
    for index in range(len(STAGES)):
        if index < stop_at:
            statuses.append(_D)
        elif index == stop_at:
            statuses.append(marker)
        else:
            statuses.append(_P)
    return StageVector.from_sequence(statuses)


def derive_stages(record: JobRecord) -> StageVector:
    """Map a normalised job record onto the five display stages."""

    status = record.status
    if status is JobStatus.ERROR:
        return _walk_counters(record, StageStatus.ERROR)
    if status is JobStatus.CANCELLED:
        return _walk_counters(record, StageStatus.PENDING)
    return STATUS_STAGE_TABLE[status]


def current_stage_index(stages: StageVector) -> int:
    """Index of the last stage that is ``done`` or ``in_progress`` (0-5).

    A fully finished vector reports 5 so the linear indicator can show
    completion; a vector with nothing started reports 0.
    """

    statuses = [status for _, status in stages.items()]
    if all(status is StageStatus.DONE for status in statuses):
        return len(statuses)
    last = 0
    for index, status in enumerate(statuses):
        if status in (StageStatus.DONE, StageStatus.IN_PROGRESS):
            last = index
    return last


def scrape_percent(record: JobRecord) -> int:
    validated = record.counters.sites_validated
    if validated <= 0:
        return 0
    return min(100, round(record.counters.sites_scraped / validated * 100))


def estimate_runtime(target_count: int) -> str:
    if target_count <= 50:
        return "5-10 min"
    if target_count <= 100:
        return "10-20 min"
    return "30-45 min"
