"""Read-time stall classification for active research jobs.

Two signals are combined: a global heartbeat staleness check, which catches a
worker that died in any phase, and phase-local timeouts for the discovery and
extraction phases, which catch a worker that is alive but produces nothing.
Phase-local time is measured from the moment an observer first saw the job in
that phase, so it is tracked by :class:`PhaseTracker` rather than stored on the
record.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from research_pipeline.domain import JobRecord, JobStatus

HEARTBEAT = "heartbeat"
DISCOVERY_TIMEOUT = "discovery timeout"
EXTRACTION_TIMEOUT = "extraction timeout"


class StallPhase(str, Enum):
    DISCOVERY = "discovery"
    EXTRACTION = "extraction"


PHASE_GROUPS: dict[JobStatus, StallPhase] = {
    JobStatus.QUEUED: StallPhase.DISCOVERY,
    JobStatus.GEOCODING: StallPhase.DISCOVERY,
    JobStatus.DISCOVERING: StallPhase.DISCOVERY,
    JobStatus.EXTRACTING: StallPhase.EXTRACTION,
    JobStatus.DEDUPLICATING: StallPhase.EXTRACTION,
}

# Paused for a human decision; no worker owns the record.
EXEMPT_STATUSES = frozenset({JobStatus.REVIEW_READY})


@dataclass(frozen=True, slots=True)
class StallThresholds:
    stale_after: timedelta = timedelta(minutes=5)
    discovery_timeout: timedelta = timedelta(minutes=8)
    extraction_timeout: timedelta = timedelta(minutes=15)

    @classmethod
    def from_seconds(cls, stale: float, discovery: float, extraction: float) -> "StallThresholds":
        return cls(
            stale_after=timedelta(seconds=stale),
            discovery_timeout=timedelta(seconds=discovery),
            extraction_timeout=timedelta(seconds=extraction),
        )


@dataclass(frozen=True, slots=True)
class StallState:
    stalled: bool = False
    reason: str | None = None

    @classmethod
    def healthy(cls) -> "StallState":
        return cls()

    @classmethod
    def stalled_by(cls, reason: str) -> "StallState":
        return cls(stalled=True, reason=reason)

    def as_dict(self) -> dict[str, object]:
        return {"stalled": self.stalled, "reason": self.reason}


def phase_key(status: JobStatus) -> str:
    """Key under which phase entry time is tracked; grouped statuses share one clock."""

    group = PHASE_GROUPS.get(status)
    return group.value if group else status.value


def heartbeat_age(record: JobRecord, now: datetime) -> timedelta:
    last_seen = record.heartbeat_at or record.updated_at or record.created_at
    return now - last_seen


def detect_stall(
    record: JobRecord,
    now: datetime,
    phase_entered_at: datetime | None = None,
    thresholds: StallThresholds | None = None,
) -> StallState:
    """Classify an active job as healthy or stalled.

    ``phase_entered_at`` is the first time the caller observed the job in its
    current phase; without it only the heartbeat signal is evaluated.
    """

    thresholds = thresholds or StallThresholds()
    if record.is_terminal or record.status in EXEMPT_STATUSES:
        return StallState.healthy()

    if heartbeat_age(record, now) > thresholds.stale_after:
        return StallState.stalled_by(HEARTBEAT)

    if phase_entered_at is None:
        return StallState.healthy()

    in_phase = now - phase_entered_at
    group = PHASE_GROUPS.get(record.status)
    if group is StallPhase.DISCOVERY:
        if record.counters.sites_discovered == 0 and in_phase > thresholds.discovery_timeout:
            return StallState.stalled_by(DISCOVERY_TIMEOUT)
    elif group is StallPhase.EXTRACTION:
        if record.counters.faqs_extracted == 0 and in_phase > thresholds.extraction_timeout:
            return StallState.stalled_by(EXTRACTION_TIMEOUT)
    return StallState.healthy()


class PhaseTracker:
    """Remembers when each job was first observed in its current phase."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, datetime]] = {}

    def observe(self, record: JobRecord, now: datetime) -> datetime:
        key = phase_key(record.status)
        current = self._entries.get(record.id)
        if current is None or current[0] != key:
            self._entries[record.id] = (key, now)
            return now
        return current[1]

    def entered_at(self, job_id: str) -> datetime | None:
        entry = self._entries.get(job_id)
        return entry[1] if entry else None

    def forget(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    def prune(self, keep_ids: Iterable[str]) -> int:
        """Drop entries for jobs not in ``keep_ids``; returns how many were dropped."""

        keep = set(keep_ids)
        stale = [job_id for job_id in self._entries if job_id not in keep]
        for job_id in stale:
            del self._entries[job_id]
        return len(stale)

    def reset(self) -> None:
        self._entries.clear()
