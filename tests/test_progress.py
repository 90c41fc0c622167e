from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from research_pipeline.core.progress import (
    STATUS_STAGE_TABLE,
    current_stage_index,
    derive_stages,
    estimate_runtime,
    scrape_percent,
)
from research_pipeline.core.queries import build_search_queries, clean_service_area
from research_pipeline.core.schema import record_from_document
from research_pipeline.domain import STAGES, JobCounters, JobRecord, JobStatus, StageStatus

CREATED = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _record(status: JobStatus, **counters: int) -> JobRecord:
    return JobRecord(
        id="job-00001",
        workspace_id="ws-1",
        status=status,
        niche_query="roofing",
        created_at=CREATED,
        updated_at=CREATED,
        counters=JobCounters(**counters),
    )


def test_discovering_job_shows_discover_in_progress():
    stages = derive_stages(_record(JobStatus.DISCOVERING, sites_discovered=45))

    assert stages.as_dict() == {
        "discover": "in_progress",
        "validate": "pending",
        "scrape": "pending",
        "extract": "pending",
        "refine": "pending",
    }
    assert current_stage_index(stages) == 0


@pytest.mark.parametrize("status", [s for s in JobStatus if s not in (JobStatus.ERROR, JobStatus.CANCELLED)])
def test_stages_before_the_active_one_are_done(status):
    stages = [value for _, value in derive_stages(_record(status)).items()]

    seen_open = False
    for value in stages:
        if value is not StageStatus.DONE:
            seen_open = True
        else:
            assert not seen_open, f"{status.value} marks a stage done after an unfinished one"
    assert stages.count(StageStatus.IN_PROGRESS) <= 1


def test_every_non_failure_status_is_in_the_stage_table():
    assert set(STATUS_STAGE_TABLE) == set(JobStatus) - {JobStatus.ERROR, JobStatus.CANCELLED}


def test_review_ready_has_discovery_done_and_nothing_running():
    stages = derive_stages(_record(JobStatus.REVIEW_READY, sites_discovered=30))

    assert stages.discover is StageStatus.DONE
    assert all(value is StageStatus.PENDING for stage, value in stages.items() if stage.value != "discover")
    assert current_stage_index(stages) == 0


def test_completed_job_reports_every_stage_done():
    stages = derive_stages(_record(JobStatus.COMPLETED))

    assert all(value is StageStatus.DONE for _, value in stages.items())
    assert current_stage_index(stages) == len(STAGES)


def test_error_marks_the_first_stage_without_output():
    record = _record(JobStatus.ERROR, sites_discovered=40, sites_validated=12, sites_scraped=0)
    stages = derive_stages(record)

    assert stages.as_dict() == {
        "discover": "done",
        "validate": "done",
        "scrape": "error",
        "extract": "pending",
        "refine": "pending",
    }
    assert current_stage_index(stages) == 1


def test_error_before_discovery_marks_discover():
    stages = derive_stages(_record(JobStatus.ERROR))

    assert stages.discover is StageStatus.ERROR
    assert current_stage_index(stages) == 0


@pytest.mark.parametrize(
    "status, counters, expected",
    [
        (JobStatus.QUEUED, {}, 0),
        (JobStatus.VALIDATING, {"sites_discovered": 9}, 1),
        (JobStatus.SCRAPING, {"sites_validated": 9}, 2),
        (JobStatus.EMBEDDING, {"faqs_refined": 9}, 4),
        (JobStatus.CANCELLED, {"sites_discovered": 9, "sites_validated": 3}, 1),
    ],
)
def test_current_stage_is_last_done_or_running_stage(status, counters, expected):
    assert current_stage_index(derive_stages(_record(status, **counters))) == expected


def test_cancelled_job_keeps_completed_stages_and_leaves_the_rest_pending():
    stages = derive_stages(_record(JobStatus.CANCELLED, sites_discovered=10, sites_validated=4))

    assert stages.discover is StageStatus.DONE
    assert stages.validate is StageStatus.DONE
    assert stages.scrape is StageStatus.PENDING
    assert StageStatus.ERROR not in [value for _, value in stages.items()]


def test_legacy_counter_names_feed_stage_derivation():
    record = record_from_document(
        {
            "id": "job-legacy",
            "workspace_id": "ws-1",
            "status": "failed",
            "niche_query": "plumbing",
            "created_at": "2025-03-01T09:00:00",
            "sites_discovered": 20,
            "sites_approved": 8,
            "sites_scraped": 8,
            "faqs_generated": 0,
        }
    )

    assert record.status is JobStatus.ERROR
    assert record.counters.sites_validated == 8
    assert record.created_at.tzinfo is not None
    assert derive_stages(record).extract is StageStatus.ERROR


def test_scrape_percent_and_runtime_estimate():
    assert scrape_percent(_record(JobStatus.SCRAPING, sites_validated=40, sites_scraped=10)) == 25
    assert scrape_percent(_record(JobStatus.SCRAPING)) == 0
    assert scrape_percent(_record(JobStatus.SCRAPING, sites_validated=5, sites_scraped=9)) == 100
    assert estimate_runtime(50) == "5-10 min"
    assert estimate_runtime(100) == "10-20 min"
    assert estimate_runtime(250) == "30-45 min"


def test_search_queries_follow_service_area():
    assert clean_service_area("Luton (20 miles) | Dunstable (10 miles)") == "Luton"
    assert clean_service_area("Bristol, Bath") == "Bristol"
    assert clean_service_area("   ") is None

    assert build_search_queries("roof  repair", "Luton") == [
        "roof repair Luton",
        "roof repair services Luton",
        "roof repair company Luton",
        "best roof repair Luton",
        "roof repair near Luton",
    ]
    assert build_search_queries("roofing") == ["roofing", "roofing services", "roofing company"]
