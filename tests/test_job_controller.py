from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from research_pipeline.application.jobs import SUPERSEDED_REASON, JobController
from research_pipeline.domain import (
    ActiveJobExistsError,
    InvalidJobInputError,
    JobNotFoundError,
    JobStatus,
    JobTransitionError,
    ResearchJobError,
)
from research_pipeline.infrastructure import InMemoryJobRepository


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def repository():
    return InMemoryJobRepository()


@pytest.fixture()
def controller(repository, clock):
    return JobController(repository, clock=clock)


def test_create_queues_job_with_search_queries(controller, clock):
    record = controller.create(
        "ws-1",
        "  roofing  ",
        service_area="Luton (20 miles) | Dunstable",
        target_count=50,
        exclude_domains=["WWW.Checkatrade.com", "checkatrade.com", " yell.com "],
    )

    assert record.id == "job-00001"
    assert record.status is JobStatus.QUEUED
    assert record.niche_query == "roofing"
    assert record.service_area == "Luton"
    assert record.target_count == 50
    assert record.exclude_domains == ["checkatrade.com", "yell.com"]
    assert record.search_queries[0] == "roofing Luton"
    assert record.heartbeat_at == clock.now()
    assert record.counters.sites_discovered == 0


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"workspace_id": "ws-1", "niche_query": "   "}, "niche_query"),
        ({"workspace_id": "", "niche_query": "roofing"}, "workspace_id"),
        ({"workspace_id": "ws-1", "niche_query": "roofing", "target_count": 75}, "target_count"),
    ],
)
def test_create_rejects_invalid_input_without_writing(controller, repository, kwargs, field):
    workspace_id = kwargs.pop("workspace_id")
    niche_query = kwargs.pop("niche_query")

    with pytest.raises(InvalidJobInputError) as excinfo:
        controller.create(workspace_id, niche_query, **kwargs)

    assert excinfo.value.field == field
    assert repository.list_for_workspace(workspace_id) == []


def test_one_active_job_per_workspace(controller):
    first = controller.create("ws-1", "roofing")

    with pytest.raises(ActiveJobExistsError) as excinfo:
        controller.create("ws-1", "plumbing")
    assert excinfo.value.job_id == first.id

    other = controller.create("ws-2", "plumbing")
    assert other.status is JobStatus.QUEUED


def test_replace_active_supersedes_running_job(controller):
    first = controller.create("ws-1", "roofing")

    second = controller.create("ws-1", "plumbing", replace_active=True)

    old = controller.get(first.id)
    assert old.status is JobStatus.CANCELLED
    assert old.error_message == SUPERSEDED_REASON
    assert controller.resume("ws-1").id == second.id


def test_resume_returns_same_job_until_terminal(controller):
    record = controller.create("ws-1", "roofing")

    assert controller.resume("ws-1").id == record.id
    controller.apply_progress(record.id, {"status": "discovering", "sites_discovered": 4})
    assert controller.resume("ws-1").id == record.id

    controller.apply_progress(record.id, {"status": "failed", "error_message": "search quota exhausted"})
    assert controller.resume("ws-1") is None
    assert controller.resume("ws-unknown") is None


def test_cancel_sets_terminal_state(controller, clock):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(
        record.id, {"status": "scraping", "sites_validated": 10, "current_scraping_domain": "acme.co.uk"}
    )
    clock.advance(minutes=1)

    cancelled = controller.cancel(record.id, "Changed my mind")

    assert cancelled.status is JobStatus.CANCELLED
    assert cancelled.completed_at == clock.now()
    assert cancelled.error_message == "Changed my mind"
    assert cancelled.current_scraping_domain is None
    assert cancelled.counters.sites_validated == 10


def test_cancel_on_terminal_job_is_rejected(controller):
    record = controller.create("ws-1", "roofing")
    controller.cancel(record.id)

    with pytest.raises(JobTransitionError):
        controller.cancel(record.id)
    assert controller.get(record.id).error_message == "Cancelled by user"


def test_progress_after_cancel_does_not_reactivate(controller):
    record = controller.create("ws-1", "roofing")
    controller.cancel(record.id)

    with pytest.raises(JobTransitionError):
        controller.apply_progress(record.id, {"status": "scraping", "sites_scraped": 3})

    latest = controller.get(record.id)
    assert latest.status is JobStatus.CANCELLED
    assert latest.counters.sites_scraped == 0


def test_unknown_job_raises_not_found(controller):
    with pytest.raises(JobNotFoundError):
        controller.get("job-missing")
    with pytest.raises(JobNotFoundError):
        controller.cancel("job-missing")


def test_progress_moves_forward_and_stamps_heartbeat(controller, clock):
    record = controller.create("ws-1", "roofing")
    clock.advance(seconds=30)

    updated = controller.apply_progress(
        record.id, {"status": "discovering", "counters": {"sites_discovered": 12}}
    )

    assert updated.status is JobStatus.DISCOVERING
    assert updated.counters.sites_discovered == 12
    assert updated.heartbeat_at == clock.now()
    assert updated.updated_at == clock.now()


def test_counters_never_decrease(controller):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(record.id, {"status": "discovering", "sites_discovered": 30})

    updated = controller.apply_progress(record.id, {"sites_discovered": 12})

    assert updated.counters.sites_discovered == 30


def test_progress_accepts_legacy_counter_names(controller):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(record.id, {"status": "validating", "sites_approved": 9})

    updated = controller.apply_progress(record.id, {"status": "extracting", "faqs_generated": 40})

    assert updated.counters.sites_validated == 9
    assert updated.counters.faqs_extracted == 40


def test_backwards_move_is_rejected_except_after_review(controller):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(record.id, {"status": "scraping"})
    with pytest.raises(JobTransitionError):
        controller.apply_progress(record.id, {"status": "discovering"})

    other = controller.create("ws-2", "roofing")
    controller.apply_progress(other.id, {"status": "review_ready", "sites_discovered": 25})
    rerun = controller.apply_progress(other.id, {"status": "discovering"})
    assert rerun.status is JobStatus.DISCOVERING


def test_cancelled_status_cannot_be_reported(controller):
    record = controller.create("ws-1", "roofing")

    with pytest.raises(JobTransitionError):
        controller.apply_progress(record.id, {"status": "cancelled"})


def test_scraping_domain_is_cleared_outside_scraping(controller):
    record = controller.create("ws-1", "roofing")
    scraping = controller.apply_progress(
        record.id, {"status": "scraping", "current_scraping_domain": "acme.co.uk"}
    )
    assert scraping.current_scraping_domain == "acme.co.uk"

    extracting = controller.apply_progress(record.id, {"status": "extracting"})
    assert extracting.current_scraping_domain is None


def test_completion_stamps_completed_at(controller, clock):
    record = controller.create("ws-1", "roofing")
    clock.advance(minutes=12)

    done = controller.apply_progress(
        record.id, {"status": "complete", "faqs_refined": 80, "faqs_embedded": 80}
    )

    assert done.status is JobStatus.COMPLETED
    assert done.completed_at == clock.now()
    assert done.counters.faqs_added == 80


def test_list_for_workspace_is_newest_first(controller):
    first = controller.create("ws-1", "roofing")
    controller.cancel(first.id)
    second = controller.create("ws-1", "plumbing")

    assert [record.id for record in controller.list_for_workspace("ws-1")] == [second.id, first.id]
    assert [record.id for record in controller.list_active()] == [second.id]


def test_confirm_review_moves_on_to_validation(controller, clock):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(record.id, {"status": "review_ready", "sites_discovered": 25})
    clock.advance(minutes=30)

    confirmed = controller.confirm_review(record.id)

    assert confirmed.status is JobStatus.VALIDATING
    assert confirmed.heartbeat_at == clock.now()
    assert confirmed.counters.sites_discovered == 25
    with pytest.raises(JobTransitionError):
        controller.confirm_review(record.id)


def test_restart_discovery_reruns_discovery(controller):
    record = controller.create("ws-1", "roofing")
    controller.apply_progress(record.id, {"status": "review_ready", "sites_discovered": 25})

    rerun = controller.restart_discovery(record.id)

    assert rerun.status is JobStatus.DISCOVERING
    assert controller.resume("ws-1").id == record.id


def test_review_decisions_rejected_outside_review(controller):
    record = controller.create("ws-1", "roofing")
    with pytest.raises(JobTransitionError):
        controller.restart_discovery(record.id)

    controller.cancel(record.id)
    with pytest.raises(JobTransitionError):
        controller.confirm_review(record.id)
    assert controller.get(record.id).status is JobStatus.CANCELLED


def test_unreadable_stored_document_raises_domain_error(controller, repository):
    record = controller.create("ws-1", "roofing")
    repository.update(record.id, {"status": "paused_by_engine"})

    with pytest.raises(ResearchJobError) as excinfo:
        controller.get(record.id)

    assert record.id in excinfo.value.message
