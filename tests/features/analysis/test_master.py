from unittest.mock import MagicMock

import pytest

from app.features.analysis.schemas.pipeline import JobKind, JobState, RequestStatus
from app.platform.config import settings
from app.platform.exceptions import (
    ArtifactUnusable,
    FetchHttpError,
    FetchNetworkError,
    FetchTimeout,
    InvalidUrl,
    RequestNotFound,
)


def _run_all(pipeline, kind):
    while pipeline.workers[kind].run_once() is not None:
        pass


class TestSubmit:
    def test_submit_creates_request_and_fetch_job(self, make_pipeline, dispatcher):
        pipeline = make_pipeline(dispatcher=dispatcher)

        request = pipeline.master.submit("example.com", "detailed")

        assert request.status == RequestStatus.fetching
        assert request.normalized_url == "https://example.com"
        assert request.report_type == "detailed"
        assert request.fetch_job_id == f"{request.id}:fetch"

        job = pipeline.queue.get(request.fetch_job_id)
        assert job.kind == JobKind.fetch
        assert job.state == JobState.queued
        assert job.payload == {"url": "https://example.com"}
        assert dispatcher.woken == [JobKind.fetch]

    def test_invalid_url_is_rejected_before_anything_is_stored(self, make_pipeline, dispatcher, redis_client):
        pipeline = make_pipeline(dispatcher=dispatcher)

        with pytest.raises(InvalidUrl):
            pipeline.master.submit("ftp://example.com")

        assert redis_client.keys("*") == []
        assert dispatcher.woken == []


class TestStateMachine:
    def test_stages_driven_by_hand(self, make_pipeline, dispatcher):
        pipeline = make_pipeline(dispatcher=dispatcher)
        request = pipeline.master.submit("example.com")

        pipeline.workers[JobKind.fetch].run_once()
        assert dispatcher.finished == [request.id]

        request = pipeline.master.advance(request.id)
        assert request.status == RequestStatus.analyzing
        assert request.analysis_job_ids == [
            f"{request.id}:accessibility",
            f"{request.id}:seo",
            f"{request.id}:performance",
        ]
        assert dispatcher.woken[-3:] == [JobKind.accessibility, JobKind.seo, JobKind.performance]

        pipeline.workers[JobKind.accessibility].run_once()
        pipeline.workers[JobKind.seo].run_once()
        assert pipeline.master.advance(request.id).status == RequestStatus.analyzing

        pipeline.workers[JobKind.performance].run_once()
        request = pipeline.master.advance(request.id)

        assert request.status == RequestStatus.completed
        assert request.completed_at is not None
        assert pipeline.store.get_report(request.id) is not None

    def test_fan_out_is_idempotent(self, make_pipeline, dispatcher):
        pipeline = make_pipeline(dispatcher=dispatcher)
        request = pipeline.master.submit("example.com")
        pipeline.workers[JobKind.fetch].run_once()

        pipeline.master.advance(request.id)
        pipeline.master.advance(request.id)

        for kind in (JobKind.accessibility, JobKind.seo, JobKind.performance):
            assert pipeline.queue.pending_count(kind) == 1

    def test_inline_pipeline_completes(self, pipeline):
        request = pipeline.master.submit("example.com")

        request = pipeline.store.get(request.id)
        report = pipeline.store.get_report(request.id)

        assert request.status == RequestStatus.completed
        assert report.url == "https://example.com"
        assert report.scores.overall == 100
        assert report.scores.accessibility == 100
        assert list(report.findings) == ["accessibility", "seo", "performance"]
        assert report.page.title == "Example Store - Handmade Ceramics and Pottery Online"
        assert report.page.status_code == 200


class TestFetchFailures:
    def test_fetch_exhausted_fails_request_without_analysis_jobs(self, make_pipeline):
        pipeline = make_pipeline(errors=[FetchTimeout("timed out")] * 3)

        request = pipeline.master.submit("unreachable.example")
        request = pipeline.store.get(request.id)

        assert request.status == RequestStatus.failed
        assert request.error_code == "FetchTimeout"
        assert request.analysis_job_ids == []
        assert pipeline.workers[JobKind.fetch].fetcher.calls == settings.FETCH_MAX_RETRIES + 1
        for kind in (JobKind.accessibility, JobKind.seo, JobKind.performance):
            assert pipeline.queue.get(f"{request.id}:{kind.value}") is None
        assert pipeline.store.get_report(request.id) is None

    def test_transient_error_then_success(self, make_pipeline):
        pipeline = make_pipeline(errors=[FetchNetworkError("reset")])

        request = pipeline.master.submit("example.com")

        assert pipeline.store.get(request.id).status == RequestStatus.completed
        assert pipeline.queue.get(request.fetch_job_id).result["retries"] == 1

    def test_http_error_is_not_retried(self, make_pipeline):
        pipeline = make_pipeline(errors=[FetchHttpError(404)])

        request = pipeline.master.submit("example.com/missing")
        request = pipeline.store.get(request.id)

        assert request.status == RequestStatus.failed
        assert request.error_code == "FetchHttpError"
        assert pipeline.workers[JobKind.fetch].fetcher.calls == 1


class TestPartialResults:
    def test_unusable_accessibility_artifact_still_completes(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.workers[JobKind.accessibility].battery = MagicMock(
            run=MagicMock(side_effect=ArtifactUnusable("DOM snapshot is empty"))
        )

        request = pipeline.master.submit("example.com")
        report = pipeline.store.get_report(request.id)

        assert pipeline.store.get(request.id).status == RequestStatus.completed
        assert report.scores.accessibility is None
        assert "accessibility" not in report.to_dict()["scores"]
        assert report.scores.overall == 100
        assert report.summary.failed_domains == ["accessibility"]
        assert report.summary.domain_errors == {"accessibility": "ArtifactUnusable"}
        assert "accessibility" not in report.findings

    def test_all_domains_failing_fails_request(self, make_pipeline):
        pipeline = make_pipeline(html="")

        request = pipeline.master.submit("example.com")
        request = pipeline.store.get(request.id)

        assert request.status == RequestStatus.failed
        assert request.error_code == "ArtifactUnusable"
        assert pipeline.store.get_report(request.id) is None

    def test_min_successful_domains(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.master.min_successful_domains = 3
        pipeline.workers[JobKind.seo].battery = MagicMock(run=MagicMock(side_effect=ValueError("bug")))

        request = pipeline.master.submit("example.com")
        request = pipeline.store.get(request.id)

        assert request.status == RequestStatus.failed
        assert request.error_code == "AnalysisFailed"


class TestIdempotence:
    def test_aggregate_is_byte_identical(self, pipeline):
        request = pipeline.master.submit("example.com")

        first = pipeline.master.aggregate(request.id)
        second = pipeline.master.aggregate(request.id)

        assert first.to_json() == second.to_json()
        assert pipeline.store.get_report(request.id).to_json() == first.to_json()

    def test_late_events_are_ignored(self, pipeline):
        request = pipeline.master.submit("example.com")
        report = pipeline.store.get_report(request.id)

        assert pipeline.master.advance(request.id).status == RequestStatus.completed
        assert pipeline.queue.complete(f"{request.id}:seo", {"kind": "seo", "score": 0}) is False
        assert pipeline.store.get_report(request.id).to_json() == report.to_json()

    def test_aggregate_unknown_request(self, pipeline):
        with pytest.raises(RequestNotFound):
            pipeline.master.aggregate("missing")


class TestExpiry:
    def test_expire_in_flight_request(self, make_pipeline, dispatcher):
        pipeline = make_pipeline(dispatcher=dispatcher)
        request = pipeline.master.submit("example.com")

        expired = pipeline.master.expire(request.id)

        assert expired.status == RequestStatus.failed
        assert expired.error_code == "RequestTimeout"

        # The fetch finishing afterwards changes nothing
        pipeline.workers[JobKind.fetch].run_once()
        assert pipeline.master.advance(request.id).status == RequestStatus.failed
        assert pipeline.queue.get(f"{request.id}:seo") is None

    def test_expire_completed_request_is_noop(self, pipeline):
        request = pipeline.master.submit("example.com")

        assert pipeline.master.expire(request.id).status == RequestStatus.completed

    def test_expire_unknown_request(self, pipeline):
        assert pipeline.master.expire("missing") is None


class TestSweep:
    @pytest.fixture
    def manual(self, make_pipeline, dispatcher, clock):
        pipeline = make_pipeline(dispatcher=dispatcher)
        pipeline.master.clock = clock
        pipeline.queue.clock = clock
        return pipeline

    def test_sweep_expires_old_requests(self, manual, clock):
        request = manual.master.submit("example.com")

        clock.advance(settings.REQUEST_TIMEOUT_SECONDS + 1)
        stats = manual.master.sweep()

        assert stats["expired"] == 1
        assert manual.store.get(request.id).error_code == "RequestTimeout"

    def test_sweep_rewakes_pools_with_queued_jobs(self, manual, dispatcher):
        manual.master.submit("example.com")
        dispatcher.woken.clear()

        stats = manual.master.sweep()

        assert dispatcher.woken == [JobKind.fetch]
        assert stats["woken"] == 1

    def test_sweep_reclaims_lapsed_leases(self, manual, clock):
        request = manual.master.submit("example.com")
        manual.queue.claim(JobKind.fetch)

        clock.advance(settings.JOB_LEASE_SECONDS + 1)
        stats = manual.master.sweep()

        assert stats["reclaimed"] == 1
        assert manual.queue.get(request.fetch_job_id).state == JobState.queued

    def test_sweep_recovers_lost_completion_signal(self, manual):
        request = manual.master.submit("example.com")
        # Worker finished but the advance signal never reached the master
        _run_all(manual, JobKind.fetch)

        manual.master.sweep()

        assert manual.store.get(request.id).status == RequestStatus.analyzing
