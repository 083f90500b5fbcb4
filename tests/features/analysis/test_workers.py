from unittest.mock import MagicMock

import pytest

from app.features.analysis.schemas.pipeline import Job, JobKind, JobState
from app.features.analysis.services.queue.job_queue import JobQueue
from app.features.analysis.services.queue.request_store import RequestStore
from app.features.analysis.workers.analyzers import AnalyzerWorker
from app.features.analysis.workers.fetcher import FetcherWorker
from app.platform.config import settings
from app.platform.exceptions import FetchHttpError, FetchTimeout, QueueUnavailable


@pytest.fixture
def queue(redis_client):
    return JobQueue(redis_client, prefix="test")


@pytest.fixture
def store(redis_client):
    return RequestStore(redis_client, prefix="test")


def _enqueue_fetch(queue, request_id="req-1"):
    queue.enqueue(Job(
        id=f"{request_id}:fetch",
        request_id=request_id,
        kind=JobKind.fetch,
        payload={"url": "https://example.com"},
    ))


class TestFetcherWorker:
    def _worker(self, queue, store, dispatcher, fetcher, delays):
        return FetcherWorker(
            queue, store, dispatcher,
            fetcher=fetcher, max_retries=2, backoff_seconds=2.0, sleep=delays.append,
        )

    def test_success_saves_artifact_and_completes(self, queue, store, dispatcher, artifact_factory):
        fetcher = MagicMock()
        fetcher.fetch.return_value = artifact_factory(title="Example")
        _enqueue_fetch(queue)

        job = self._worker(queue, store, dispatcher, fetcher, []).run_once()

        assert job.state == JobState.done
        assert job.result["statusCode"] == 200
        assert job.result["finalUrl"] == "https://example.com/"
        assert job.result["title"] == "Example"
        assert store.get_artifact("req-1") is not None
        assert dispatcher.finished == ["req-1"]

    def test_transient_errors_retry_with_backoff(self, queue, store, dispatcher):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = FetchTimeout("timed out")
        delays = []
        _enqueue_fetch(queue)

        job = self._worker(queue, store, dispatcher, fetcher, delays).run_once()

        assert fetcher.fetch.call_count == 3
        assert delays == [2.0, 4.0]
        assert job.state == JobState.failed
        assert job.error_code == "FetchTimeout"
        assert store.get_artifact("req-1") is None
        assert dispatcher.finished == ["req-1"]

    def test_http_error_fails_immediately(self, queue, store, dispatcher):
        fetcher = MagicMock()
        fetcher.fetch.side_effect = FetchHttpError(503)
        delays = []
        _enqueue_fetch(queue)

        job = self._worker(queue, store, dispatcher, fetcher, delays).run_once()

        assert fetcher.fetch.call_count == 1
        assert delays == []
        assert job.error_code == "FetchHttpError"
        assert "503" in job.error_message

    def test_redelivered_fetch_keeps_first_artifact(self, queue, store, dispatcher, artifact_factory):
        store.save_artifact(artifact_factory(status_code=200))
        fetcher = MagicMock()
        fetcher.fetch.return_value = artifact_factory(status_code=203)
        _enqueue_fetch(queue)

        job = self._worker(queue, store, dispatcher, fetcher, []).run_once()

        assert job.result["statusCode"] == 200
        assert store.get_artifact("req-1").status_code == 200

    def test_reclaimed_job_ignores_stale_failure(self, redis_client, store, dispatcher, clock):
        queue = JobQueue(redis_client, prefix="test", lease_seconds=10, clock=clock)
        _enqueue_fetch(queue)

        def slow_fetch(request_id, url):
            clock.advance(11)
            # Lease lapsed; another fetch worker takes the job over
            queue.claim(JobKind.fetch)
            raise FetchHttpError(503)

        fetcher = MagicMock()
        fetcher.fetch.side_effect = slow_fetch

        job = self._worker(queue, store, dispatcher, fetcher, []).run_once()

        assert job.state == JobState.running
        assert job.attempts == 2
        assert job.error_code is None

    def test_default_lease_outlasts_a_fully_retried_fetch(self):
        attempts = settings.FETCH_MAX_RETRIES + 1
        per_attempt = 2 * settings.FETCH_TIMEOUT_SECONDS + settings.FETCH_SETTLE_SECONDS
        backoff = sum(settings.FETCH_RETRY_BACKOFF_SECONDS * 2 ** n for n in range(settings.FETCH_MAX_RETRIES))

        assert settings.JOB_LEASE_SECONDS > attempts * per_attempt + backoff

    def test_nothing_to_claim(self, queue, store, dispatcher):
        worker = self._worker(queue, store, dispatcher, MagicMock(), [])

        assert worker.run_once() is None
        assert dispatcher.finished == []


class TestAnalyzerWorker:
    def _claimable(self, queue, kind):
        _enqueue_fetch(queue)
        queue.complete(queue.claim(JobKind.fetch).id, {})
        queue.enqueue(Job(id=f"req-1:{kind.value}", request_id="req-1", kind=kind, depends_on=["req-1:fetch"]))

    def test_runs_battery_on_artifact(self, queue, store, dispatcher, artifact_factory):
        store.save_artifact(artifact_factory())
        self._claimable(queue, JobKind.seo)

        job = AnalyzerWorker(JobKind.seo, queue, store, dispatcher).run_once()

        assert job.state == JobState.done
        assert job.result["kind"] == "seo"
        assert job.result["score"] == 100
        assert dispatcher.finished == ["req-1"]

    def test_missing_artifact_fails_job(self, queue, store, dispatcher):
        self._claimable(queue, JobKind.accessibility)

        job = AnalyzerWorker(JobKind.accessibility, queue, store, dispatcher).run_once()

        assert job.state == JobState.failed
        assert job.error_code == "ArtifactUnusable"

    def test_unexpected_error_is_recorded_not_raised(self, queue, store, dispatcher, artifact_factory):
        store.save_artifact(artifact_factory())
        self._claimable(queue, JobKind.performance)
        battery = MagicMock()
        battery.run.side_effect = RuntimeError("boom")

        job = AnalyzerWorker(JobKind.performance, queue, store, dispatcher, battery=battery).run_once()

        assert job.state == JobState.failed
        assert job.error_code == "AnalysisFailed"
        assert "boom" in job.error_message

    def test_queue_outage_propagates(self, store, dispatcher):
        queue = MagicMock()
        queue.claim.side_effect = QueueUnavailable("Job queue unreachable")

        with pytest.raises(QueueUnavailable):
            AnalyzerWorker(JobKind.seo, queue, store, dispatcher).run_once()
