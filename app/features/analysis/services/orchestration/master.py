import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from app.features.analysis.schemas.pipeline import (
    ANALYSIS_KINDS,
    AnalysisRequest,
    Job,
    JobKind,
    JobState,
    Report,
    RequestStatus,
)
from app.features.analysis.services.orchestration.aggregator import build_report, failure_code
from app.features.analysis.services.queue.job_queue import JobQueue
from app.features.analysis.services.queue.request_store import RequestStore
from app.platform.config import settings
from app.platform.exceptions import AnalysisFailed, RequestNotFound, RequestTimeout
from app.platform.utils.url_validator import normalize_url

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (
    RequestStatus.received,
    RequestStatus.fetching,
    RequestStatus.analyzing,
    RequestStatus.aggregating,
)


def fetch_job_id(request_id: str) -> str:
    return f"{request_id}:{JobKind.fetch.value}"


def analysis_job_id(request_id: str, kind: JobKind) -> str:
    return f"{request_id}:{kind.value}"


class MasterWorker:
    """
    Owns the AnalysisRequest state machine.

        received -> fetching -> analyzing -> aggregating -> completed | failed

    Every transition is a compare-and-set in the RequestStore, so several
    masters reacting to the same event race safely: exactly one wins each
    step and the losers see the new state on their next read.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: RequestStore,
        dispatcher,
        clock: Callable[[], float] = time.time,
        min_successful_domains: Optional[int] = None,
        request_timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.min_successful_domains = (
            settings.MIN_SUCCESSFUL_DOMAINS if min_successful_domains is None else min_successful_domains
        )
        self.request_timeout = request_timeout or settings.REQUEST_TIMEOUT_SECONDS

    # ── entry point ─────────────────────────────

    def submit(self, raw_url: str, report_type: str = "overview") -> AnalysisRequest:
        """
        Register a new request and start its fetch.

        Raises:
            InvalidUrl: the URL cannot be normalized
            QueueUnavailable: Redis is unreachable
        """
        normalized = normalize_url(raw_url)
        request_id = str(uuid.uuid4())

        request = AnalysisRequest(
            id=request_id,
            raw_url=raw_url,
            normalized_url=normalized,
            report_type=report_type,
            submitted_at=self.clock(),
            fetch_job_id=fetch_job_id(request_id),
        )
        self.store.create(request)
        logger.info(f"[{request_id}] Received {normalized} ({report_type})")

        self.queue.enqueue(Job(
            id=request.fetch_job_id,
            request_id=request_id,
            kind=JobKind.fetch,
            payload={"url": normalized},
        ))
        request = self.store.transition(request_id, [RequestStatus.received], RequestStatus.fetching) or request

        self.dispatcher.wake(JobKind.fetch)
        return request

    # ── state machine ───────────────────────────

    def advance(self, request_id: str) -> Optional[AnalysisRequest]:
        """
        Move a request forward based on the current state of its jobs.

        Safe to call any number of times; events for terminal requests are
        ignored.
        """
        request = self.store.get(request_id)
        if request is None:
            logger.warning(f"[{request_id}] advance() for unknown or expired request")
            return None
        if request.is_terminal:
            logger.debug(f"[{request_id}] Ignoring event for {request.status.value} request")
            return request

        if request.status == RequestStatus.fetching:
            return self._after_fetch(request)
        if request.status in (RequestStatus.analyzing, RequestStatus.aggregating):
            return self._after_analysis(request)
        return request

    def _after_fetch(self, request: AnalysisRequest) -> AnalysisRequest:
        fetch_job = self.queue.get(request.fetch_job_id)
        if fetch_job is None or not fetch_job.is_terminal:
            return request

        if fetch_job.state == JobState.failed:
            logger.warning(f"[{request.id}] Fetch failed: {fetch_job.error_code}")
            return self._fail(
                request,
                [RequestStatus.fetching],
                fetch_job.error_code or AnalysisFailed.code,
                fetch_job.error_message,
            )

        job_ids = []
        for kind in ANALYSIS_KINDS:
            job_id = analysis_job_id(request.id, kind)
            self.queue.enqueue(Job(
                id=job_id,
                request_id=request.id,
                kind=kind,
                depends_on=[fetch_job.id],
                payload={"url": request.normalized_url},
            ))
            job_ids.append(job_id)

        updated = self.store.transition(
            request.id, [RequestStatus.fetching], RequestStatus.analyzing, analysis_job_ids=job_ids
        )
        if updated is None:
            # Another master got here first
            return self.store.get(request.id) or request

        for kind in ANALYSIS_KINDS:
            self.dispatcher.wake(kind)
        return updated

    def _after_analysis(self, request: AnalysisRequest) -> AnalysisRequest:
        jobs = self.queue.get_many(request.analysis_job_ids)
        if not jobs or any(job is None or not job.is_terminal for job in jobs):
            return request

        if request.status == RequestStatus.analyzing:
            moved = self.store.transition(request.id, [RequestStatus.analyzing], RequestStatus.aggregating)
            if moved is None:
                return self.store.get(request.id) or request
            request = moved

        succeeded = [job for job in jobs if job.state == JobState.done]
        failed = [job for job in jobs if job.state == JobState.failed]

        if len(succeeded) < self.min_successful_domains:
            code = failure_code(failed)
            message = "; ".join(f"{job.kind.value}: {job.error_message or job.error_code}" for job in failed)
            logger.warning(f"[{request.id}] Only {len(succeeded)} domain(s) succeeded: {message}")
            return self._fail(request, [RequestStatus.aggregating], code, message or None)

        report = self.store.save_report(self.aggregate(request.id))
        completed = self.store.transition(
            request.id,
            [RequestStatus.aggregating],
            RequestStatus.completed,
            completed_at=self.clock(),
        )
        if completed is None:
            return self.store.get(request.id) or request

        logger.info(
            f"[{request.id}] Completed: overall {report.scores.overall}/100, "
            f"{report.summary.total_violations} finding(s), failed domains {report.summary.failed_domains}"
        )
        return completed

    def _fail(
        self,
        request: AnalysisRequest,
        from_statuses: List[RequestStatus],
        code: str,
        message: Optional[str] = None,
    ) -> AnalysisRequest:
        failed = self.store.transition(
            request.id,
            from_statuses,
            RequestStatus.failed,
            error_code=code,
            error_message=message or code,
            completed_at=self.clock(),
        )
        return failed or self.store.get(request.id) or request

    # ── aggregation ─────────────────────────────

    def aggregate(self, request_id: str) -> Report:
        """
        Build the Report from the request's terminal jobs.

        Reads only; calling it repeatedly yields identical Reports.

        Raises:
            RequestNotFound: unknown or expired request
            AnalysisFailed: some analysis job is not terminal yet
        """
        request = self.store.get(request_id)
        if request is None:
            raise RequestNotFound(f"Request {request_id} not found")

        jobs = self.queue.get_many(request.analysis_job_ids)
        if any(job is None or not job.is_terminal for job in jobs):
            raise AnalysisFailed(f"Request {request_id} still has unfinished analysis jobs")

        return build_report(request, self.queue.get(request.fetch_job_id), jobs)

    # ── timeouts / maintenance ──────────────────

    def expire(self, request_id: str, message: Optional[str] = None) -> Optional[AnalysisRequest]:
        """Fail a request that is still in flight with RequestTimeout."""
        expired = self.store.transition(
            request_id,
            ACTIVE_STATUSES,
            RequestStatus.failed,
            error_code=RequestTimeout.code,
            error_message=message or "Analysis did not finish in time",
            completed_at=self.clock(),
        )
        if expired is not None:
            logger.warning(f"[{request_id}] Expired: {expired.error_message}")
            return expired

        current = self.store.get(request_id)
        if current is None:
            self.store.forget_active(request_id)
        return current

    def sweep(self) -> Dict[str, int]:
        """
        Periodic maintenance pass.

        Returns running leases that lapsed to their queues, re-advances
        in-flight requests (recovering lost completion signals), expires
        requests older than the request timeout and re-wakes every pool that
        still has queued jobs.
        """
        now = self.clock()
        stats = {"reclaimed": 0, "advanced": 0, "expired": 0, "woken": 0}

        for kind in JobKind:
            stats["reclaimed"] += self.queue.reclaim_expired(kind)

        cutoff = now - self.request_timeout
        for request_id in self.store.stale_request_ids(now):
            request = self.store.get(request_id)
            if request is None or request.is_terminal:
                self.store.forget_active(request_id)
                continue
            if request.submitted_at <= cutoff:
                self.expire(request_id)
                stats["expired"] += 1
                continue
            self.advance(request_id)
            stats["advanced"] += 1

        for kind in JobKind:
            if self.queue.pending_count(kind):
                self.dispatcher.wake(kind)
                stats["woken"] += 1

        if any(stats.values()):
            logger.info(f"Sweep: {stats}")
        return stats
