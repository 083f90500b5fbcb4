import logging
from typing import Any, Dict, Optional

from app.features.analysis.schemas.pipeline import Job, JobKind
from app.features.analysis.services.queue.job_queue import JobQueue
from app.features.analysis.services.queue.request_store import RequestStore
from app.platform.exceptions import AnalysisError, AnalysisFailed

logger = logging.getLogger(__name__)


class QueueWorker:
    """
    One claim -> process -> complete/fail cycle against the job queue.

    Subclasses implement ``process``. Any failure is recorded on the job;
    only an unreachable queue escapes ``run_once``.
    """

    kind: JobKind

    def __init__(self, queue: JobQueue, store: RequestStore, dispatcher):
        self.queue = queue
        self.store = store
        self.dispatcher = dispatcher

    def process(self, job: Job) -> Dict[str, Any]:
        raise NotImplementedError

    def run_once(self, timeout: float = 0) -> Optional[Job]:
        """Handle at most one job. Returns the job in its final state, or None if nothing was claimable."""
        job = self.queue.claim(self.kind, timeout=timeout)
        if job is None:
            return None

        try:
            result = self.process(job)
        except AnalysisError as e:
            logger.warning(f"[{job.request_id}] {self.kind.value} job failed: {e.code}: {e.message}")
            self.queue.fail(job.id, e.code, e.message, attempt=job.attempts)
        except Exception as e:
            logger.exception(f"[{job.request_id}] {self.kind.value} job crashed")
            self.queue.fail(job.id, AnalysisFailed.code, f"{type(e).__name__}: {e}", attempt=job.attempts)
        else:
            self.queue.complete(job.id, result, attempt=job.attempts)

        self.dispatcher.job_finished(job.request_id)
        return self.queue.get(job.id)
