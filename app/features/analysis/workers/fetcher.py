import logging
import time
from typing import Any, Callable, Dict, Optional

from app.features.analysis.schemas.pipeline import Job, JobKind
from app.features.analysis.services.fetching.page_fetcher import PageFetcher
from app.features.analysis.workers.base import QueueWorker
from app.platform.config import settings
from app.platform.exceptions import AnalysisError

logger = logging.getLogger(__name__)


class FetcherWorker(QueueWorker):
    """
    Consumes fetch jobs.

    Transient errors (FetchTimeout, FetchNetworkError) are retried up to
    FETCH_MAX_RETRIES times with exponential backoff; an HTTP error status
    fails the job straight away.
    """

    kind = JobKind.fetch

    def __init__(
        self,
        queue,
        store,
        dispatcher,
        fetcher: Optional[PageFetcher] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(queue, store, dispatcher)
        self._fetcher = fetcher
        self.max_retries = settings.FETCH_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.FETCH_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.sleep = sleep

    @property
    def fetcher(self) -> PageFetcher:
        # Built lazily so processes that never fetch never touch the browser setup
        if self._fetcher is None:
            self._fetcher = PageFetcher()
        return self._fetcher

    def process(self, job: Job) -> Dict[str, Any]:
        url = job.payload["url"]
        retries = 0

        while True:
            try:
                artifact = self.fetcher.fetch(job.request_id, url)
                break
            except AnalysisError as e:
                if not e.transient or retries >= self.max_retries:
                    raise
                retries += 1
                delay = self.backoff_seconds * (2 ** (retries - 1))
                logger.warning(
                    f"[{job.request_id}] {e.code} fetching {url}, retry {retries}/{self.max_retries} in {delay:.1f}s"
                )
                self.sleep(delay)

        if not self.store.save_artifact(artifact):
            logger.info(f"[{job.request_id}] Artifact already stored, keeping the first one")
            artifact = self.store.get_artifact(job.request_id) or artifact

        logger.info(f"[{job.request_id}] Fetched {artifact.final_url} ({artifact.status_code})")
        return {
            "finalUrl": artifact.final_url,
            "statusCode": artifact.status_code,
            "title": artifact.title,
            "timing": artifact.timing.to_dict(),
            "retries": retries,
        }
