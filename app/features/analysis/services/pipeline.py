from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

from redis import Redis

from app.features.analysis.schemas.pipeline import ANALYSIS_KINDS, JobKind
from app.features.analysis.services.fetching.page_fetcher import PageFetcher
from app.features.analysis.services.orchestration.dispatcher import CeleryDispatcher, InlineDispatcher
from app.features.analysis.services.orchestration.master import MasterWorker
from app.features.analysis.services.queue.job_queue import JobQueue
from app.features.analysis.services.queue.request_store import RequestStore
from app.features.analysis.workers.analyzers import AnalyzerWorker
from app.features.analysis.workers.base import QueueWorker
from app.features.analysis.workers.fetcher import FetcherWorker
from app.platform.cache.redis import get_redis
from app.platform.config import settings


@dataclass
class Pipeline:
    queue: JobQueue
    store: RequestStore
    master: MasterWorker
    workers: Dict[JobKind, QueueWorker]


def build_pipeline(
    redis: Redis,
    dispatcher=None,
    fetcher: Optional[PageFetcher] = None,
    **fetcher_worker_options,
) -> Pipeline:
    """
    Wire queue, store, master and the four workers around one Redis client.

    Without an explicit dispatcher, PIPELINE_DISPATCH picks Celery or the
    in-process dispatcher.
    """
    if dispatcher is None:
        dispatcher = InlineDispatcher() if settings.PIPELINE_DISPATCH == "inline" else CeleryDispatcher()

    queue = JobQueue(redis)
    store = RequestStore(redis)
    workers: Dict[JobKind, QueueWorker] = {
        JobKind.fetch: FetcherWorker(queue, store, dispatcher, fetcher=fetcher, **fetcher_worker_options),
    }
    for kind in ANALYSIS_KINDS:
        workers[kind] = AnalyzerWorker(kind, queue, store, dispatcher)

    pipeline = Pipeline(
        queue=queue,
        store=store,
        master=MasterWorker(queue, store, dispatcher),
        workers=workers,
    )
    if isinstance(dispatcher, InlineDispatcher):
        dispatcher.attach(pipeline)
    return pipeline


@lru_cache()
def get_pipeline() -> Pipeline:
    """Process-wide pipeline; also the FastAPI dependency for the analysis routes."""
    return build_pipeline(get_redis())
