"""
Celery tasks for the analysis pipeline.

Each worker task is a wake-up: it claims at most one job of its kind from
the job queue, processes it and signals the master. Task arguments never
carry job data, so redelivered or duplicated messages are harmless.
"""
import logging
from typing import Any, Dict, Optional

from app.features.analysis.schemas.pipeline import JobKind
from app.platform.celery_app import celery_app
from app.platform.exceptions import QueueUnavailable

logger = logging.getLogger(__name__)


def _run_worker(kind: JobKind) -> Optional[Dict[str, Any]]:
    from app.features.analysis.services.pipeline import get_pipeline

    job = get_pipeline().workers[kind].run_once()
    if job is None:
        logger.debug(f"No claimable {kind.value} job")
        return None
    return {"job_id": job.id, "request_id": job.request_id, "state": job.state.value}


@celery_app.task(
    bind=True,
    name="app.features.analysis.workers.tasks.run_fetch_worker",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(QueueUnavailable,),
    retry_backoff=True,
)
def run_fetch_worker(self):
    return _run_worker(JobKind.fetch)


@celery_app.task(
    bind=True,
    name="app.features.analysis.workers.tasks.run_accessibility_worker",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(QueueUnavailable,),
    retry_backoff=True,
)
def run_accessibility_worker(self):
    return _run_worker(JobKind.accessibility)


@celery_app.task(
    bind=True,
    name="app.features.analysis.workers.tasks.run_seo_worker",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(QueueUnavailable,),
    retry_backoff=True,
)
def run_seo_worker(self):
    return _run_worker(JobKind.seo)


@celery_app.task(
    bind=True,
    name="app.features.analysis.workers.tasks.run_performance_worker",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(QueueUnavailable,),
    retry_backoff=True,
)
def run_performance_worker(self):
    return _run_worker(JobKind.performance)


@celery_app.task(
    bind=True,
    name="app.features.analysis.workers.tasks.advance_request",
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(QueueUnavailable,),
    retry_backoff=True,
)
def advance_request(self, request_id: str) -> Optional[str]:
    """Re-evaluate one request after one of its jobs finished."""
    from app.features.analysis.services.pipeline import get_pipeline

    request = get_pipeline().master.advance(request_id)
    return request.status.value if request else None


WORKER_TASKS = {
    JobKind.fetch: run_fetch_worker,
    JobKind.accessibility: run_accessibility_worker,
    JobKind.seo: run_seo_worker,
    JobKind.performance: run_performance_worker,
}
