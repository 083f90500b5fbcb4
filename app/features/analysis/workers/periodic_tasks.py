"""
Celery periodic tasks for pipeline maintenance.

Runs on a schedule via Celery Beat (see beat_schedule in celery_app).
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="app.features.analysis.workers.periodic_tasks.sweep_pipeline")
def sweep_pipeline(self):
    """
    Reclaim lapsed leases, expire requests past REQUEST_TIMEOUT_SECONDS,
    re-advance in-flight requests and re-wake pools with queued jobs.
    """
    from app.features.analysis.services.pipeline import get_pipeline

    return get_pipeline().master.sweep()
