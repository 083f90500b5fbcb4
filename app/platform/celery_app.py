from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - analysis.orchestration: Master worker (request state machine, aggregation)
    - analysis.fetch: Fetcher worker pool (headless browser)
    - analysis.accessibility: Accessibility worker pool
    - analysis.seo: SEO worker pool
    - analysis.performance: Performance worker pool
    - celery: Periodic maintenance (lease reclaim, request timeouts)

    Celery only carries wake-up signals. Job state, leases and dependencies
    live in the Redis job queue, so a lost or duplicated Celery message never
    loses or duplicates a job. Pool size per kind is the worker's
    --concurrency, e.g.:

        celery -A app.platform.celery_app worker -Q analysis.fetch -c 4
    """
    celery_app = Celery(
        "site_analyzer",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Results are not consumed; job results live in the job queue
        task_ignore_result=True,
        result_expires=settings.RESULT_TTL_SECONDS,

        # Task routing - each worker kind goes to its dedicated queue
        task_routes={
            "app.features.analysis.workers.tasks.run_fetch_worker": {"queue": "analysis.fetch"},
            "app.features.analysis.workers.tasks.run_accessibility_worker": {"queue": "analysis.accessibility"},
            "app.features.analysis.workers.tasks.run_seo_worker": {"queue": "analysis.seo"},
            "app.features.analysis.workers.tasks.run_performance_worker": {"queue": "analysis.performance"},
            "app.features.analysis.workers.tasks.advance_request": {"queue": "analysis.orchestration"},
            "app.features.analysis.workers.periodic_tasks.sweep_pipeline": {"queue": "celery"},
        },

        task_queues=(
            Queue("default"),
            Queue("celery"),
            Queue("analysis.orchestration"),
            Queue("analysis.fetch"),
            Queue("analysis.accessibility"),
            Queue("analysis.seo"),
            Queue("analysis.performance"),
        ),

        task_default_queue="default",

        worker_prefetch_multiplier=1,  # Fair distribution

        task_acks_late=True,  # Acknowledge after task completes
        task_reject_on_worker_lost=True,  # Requeue if worker dies

        beat_schedule={
            "sweep-pipeline": {
                "task": "app.features.analysis.workers.periodic_tasks.sweep_pipeline",
                "schedule": settings.SWEEP_INTERVAL_SECONDS,
            },
        },
    )

    celery_app.autodiscover_tasks(["app.features.analysis.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
