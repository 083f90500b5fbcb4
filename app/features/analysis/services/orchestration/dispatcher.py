"""
Wake-up signalling between pipeline stages.

Dispatchers never carry job data. ``wake(kind)`` tells a worker pool that
a job of that kind may be claimable, ``job_finished(request_id)`` tells the
master to re-evaluate a request. Losing or duplicating either signal is
harmless: the periodic sweep re-wakes pools and re-advances requests.
"""
import logging

from app.features.analysis.schemas.pipeline import JobKind

logger = logging.getLogger(__name__)


class CeleryDispatcher:
    """Signals worker pools and the master through their Celery queues."""

    def wake(self, kind: JobKind) -> None:
        from app.features.analysis.workers.tasks import WORKER_TASKS

        WORKER_TASKS[JobKind(kind)].delay()

    def job_finished(self, request_id: str) -> None:
        from app.features.analysis.workers.tasks import advance_request

        advance_request.delay(request_id)


class InlineDispatcher:
    """
    Runs every stage synchronously in the calling process.

    Needs the pipeline it drives, attached after construction since the
    pipeline's workers in turn hold this dispatcher.
    """

    def __init__(self):
        self.pipeline = None

    def attach(self, pipeline) -> None:
        self.pipeline = pipeline

    def wake(self, kind: JobKind) -> None:
        worker = self.pipeline.workers[JobKind(kind)]
        while worker.run_once() is not None:
            pass

    def job_finished(self, request_id: str) -> None:
        self.pipeline.master.advance(request_id)
