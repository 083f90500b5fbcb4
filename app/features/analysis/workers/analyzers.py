import logging
from typing import Any, Dict

from app.features.analysis.schemas.pipeline import Job, JobKind
from app.features.analysis.services.checks.accessibility import accessibility_battery
from app.features.analysis.services.checks.base import CheckBattery
from app.features.analysis.services.checks.performance import performance_battery
from app.features.analysis.services.checks.seo import seo_battery
from app.features.analysis.workers.base import QueueWorker

logger = logging.getLogger(__name__)

BATTERIES = {
    JobKind.accessibility: accessibility_battery,
    JobKind.seo: seo_battery,
    JobKind.performance: performance_battery,
}


class AnalyzerWorker(QueueWorker):
    """Runs one domain's check battery against the request's FetchArtifact."""

    def __init__(self, kind: JobKind, queue, store, dispatcher, battery: CheckBattery = None):
        super().__init__(queue, store, dispatcher)
        self.kind = JobKind(kind)
        self.battery = battery or BATTERIES[self.kind]

    def process(self, job: Job) -> Dict[str, Any]:
        # ArtifactUnusable propagates and fails the job
        result = self.battery.run(self.store.get_artifact(job.request_id))
        logger.info(
            f"[{job.request_id}] {self.kind.value}: score {result.score}, {len(result.findings)} finding(s)"
        )
        return result.to_dict()
