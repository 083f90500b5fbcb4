"""
Request, artifact and report storage next to the job queue.

Keys (under settings.REDIS_KEY_PREFIX):
    request:{id}        JSON AnalysisRequest
    requests:active     sorted set of non-terminal request ids by submission time
    artifact:{id}       JSON FetchArtifact, written once
    report:{id}         JSON Report, written once
"""
import logging
from typing import Any, Iterable, List, Optional

from redis import Redis

from app.features.analysis.schemas.pipeline import (
    TERMINAL_REQUEST_STATUSES,
    AnalysisRequest,
    FetchArtifact,
    Report,
    RequestStatus,
)
from app.features.analysis.services.queue.job_queue import queue_errors
from app.platform.config import settings

logger = logging.getLogger(__name__)


class RequestStore:
    def __init__(self, redis: Redis, prefix: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.redis = redis
        self.prefix = prefix or settings.REDIS_KEY_PREFIX
        self.ttl_seconds = ttl_seconds or settings.RESULT_TTL_SECONDS

    def _request_key(self, request_id: str) -> str:
        return f"{self.prefix}:request:{request_id}"

    def _artifact_key(self, request_id: str) -> str:
        return f"{self.prefix}:artifact:{request_id}"

    def _report_key(self, request_id: str) -> str:
        return f"{self.prefix}:report:{request_id}"

    @property
    def _active_key(self) -> str:
        return f"{self.prefix}:requests:active"

    # ── requests ────────────────────────────────

    @queue_errors
    def create(self, request: AnalysisRequest) -> bool:
        created = self.redis.set(self._request_key(request.id), request.to_json(), nx=True, ex=self.ttl_seconds)
        if created:
            self.redis.zadd(self._active_key, {request.id: request.submitted_at})
        return bool(created)

    @queue_errors
    def get(self, request_id: str) -> Optional[AnalysisRequest]:
        raw = self.redis.get(self._request_key(request_id))
        return AnalysisRequest.model_validate_json(raw) if raw else None

    @queue_errors
    def transition(
        self,
        request_id: str,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **fields: Any,
    ) -> Optional[AnalysisRequest]:
        """
        Compare-and-set the request status.

        Returns the updated request, or None when the request is gone or its
        current status is not one of ``from_statuses``.
        """
        key = self._request_key(request_id)
        allowed = tuple(from_statuses)

        def _transition(pipe):
            raw = pipe.get(key)
            if raw is None:
                return None
            request = AnalysisRequest.model_validate_json(raw)
            if request.status not in allowed:
                return None
            request = request.model_copy(update={**fields, "status": to_status})
            pipe.multi()
            pipe.set(key, request.to_json(), ex=self.ttl_seconds)
            if to_status in TERMINAL_REQUEST_STATUSES:
                pipe.zrem(self._active_key, request_id)
            return request

        updated = self.redis.transaction(_transition, key, value_from_callable=True)
        if updated is not None:
            logger.info(f"[{request_id}] Request -> {to_status.value}")
        return updated

    @queue_errors
    def stale_request_ids(self, submitted_before: float) -> List[str]:
        return list(self.redis.zrangebyscore(self._active_key, "-inf", submitted_before))

    @queue_errors
    def forget_active(self, request_id: str) -> None:
        self.redis.zrem(self._active_key, request_id)

    # ── artifacts ───────────────────────────────

    @queue_errors
    def save_artifact(self, artifact: FetchArtifact) -> bool:
        """First write wins; a redelivered fetch job keeps the original artifact."""
        return bool(self.redis.set(
            self._artifact_key(artifact.request_id), artifact.to_json(), nx=True, ex=self.ttl_seconds
        ))

    @queue_errors
    def get_artifact(self, request_id: str) -> Optional[FetchArtifact]:
        raw = self.redis.get(self._artifact_key(request_id))
        return FetchArtifact.model_validate_json(raw) if raw else None

    # ── reports ─────────────────────────────────

    @queue_errors
    def save_report(self, report: Report) -> Report:
        """Store the report unless one already exists; return the stored one."""
        key = self._report_key(report.request_id)
        if self.redis.set(key, report.to_json(), nx=True, ex=self.ttl_seconds):
            return report
        return Report.model_validate_json(self.redis.get(key))

    @queue_errors
    def get_report(self, request_id: str) -> Optional[Report]:
        raw = self.redis.get(self._report_key(request_id))
        return Report.model_validate_json(raw) if raw else None
