"""
Redis-backed job queue.

Keys (under settings.REDIS_KEY_PREFIX):
    job:{id}         JSON Job record, expires after RESULT_TTL_SECONDS
    queue:{kind}     list of job ids waiting to be claimed (FIFO, best effort)
    leases:{kind}    sorted set of running job ids scored by lease expiry

Every state change of a job goes through a WATCH/MULTI transaction on its
key, so claim/complete/fail are serialized per job id across processes.
"""
import logging
import time
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.features.analysis.schemas.pipeline import Job, JobKind, JobState
from app.platform.config import settings
from app.platform.exceptions import QueueUnavailable

logger = logging.getLogger(__name__)

# How far down a kind's list claim() looks for a job with satisfied dependencies
CLAIM_SCAN_LIMIT = 100


def queue_errors(func):
    """Surface Redis connectivity problems as QueueUnavailable."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise QueueUnavailable(f"Job queue unreachable: {e}") from e
    return wrapper


def _kind(kind: Union[JobKind, str]) -> str:
    return JobKind(kind).value


class JobQueue:
    def __init__(
        self,
        redis: Redis,
        prefix: Optional[str] = None,
        lease_seconds: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.prefix = prefix or settings.REDIS_KEY_PREFIX
        self.lease_seconds = lease_seconds or settings.JOB_LEASE_SECONDS
        self.ttl_seconds = ttl_seconds or settings.RESULT_TTL_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.QUEUE_POLL_INTERVAL_SECONDS
        self.clock = clock

    # ── keys ────────────────────────────────────

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    def _queue_key(self, kind: Union[JobKind, str]) -> str:
        return f"{self.prefix}:queue:{_kind(kind)}"

    def _lease_key(self, kind: Union[JobKind, str]) -> str:
        return f"{self.prefix}:leases:{_kind(kind)}"

    # ── reads ───────────────────────────────────

    @queue_errors
    def ping(self) -> bool:
        return bool(self.redis.ping())

    @queue_errors
    def get(self, job_id: str) -> Optional[Job]:
        raw = self.redis.get(self._job_key(job_id))
        return Job.model_validate_json(raw) if raw else None

    @queue_errors
    def get_many(self, job_ids: Iterable[str]) -> List[Optional[Job]]:
        job_ids = list(job_ids)
        if not job_ids:
            return []
        raws = self.redis.mget([self._job_key(job_id) for job_id in job_ids])
        return [Job.model_validate_json(raw) if raw else None for raw in raws]

    @queue_errors
    def pending_count(self, kind: Union[JobKind, str]) -> int:
        return int(self.redis.llen(self._queue_key(kind)))

    # ── writes ──────────────────────────────────

    @queue_errors
    def enqueue(self, job: Job) -> str:
        """
        Store a job and make it claimable by its kind's pool.

        Enqueueing an id that already exists is a no-op, which keeps
        fan-out with deterministic ids idempotent.
        """
        key = self._job_key(job.id)
        job = job.model_copy(update={
            "state": JobState.queued,
            "created_at": job.created_at or self.clock(),
        })

        def _enqueue(pipe):
            if pipe.exists(key):
                return False
            pipe.multi()
            pipe.set(key, job.to_json(), ex=self.ttl_seconds)
            pipe.rpush(self._queue_key(job.kind), job.id)
            return True

        created = self.redis.transaction(_enqueue, key, value_from_callable=True)
        if created:
            logger.info(f"[{job.request_id}] Enqueued {job.kind.value} job {job.id}")
        return job.id

    @queue_errors
    def claim(self, kind: Union[JobKind, str], timeout: float = 0) -> Optional[Job]:
        """
        Claim the oldest claimable job of ``kind``.

        ``timeout=0`` is a single non-blocking poll; otherwise the queue is
        polled every ``poll_interval`` seconds until a job shows up or the
        timeout elapses.
        """
        deadline = self.clock() + timeout
        while True:
            self.reclaim_expired(kind)
            job = self._claim_once(kind)
            if job is not None or self.clock() >= deadline:
                return job
            time.sleep(self.poll_interval)

    def _claim_once(self, kind: Union[JobKind, str]) -> Optional[Job]:
        queue_key = self._queue_key(kind)
        for job_id in self.redis.lrange(queue_key, 0, CLAIM_SCAN_LIMIT - 1):
            job = self.get(job_id)
            if job is None or job.state != JobState.queued:
                # Expired or already handled elsewhere
                self.redis.lrem(queue_key, 0, job_id)
                continue
            if not self._dependencies_met(job):
                continue
            claimed = self._take(job_id, queue_key)
            if claimed is not None:
                return claimed
        return None

    def _dependencies_met(self, job: Job) -> bool:
        if not job.depends_on:
            return True
        return all(dep is not None and dep.state == JobState.done for dep in self.get_many(job.depends_on))

    def _take(self, job_id: str, queue_key: str) -> Optional[Job]:
        key = self._job_key(job_id)

        def _claim(pipe):
            raw = pipe.get(key)
            if raw is None:
                return None
            job = Job.model_validate_json(raw)
            if job.state != JobState.queued:
                return None
            now = self.clock()
            job = job.model_copy(update={
                "state": JobState.running,
                "attempts": job.attempts + 1,
                "lease_expires_at": now + self.lease_seconds,
            })
            pipe.multi()
            pipe.set(key, job.to_json(), ex=self.ttl_seconds)
            pipe.lrem(queue_key, 0, job_id)
            pipe.zadd(self._lease_key(job.kind), {job_id: job.lease_expires_at})
            return job

        job = self.redis.transaction(_claim, key, value_from_callable=True)
        if job is not None:
            logger.info(f"[{job.request_id}] Claimed {job.kind.value} job {job.id} (attempt {job.attempts})")
        return job

    @queue_errors
    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None, attempt: Optional[int] = None) -> bool:
        """
        Mark a job done. Returns False if it was already terminal or is gone.

        ``attempt`` is the claim token (``Job.attempts`` as returned by claim).
        When given, a holder whose lease was reclaimed and claimed again by
        another worker is refused.
        """
        return self._finish(job_id, {"state": JobState.done, "result": result or {}}, attempt)

    @queue_errors
    def fail(self, job_id: str, code: str, message: Optional[str] = None, attempt: Optional[int] = None) -> bool:
        """Mark a job failed. Same return value and ``attempt`` rules as complete()."""
        return self._finish(job_id, {
            "state": JobState.failed,
            "error_code": code,
            "error_message": message or code,
        }, attempt)

    def _finish(self, job_id: str, update: Dict[str, Any], attempt: Optional[int] = None) -> bool:
        key = self._job_key(job_id)
        stale = []

        def _transition(pipe):
            stale.clear()
            raw = pipe.get(key)
            if raw is None:
                return None
            job = Job.model_validate_json(raw)
            if job.is_terminal:
                return None
            if attempt is not None and job.attempts != attempt:
                stale.append(job.attempts)
                return None
            job = job.model_copy(update={**update, "finished_at": self.clock(), "lease_expires_at": None})
            pipe.multi()
            pipe.set(key, job.to_json(), ex=self.ttl_seconds)
            pipe.zrem(self._lease_key(job.kind), job_id)
            pipe.lrem(self._queue_key(job.kind), 0, job_id)
            return job

        job = self.redis.transaction(_transition, key, value_from_callable=True)
        if stale:
            logger.warning(f"Refusing result of attempt {attempt} for job {job_id}, now on attempt {stale[-1]}")
            return False
        if job is None:
            logger.info(f"Ignoring duplicate completion for job {job_id}")
            return False
        logger.info(f"[{job.request_id}] {job.kind.value} job {job.id} -> {job.state.value}")
        return True

    @queue_errors
    def reclaim_expired(self, kind: Union[JobKind, str]) -> int:
        """Return running jobs whose lease has lapsed to the front of the queue."""
        lease_key = self._lease_key(kind)
        now = self.clock()
        reclaimed = 0
        for job_id in self.redis.zrangebyscore(lease_key, "-inf", now):
            key = self._job_key(job_id)

            def _reclaim(pipe):
                raw = pipe.get(key)
                if raw is None:
                    pipe.multi()
                    pipe.zrem(lease_key, job_id)
                    return False
                job = Job.model_validate_json(raw)
                if job.state != JobState.running:
                    pipe.multi()
                    pipe.zrem(lease_key, job_id)
                    return False
                if job.lease_expires_at is not None and job.lease_expires_at > now:
                    return False
                job = job.model_copy(update={"state": JobState.queued, "lease_expires_at": None})
                pipe.multi()
                pipe.set(key, job.to_json(), ex=self.ttl_seconds)
                pipe.zrem(lease_key, job_id)
                pipe.lpush(self._queue_key(kind), job_id)
                return True

            if self.redis.transaction(_reclaim, key, value_from_callable=True):
                logger.warning(f"Lease expired for {_kind(kind)} job {job_id}, returned to queue")
                reclaimed += 1
        return reclaimed
