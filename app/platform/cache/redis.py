from functools import lru_cache

from redis import Redis

from app.platform.config import settings


@lru_cache()
def get_redis() -> Redis:
    """
    Shared Redis client for the job queue and request store.

    Synchronous on purpose: Celery workers call it directly and the API
    reaches it through the threadpool.
    """
    return Redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=10,
        health_check_interval=30,
    )
