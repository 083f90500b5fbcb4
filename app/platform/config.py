from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Site Analyzer"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True
    LOG_DIR: str = "logs"

    # ── Database (report archive) ───────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./site_analyzer.db"

    # ── Redis / Celery ──────────────────────────
    # Job queue, request state and artifacts all live on this instance
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "analysis"

    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    CELERY_ACCEPT_CONTENT: str = "json"
    CELERY_TASK_TRACK_STARTED: bool = True
    CELERY_TASK_TIME_LIMIT: int = 300

    # ── Job queue ───────────────────────────────
    # Above the worst-case fetch: (retries + 1) x (HTTP + render + settle) plus backoff
    JOB_LEASE_SECONDS: int = 300
    QUEUE_POLL_INTERVAL_SECONDS: float = 0.5
    RESULT_TTL_SECONDS: int = 3600  # Requests, jobs, artifacts and reports expire after 1 hour
    SWEEP_INTERVAL_SECONDS: float = 30.0
    # "celery" wakes worker pools through the broker; "inline" runs every
    # stage in the calling process (single-process local runs)
    PIPELINE_DISPATCH: Literal["celery", "inline"] = "celery"

    # ── Request lifecycle ───────────────────────
    REQUEST_TIMEOUT_SECONDS: int = 180
    API_MAX_WAIT_SECONDS: float = 120.0
    API_POLL_INTERVAL_SECONDS: float = 0.5
    MIN_SUCCESSFUL_DOMAINS: int = 1

    # ── Fetcher ─────────────────────────────────
    FETCH_RENDERER: Literal["selenium", "http"] = "selenium"
    FETCH_TIMEOUT_SECONDS: int = 30
    FETCH_MAX_RETRIES: int = 2
    FETCH_RETRY_BACKOFF_SECONDS: float = 2.0
    FETCH_SETTLE_SECONDS: float = 2.0
    FETCH_USER_AGENT: str = "SiteAnalyzer/1.0 (Web Accessibility Analysis Bot)"
    CHROMEDRIVER_PATH: Optional[str] = None
    BLOCK_PRIVATE_HOSTS: bool = True

    # ── Scoring / reports ───────────────────────
    SCORE_WEIGHT_ACCESSIBILITY: float = 0.4
    SCORE_WEIGHT_SEO: float = 0.3
    SCORE_WEIGHT_PERFORMANCE: float = 0.3
    OVERVIEW_FINDINGS_LIMIT: int = 10

    # ── Report cache ────────────────────────────
    CACHE_ENABLED: bool = True
    CACHE_TTL_HOURS: float = 24.0

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
