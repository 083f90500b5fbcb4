import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.analysis.models.analysis_record import AnalysisRecord, hash_url
from app.features.analysis.schemas.pipeline import Report
from app.platform.config import settings

logger = logging.getLogger(__name__)


def record_age_hours(record: AnalysisRecord, now: Optional[datetime] = None) -> float:
    created_at = record.created_at
    if created_at.tzinfo is None:
        # SQLite hands back naive UTC timestamps
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / 3600)


def cache_cutoff(max_age_hours: float, dialect_name: str, now: Optional[datetime] = None) -> datetime:
    """Oldest created_at still served from the cache, in the form the database compares correctly."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=max_age_hours)
    if dialect_name == "sqlite":
        # SQLite stores timestamps as naive UTC text
        return cutoff.replace(tzinfo=None)
    return cutoff


class ArchiveService:
    """Completed reports in SQL, looked up by normalized URL for the report cache."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_cached(self, normalized_url: str, max_age_hours: Optional[float] = None) -> Optional[AnalysisRecord]:
        """Newest completed report for the URL that is younger than ``max_age_hours``."""
        max_age_hours = settings.CACHE_TTL_HOURS if max_age_hours is None else max_age_hours
        cutoff = cache_cutoff(max_age_hours, self.db.get_bind().dialect.name)

        result = await self.db.execute(
            select(AnalysisRecord)
            .where(
                AnalysisRecord.url_hash == hash_url(normalized_url),
                AnalysisRecord.status == "completed",
                AnalysisRecord.created_at >= cutoff,
            )
            .order_by(AnalysisRecord.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def get_by_request_id(self, request_id: str) -> Optional[AnalysisRecord]:
        result = await self.db.execute(
            select(AnalysisRecord).where(AnalysisRecord.request_id == request_id)
        )
        return result.scalars().first()

    async def save(self, report: Report, analysis_time_ms: Optional[int] = None) -> AnalysisRecord:
        """Archive a completed report; archiving the same request twice keeps the first row."""
        existing = await self.get_by_request_id(report.request_id)
        if existing is not None:
            return existing

        record = AnalysisRecord(
            request_id=report.request_id,
            url=report.url,
            url_hash=hash_url(report.url),
            status=report.status.value,
            overall_score=report.scores.overall,
            accessibility_score=report.scores.accessibility,
            seo_score=report.scores.seo,
            performance_score=report.scores.performance,
            total_violations=report.summary.total_violations,
            analysis_time_ms=analysis_time_ms,
            report=report.to_dict(),
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        logger.info(f"[{report.request_id}] Archived report for {report.url}")
        return record

    async def mark_accessed(self, record: AnalysisRecord) -> AnalysisRecord:
        record.access_count = (record.access_count or 0) + 1
        record.last_accessed_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    @staticmethod
    def to_report(record: AnalysisRecord) -> Report:
        return Report.model_validate(record.report)
