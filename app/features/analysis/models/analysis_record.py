import hashlib

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.platform.db.base import BaseModel


def hash_url(normalized_url: str) -> str:
    return hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()


class AnalysisRecord(BaseModel):
    """Archived completed analysis; also the lookup table for cached reports."""

    __tablename__ = "analyses"

    request_id = Column(String, unique=True, nullable=False, index=True)

    url = Column(Text, nullable=False)
    url_hash = Column(String(64), nullable=False, index=True)  # sha256 of the normalized URL

    status = Column(String(20), nullable=False, default="completed")

    # Scores (0-100); domains that failed stay NULL
    overall_score = Column(Integer, nullable=False)
    accessibility_score = Column(Integer, nullable=True)
    seo_score = Column(Integer, nullable=True)
    performance_score = Column(Integer, nullable=True)

    total_violations = Column(Integer, nullable=False, default=0)
    analysis_time_ms = Column(Integer, nullable=True)

    # Full stored Report (camelCase JSON)
    report = Column(JSON, nullable=False)

    access_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<AnalysisRecord {self.request_id} {self.url} overall={self.overall_score}>"
