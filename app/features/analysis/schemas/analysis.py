"""
Analysis API Schemas

Request and response models for the /api/accessibility endpoints.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from app.features.analysis.schemas.pipeline import AnalysisRequest, Report

ReportType = Literal["overview", "detailed", "accessibility", "seo", "performance"]


class AnalyzeRequest(BaseModel):
    """Body of POST /api/accessibility/analyze."""
    url: str = Field(..., min_length=1, max_length=2048)
    report_type: ReportType = Field("overview", alias="reportType")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "url": "example.com",
                "reportType": "overview"
            }
        }


class AnalyzeMeta(BaseModel):
    request_id: str = Field(..., alias="requestId")
    report_type: str = Field(..., alias="reportType")
    cached: bool = False
    analysis_time_ms: int = Field(0, alias="analysisTimeMs")
    cache_age_hours: Optional[float] = Field(None, alias="cacheAgeHours")

    class Config:
        populate_by_name = True


class AnalyzeResponse(BaseModel):
    """Documented shape of a successful analyze call."""
    success: bool = True
    data: Dict[str, Any]
    meta: Optional[AnalyzeMeta] = None


class AnalysisStatusResponse(BaseModel):
    """GET /api/accessibility/analyses/{request_id}"""
    request: Dict[str, Any]
    report: Optional[Dict[str, Any]] = None

    @classmethod
    def build(cls, request: AnalysisRequest, report: Optional[Report]) -> "AnalysisStatusResponse":
        return cls(
            request=request.to_dict(),
            report=report.to_dict() if report else None,
        )
