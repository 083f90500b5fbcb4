"""
Pipeline Schemas

Data carried between the API, the job queue and the workers. Everything is
stored in Redis as JSON using the camelCase aliases, which is also the shape
API clients see.
"""
import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Enums
# ============================================================================

class RequestStatus(str, enum.Enum):
    """AnalysisRequest state machine"""
    received = "received"
    fetching = "fetching"
    analyzing = "analyzing"
    aggregating = "aggregating"
    completed = "completed"
    failed = "failed"


TERMINAL_REQUEST_STATUSES = (RequestStatus.completed, RequestStatus.failed)


class JobKind(str, enum.Enum):
    fetch = "fetch"
    accessibility = "accessibility"
    seo = "seo"
    performance = "performance"


ANALYSIS_KINDS = (JobKind.accessibility, JobKind.seo, JobKind.performance)


class JobState(str, enum.Enum):
    queued = "queued"
    running = "running"
    done = "done"
    failed = "failed"


TERMINAL_JOB_STATES = (JobState.done, JobState.failed)


class Severity(str, enum.Enum):
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"
    error = "error"  # a check crashed; recorded but not scored


# ============================================================================
# Queue records
# ============================================================================

class AnalysisRequest(CamelModel):
    id: str
    raw_url: str
    normalized_url: str
    report_type: str = "overview"
    submitted_at: float
    status: RequestStatus = RequestStatus.received
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    fetch_job_id: Optional[str] = None
    analysis_job_ids: List[str] = Field(default_factory=list)
    completed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


class Job(CamelModel):
    id: str
    request_id: str
    kind: JobKind
    depends_on: List[str] = Field(default_factory=list)
    state: JobState = JobState.queued
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    lease_expires_at: Optional[float] = None
    created_at: float = 0.0
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES


# ============================================================================
# Fetcher output
# ============================================================================

class FetchTiming(CamelModel):
    ttfb_ms: Optional[float] = None
    dom_content_loaded_ms: Optional[float] = None
    load_time_ms: Optional[float] = None
    resource_count: Optional[int] = None
    transfer_bytes: Optional[int] = None


class FetchArtifact(CamelModel):
    """Rendered page snapshot shared read-only by the analysis workers."""
    request_id: str
    url: str
    final_url: str
    status_code: int
    title: Optional[str] = None
    dom_snapshot: str = ""
    screenshot: Optional[str] = None  # base64 PNG
    timing: FetchTiming = Field(default_factory=FetchTiming)
    headers: Dict[str, str] = Field(default_factory=dict)
    robots_txt: Optional[str] = None
    sitemap_xml: Optional[str] = None
    fetched_at: float = 0.0


# ============================================================================
# Analysis output
# ============================================================================

class Finding(CamelModel):
    worker_kind: JobKind
    rule_id: str
    severity: Severity
    description: str
    location: Optional[str] = None
    recommendation: Optional[str] = None


class DomainResult(CamelModel):
    """Result payload an analysis worker stores on its job."""
    kind: JobKind
    score: int
    findings: List[Finding] = Field(default_factory=list)


class ReportScores(CamelModel):
    overall: int
    accessibility: Optional[int] = None
    seo: Optional[int] = None
    performance: Optional[int] = None


class ReportSummary(CamelModel):
    total_violations: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_kind: Dict[str, int] = Field(default_factory=dict)
    failed_domains: List[str] = Field(default_factory=list)
    domain_errors: Dict[str, str] = Field(default_factory=dict)


class PageInfo(CamelModel):
    final_url: Optional[str] = None
    status_code: Optional[int] = None
    title: Optional[str] = None
    timing: Optional[FetchTiming] = None


class Report(CamelModel):
    request_id: str
    url: str
    status: RequestStatus
    scores: ReportScores
    summary: ReportSummary
    findings: Dict[str, List[Finding]] = Field(default_factory=dict)
    page: PageInfo = Field(default_factory=PageInfo)
    analyzed_at: Optional[str] = None
