"""
Report assembly.

``build_report`` is a pure function of the request, the fetch job and the
terminal analysis jobs: the same inputs always produce the same Report,
down to the serialized bytes. ``project_report`` derives the per-reportType
view served by the API without touching the stored Report.
"""
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from app.features.analysis.schemas.pipeline import (
    ANALYSIS_KINDS,
    AnalysisRequest,
    DomainResult,
    Job,
    JobKind,
    JobState,
    PageInfo,
    Report,
    ReportScores,
    ReportSummary,
    RequestStatus,
    Severity,
)
from app.platform.config import settings
from app.platform.exceptions import AnalysisFailed


def domain_weights() -> Dict[JobKind, float]:
    return {
        JobKind.accessibility: settings.SCORE_WEIGHT_ACCESSIBILITY,
        JobKind.seo: settings.SCORE_WEIGHT_SEO,
        JobKind.performance: settings.SCORE_WEIGHT_PERFORMANCE,
    }


def overall_score(scores: Dict[JobKind, int]) -> int:
    """Weighted mean over the domains that produced a score."""
    weights = domain_weights()
    total_weight = sum(weights[kind] for kind in scores)
    if not scores or total_weight <= 0:
        return 0
    weighted = sum(score * weights[kind] for kind, score in scores.items())
    return max(0, min(100, round(weighted / total_weight)))


def failure_code(failed_jobs: Sequence[Job]) -> str:
    """The shared error code when every failure agrees, otherwise AnalysisFailed."""
    codes = {job.error_code or AnalysisFailed.code for job in failed_jobs}
    return codes.pop() if len(codes) == 1 else AnalysisFailed.code


def _timestamp(epoch: Optional[float]) -> Optional[str]:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def build_report(
    request: AnalysisRequest,
    fetch_job: Optional[Job],
    analysis_jobs: Sequence[Job],
    status: RequestStatus = RequestStatus.completed,
) -> Report:
    by_kind = {job.kind: job for job in analysis_jobs}

    scores: Dict[JobKind, int] = {}
    findings = {}
    failed_domains: List[str] = []
    domain_errors: Dict[str, str] = {}

    for kind in ANALYSIS_KINDS:
        job = by_kind.get(kind)
        if job is None:
            continue
        if job.state == JobState.done:
            result = DomainResult.model_validate(job.result or {"kind": kind, "score": 0})
            scores[kind] = result.score
            findings[kind.value] = result.findings
        else:
            failed_domains.append(kind.value)
            domain_errors[kind.value] = job.error_code or AnalysisFailed.code

    all_findings = [finding for domain in findings.values() for finding in domain]
    severity_counts = Counter(finding.severity.value for finding in all_findings)

    fetch_result = (fetch_job.result or {}) if fetch_job is not None else {}
    finished = [job.finished_at for job in analysis_jobs if job.finished_at is not None]

    return Report(
        request_id=request.id,
        url=request.normalized_url,
        status=status,
        scores=ReportScores(
            overall=overall_score(scores),
            **{kind.value: score for kind, score in scores.items()},
        ),
        summary=ReportSummary(
            total_violations=len(all_findings),
            by_severity={severity.value: severity_counts.get(severity.value, 0) for severity in Severity},
            by_kind={kind: len(items) for kind, items in findings.items()},
            failed_domains=failed_domains,
            domain_errors=domain_errors,
        ),
        findings=findings,
        page=PageInfo(
            final_url=fetch_result.get("finalUrl"),
            status_code=fetch_result.get("statusCode"),
            title=fetch_result.get("title"),
            timing=fetch_result.get("timing"),
        ),
        analyzed_at=_timestamp(max(finished) if finished else None),
    )


def project_report(report: Report, report_type: str, findings_limit: Optional[int] = None) -> Report:
    """
    Shape a stored Report for one reportType.

    overview      every domain, findings capped per domain
    detailed      the report as stored
    <domain>      that domain only, overall taken from its score
    """
    if report_type == "detailed":
        return report

    if report_type == "overview":
        limit = settings.OVERVIEW_FINDINGS_LIMIT if findings_limit is None else findings_limit
        return report.model_copy(update={
            "findings": {kind: items[:limit] for kind, items in report.findings.items()},
        })

    kind = JobKind(report_type)
    domain_score = getattr(report.scores, kind.value)
    scores = ReportScores(
        overall=domain_score if domain_score is not None else 0,
        **{kind.value: domain_score},
    )
    domain_findings = report.findings.get(kind.value)
    severity_counts = Counter(f.severity.value for f in domain_findings or [])
    summary = report.summary.model_copy(update={
        "total_violations": len(domain_findings or []),
        "by_severity": {severity.value: severity_counts.get(severity.value, 0) for severity in Severity},
        "by_kind": {kind.value: len(domain_findings)} if domain_findings is not None else {},
        "failed_domains": [d for d in report.summary.failed_domains if d == kind.value],
        "domain_errors": {d: e for d, e in report.summary.domain_errors.items() if d == kind.value},
    })
    return report.model_copy(update={
        "scores": scores,
        "summary": summary,
        "findings": {kind.value: domain_findings} if domain_findings is not None else {},
    })
