import pytest

from app.features.analysis.schemas.pipeline import (
    AnalysisRequest,
    DomainResult,
    Finding,
    Job,
    JobKind,
    JobState,
    Severity,
)
from app.features.analysis.services.orchestration.aggregator import (
    build_report,
    failure_code,
    overall_score,
    project_report,
)


def _finding(kind, rule, severity=Severity.minor):
    return Finding(worker_kind=kind, rule_id=f"{kind.value}.{rule}", severity=severity, description=rule)


def _done(kind, score, findings=(), finished_at=1_700_000_100.0):
    return Job(
        id=f"req-1:{kind.value}",
        request_id="req-1",
        kind=kind,
        state=JobState.done,
        result=DomainResult(kind=kind, score=score, findings=list(findings)).to_dict(),
        finished_at=finished_at,
    )


def _failed(kind, code="ArtifactUnusable"):
    return Job(
        id=f"req-1:{kind.value}",
        request_id="req-1",
        kind=kind,
        state=JobState.failed,
        error_code=code,
        error_message=code,
        finished_at=1_700_000_050.0,
    )


@pytest.fixture
def request_record():
    return AnalysisRequest(
        id="req-1",
        raw_url="example.com",
        normalized_url="https://example.com",
        submitted_at=1_700_000_000.0,
        fetch_job_id="req-1:fetch",
        analysis_job_ids=["req-1:accessibility", "req-1:seo", "req-1:performance"],
    )


@pytest.fixture
def fetch_job():
    return Job(
        id="req-1:fetch",
        request_id="req-1",
        kind=JobKind.fetch,
        state=JobState.done,
        result={"finalUrl": "https://example.com/", "statusCode": 200, "title": "Example", "timing": {"loadTimeMs": 900}},
    )


class TestOverallScore:
    def test_weighted_mean_of_all_domains(self):
        scores = {JobKind.accessibility: 50, JobKind.seo: 100, JobKind.performance: 80}

        # 50*0.4 + 100*0.3 + 80*0.3
        assert overall_score(scores) == 74

    def test_missing_domains_are_excluded(self):
        scores = {JobKind.seo: 80, JobKind.performance: 40}

        assert overall_score(scores) == 60

    def test_no_domains(self):
        assert overall_score({}) == 0


class TestBuildReport:
    def test_summary_counts_every_finding(self, request_record, fetch_job):
        jobs = [
            _done(JobKind.accessibility, 70, [
                _finding(JobKind.accessibility, "image-alt", Severity.serious),
                _finding(JobKind.accessibility, "html-lang", Severity.serious),
            ]),
            _done(JobKind.seo, 97, [_finding(JobKind.seo, "canonical-missing")]),
            _done(JobKind.performance, 100, [_finding(JobKind.performance, "check-failed", Severity.error)]),
        ]

        report = build_report(request_record, fetch_job, jobs)

        assert report.summary.total_violations == 4
        assert report.summary.by_kind == {"accessibility": 2, "seo": 1, "performance": 1}
        assert report.summary.by_severity == {"critical": 0, "serious": 2, "moderate": 0, "minor": 1, "error": 1}
        assert report.summary.failed_domains == []
        assert report.scores.overall == round(70 * 0.4 + 97 * 0.3 + 100 * 0.3)
        assert 0 <= report.scores.overall <= 100

    def test_page_info_from_fetch_result(self, request_record, fetch_job):
        report = build_report(request_record, fetch_job, [_done(JobKind.seo, 90)])

        assert report.page.final_url == "https://example.com/"
        assert report.page.status_code == 200
        assert report.page.title == "Example"
        assert report.page.timing.load_time_ms == 900

    def test_failed_domain_has_no_score(self, request_record, fetch_job):
        jobs = [_failed(JobKind.accessibility), _done(JobKind.seo, 80), _done(JobKind.performance, 40)]

        report = build_report(request_record, fetch_job, jobs)

        assert report.scores.accessibility is None
        assert report.scores.overall == 60
        assert report.summary.failed_domains == ["accessibility"]
        assert report.summary.domain_errors == {"accessibility": "ArtifactUnusable"}
        assert list(report.findings) == ["seo", "performance"]

    def test_job_order_does_not_change_report(self, request_record, fetch_job):
        jobs = [
            _done(JobKind.accessibility, 70, finished_at=1_700_000_300.0),
            _done(JobKind.seo, 97),
            _done(JobKind.performance, 100),
        ]

        forward = build_report(request_record, fetch_job, jobs)
        backward = build_report(request_record, fetch_job, list(reversed(jobs)))

        assert forward.to_json() == backward.to_json()
        assert forward.analyzed_at == "2023-11-14T22:18:20+00:00"


def test_failure_code():
    assert failure_code([_failed(JobKind.seo), _failed(JobKind.performance)]) == "ArtifactUnusable"
    assert failure_code([_failed(JobKind.seo), _failed(JobKind.performance, "AnalysisFailed")]) == "AnalysisFailed"
    assert failure_code([_failed(JobKind.seo, "FetchTimeout"), _failed(JobKind.accessibility, "ArtifactUnusable")]) == "AnalysisFailed"


class TestProjectReport:
    @pytest.fixture
    def report(self, request_record, fetch_job):
        jobs = [
            _done(JobKind.accessibility, 50, [_finding(JobKind.accessibility, f"rule-{i}") for i in range(5)]),
            _done(JobKind.seo, 90, [_finding(JobKind.seo, "canonical-missing")]),
            _failed(JobKind.performance),
        ]
        return build_report(request_record, fetch_job, jobs)

    def test_detailed_is_unchanged(self, report):
        assert project_report(report, "detailed") is report

    def test_overview_caps_findings_per_domain(self, report):
        overview = project_report(report, "overview", findings_limit=2)

        assert len(overview.findings["accessibility"]) == 2
        assert len(overview.findings["seo"]) == 1
        assert overview.summary.total_violations == 6
        assert len(report.findings["accessibility"]) == 5

    def test_single_domain(self, report):
        seo = project_report(report, "seo")

        assert list(seo.findings) == ["seo"]
        assert seo.scores.overall == 90
        assert seo.scores.seo == 90
        assert seo.scores.accessibility is None
        assert seo.summary.total_violations == 1
        assert seo.summary.failed_domains == []

    def test_single_failed_domain(self, report):
        performance = project_report(report, "performance")

        assert performance.findings == {}
        assert performance.scores.overall == 0
        assert performance.summary.failed_domains == ["performance"]
        assert performance.summary.domain_errors == {"performance": "ArtifactUnusable"}
