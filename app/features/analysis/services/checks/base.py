import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from app.features.analysis.schemas.pipeline import (
    DomainResult,
    FetchArtifact,
    Finding,
    JobKind,
    Severity,
)
from app.platform.exceptions import ArtifactUnusable

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    Severity.critical: 25,
    Severity.serious: 15,
    Severity.moderate: 8,
    Severity.minor: 3,
    Severity.error: 0,
}

# Elements listed in a finding's location before truncating
MAX_LOCATIONS = 5


@dataclass(frozen=True)
class PageContext:
    artifact: FetchArtifact
    soup: BeautifulSoup


Check = Callable[[PageContext], Iterable[Dict[str, Any]]]


def issue(
    rule_id: str,
    severity: Severity,
    description: str,
    location: Optional[str] = None,
    recommendation: Optional[str] = None,
) -> Dict[str, Any]:
    """A finding before the battery stamps its worker kind on it."""
    return {
        "rule_id": rule_id,
        "severity": severity,
        "description": description,
        "location": location,
        "recommendation": recommendation,
    }


def describe(element: Tag) -> str:
    """Short selector-ish label for an element, e.g. ``img[src=/logo.png]``."""
    label = element.name
    if element.get("id"):
        label += f"#{element['id']}"
    elif element.get("class"):
        label += "." + ".".join(element["class"][:2])
    for attr in ("src", "href", "name", "type"):
        if element.get(attr):
            label += f"[{attr}={element[attr]}]"
            break
    return label[:120]


def locations(elements: Sequence[Tag]) -> str:
    labels = [describe(el) for el in elements[:MAX_LOCATIONS]]
    if len(elements) > MAX_LOCATIONS:
        labels.append(f"... and {len(elements) - MAX_LOCATIONS} more")
    return ", ".join(labels)


def text_of(element: Tag) -> str:
    return element.get_text(" ", strip=True)


def load_page(artifact: Optional[FetchArtifact]) -> PageContext:
    """
    Parse the artifact's DOM snapshot.

    Raises:
        ArtifactUnusable: no artifact, an empty snapshot, or markup without elements
    """
    if artifact is None:
        raise ArtifactUnusable("No fetch artifact available for this request")
    if not artifact.dom_snapshot or not artifact.dom_snapshot.strip():
        raise ArtifactUnusable("DOM snapshot is empty")

    soup = BeautifulSoup(artifact.dom_snapshot, "html.parser")
    if soup.find(True) is None:
        raise ArtifactUnusable("DOM snapshot contains no elements")
    return PageContext(artifact=artifact, soup=soup)


def score_findings(findings: Iterable[Finding]) -> int:
    deductions = sum(SEVERITY_WEIGHTS[finding.severity] for finding in findings)
    return max(0, min(100, 100 - deductions))


class CheckBattery:
    """
    A fixed, ordered list of checks for one analysis kind.

    A check that raises is recorded as an ``error`` finding and the rest of
    the battery still runs.
    """

    def __init__(self, kind: JobKind, checks: Sequence[Tuple[str, Check]]):
        self.kind = kind
        self.checks = list(checks)

    def run(self, artifact: Optional[FetchArtifact]) -> DomainResult:
        page = load_page(artifact)
        findings: List[Finding] = []

        for name, check in self.checks:
            try:
                for raw in check(page):
                    findings.append(Finding(worker_kind=self.kind, **raw))
            except Exception as e:
                logger.exception(f"[{artifact.request_id}] {self.kind.value} check '{name}' failed")
                findings.append(Finding(
                    worker_kind=self.kind,
                    rule_id=f"{self.kind.value}.check-failed",
                    severity=Severity.error,
                    description=f"Check '{name}' could not complete: {e}",
                    location=name,
                ))

        return DomainResult(kind=self.kind, score=score_findings(findings), findings=findings)
