"""
Test configuration and fixtures for the Site Analyzer API.

The database is a throwaway sqlite file and Redis is replaced by fakeredis,
so the suite needs neither a running Redis nor a browser.
"""

import os
import tempfile
from typing import Generator

from dotenv import load_dotenv

import fakeredis
import pytest
from fastapi.testclient import TestClient

load_dotenv()

test_db_path = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
os.environ["FETCH_RENDERER"] = "http"
os.environ["PIPELINE_DISPATCH"] = "inline"


GOOD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<title>Example Store - Handmade Ceramics and Pottery Online</title>
<meta name="description" content="Discover handmade ceramics and pottery from independent artists. Browse mugs, bowls, vases and planters, all shipped carefully to your door.">
<meta name="viewport" content="width=device-width, initial-scale=1">
<link rel="canonical" href="https://example.com/">
<meta property="og:title" content="Example Store">
<meta property="og:description" content="Handmade ceramics">
<meta property="og:image" content="https://example.com/og.png">
<script src="/app.js" defer></script>
</head>
<body>
<h1>Handmade ceramics</h1>
<h2>New arrivals</h2>
<img src="/mug.jpg" alt="Blue mug" width="300" height="200">
<a href="/shop">Shop now</a>
<form><label for="email">Email</label><input id="email" type="email"></form>
<button type="submit">Subscribe</button>
</body>
</html>
"""

GOOD_HEADERS = {
    "content-type": "text/html; charset=utf-8",
    "content-encoding": "gzip",
    "cache-control": "max-age=60",
}

GOOD_TIMING = {
    "ttfbMs": 200,
    "domContentLoadedMs": 800,
    "loadTimeMs": 1200,
    "resourceCount": 20,
    "transferBytes": 500_000,
}

ROBOTS_TXT = "User-agent: *\nAllow: /\nSitemap: https://example.com/sitemap.xml\n"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingDispatcher:
    """Dispatcher that only records the signals it was given."""

    def __init__(self):
        self.woken = []
        self.finished = []

    def wake(self, kind):
        self.woken.append(kind)

    def job_finished(self, request_id):
        self.finished.append(request_id)


class FakeFetcher:
    """
    Stands in for PageFetcher: raises the queued errors first, then returns
    an artifact built from ``html``.
    """

    def __init__(self, html: str = GOOD_HTML, errors=None, headers=None, timing=None, robots_txt=ROBOTS_TXT):
        self.html = html
        self.errors = list(errors or [])
        self.headers = GOOD_HEADERS if headers is None else headers
        self.timing = GOOD_TIMING if timing is None else timing
        self.robots_txt = robots_txt
        self.calls = 0

    def fetch(self, request_id, url):
        from app.features.analysis.schemas.pipeline import FetchArtifact

        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return FetchArtifact(
            request_id=request_id,
            url=url,
            final_url=url,
            status_code=200,
            title="Example Store - Handmade Ceramics and Pottery Online",
            dom_snapshot=self.html,
            timing=self.timing,
            headers=self.headers,
            robots_txt=self.robots_txt,
            fetched_at=1_700_000_000.0,
        )


@pytest.fixture
def redis_client():
    """Isolated in-memory Redis per test."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def artifact_factory():
    from app.features.analysis.schemas.pipeline import FetchArtifact

    def _make(html: str = GOOD_HTML, request_id: str = "req-1", **overrides) -> FetchArtifact:
        fields = {
            "request_id": request_id,
            "url": "https://example.com",
            "final_url": "https://example.com/",
            "status_code": 200,
            "dom_snapshot": html,
            "timing": GOOD_TIMING,
            "headers": GOOD_HEADERS,
            "robots_txt": ROBOTS_TXT,
        }
        fields.update(overrides)
        return FetchArtifact(**fields)

    return _make


@pytest.fixture
def make_pipeline(redis_client):
    """
    Build a pipeline on fakeredis around a FakeFetcher.

    Without a dispatcher the inline one runs every stage synchronously;
    pass ``dispatcher`` (e.g. the recording one) to drive stages by hand.
    """
    from app.features.analysis.services.orchestration.dispatcher import InlineDispatcher
    from app.features.analysis.services.pipeline import build_pipeline

    def _make(dispatcher=None, fetcher=None, **fetcher_options):
        return build_pipeline(
            redis_client,
            dispatcher=dispatcher or InlineDispatcher(),
            fetcher=fetcher or FakeFetcher(**fetcher_options),
            sleep=lambda seconds: None,
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline, fake_fetcher):
    """Whole pipeline on fakeredis, run synchronously by the inline dispatcher."""
    return make_pipeline(fetcher=fake_fetcher)


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app, pipeline) -> Generator[TestClient, None, None]:
    """
    Test client whose routes use the fakeredis-backed ``pipeline`` fixture.
    """
    from app.features.analysis.services.pipeline import get_pipeline

    test_app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(test_app) as test_client:
        yield test_client
    test_app.dependency_overrides.pop(get_pipeline, None)
