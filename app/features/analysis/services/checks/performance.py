"""
Performance checks.

Timing thresholds come from the navigation timing the renderer captured;
the rest is decided from the DOM snapshot and response headers.
"""
from app.features.analysis.schemas.pipeline import JobKind, Severity
from app.features.analysis.services.checks.base import (
    CheckBattery,
    PageContext,
    issue,
    locations,
)

# (serious, moderate) thresholds
LOAD_TIME_MS = (4000, 2500)
TTFB_MS = (1800, 800)
HTML_BYTES = (1_500_000, 500_000)
TRANSFER_BYTES = (5_000_000, 3_000_000)
RESOURCE_COUNT = (150, 80)

# Images above the fold are expected to load eagerly
EAGER_IMAGE_ALLOWANCE = 3


def _graded(value, thresholds):
    serious, moderate = thresholds
    if value is None:
        return None
    if value > serious:
        return Severity.serious
    if value > moderate:
        return Severity.moderate
    return None


def check_load_time(page: PageContext):
    load_time = page.artifact.timing.load_time_ms
    severity = _graded(load_time, LOAD_TIME_MS)
    if severity:
        yield issue(
            "performance.load-time",
            severity,
            f"Page took {load_time / 1000:.1f}s to load",
            "page",
            f"Aim for a full load under {LOAD_TIME_MS[1] / 1000:.1f}s.",
        )


def check_ttfb(page: PageContext):
    ttfb = page.artifact.timing.ttfb_ms
    severity = _graded(ttfb, TTFB_MS)
    if severity:
        yield issue(
            "performance.ttfb",
            severity,
            f"Time to first byte was {ttfb:.0f}ms",
            "document",
            "Speed up the server response: caching, a CDN, or lighter backend work.",
        )


def check_html_weight(page: PageContext):
    size = len(page.artifact.dom_snapshot.encode("utf-8"))
    severity = _graded(size, HTML_BYTES)
    if severity:
        yield issue(
            "performance.html-weight",
            severity,
            f"HTML document is {size / 1024:.0f}KB",
            "document",
            "Trim inline scripts, styles and markup from the document.",
        )


def check_transfer_weight(page: PageContext):
    transferred = page.artifact.timing.transfer_bytes
    severity = _graded(transferred, TRANSFER_BYTES)
    if severity:
        yield issue(
            "performance.transfer-weight",
            severity,
            f"Page transferred {transferred / 1_000_000:.1f}MB",
            "page",
            "Compress images, drop unused scripts, and split large bundles.",
        )


def check_resource_count(page: PageContext):
    count = page.artifact.timing.resource_count
    severity = _graded(count, RESOURCE_COUNT)
    if severity:
        yield issue(
            "performance.resource-count",
            severity,
            f"Page loaded {count} resources",
            "page",
            "Bundle or remove requests; fewer round trips load faster.",
        )


def check_render_blocking_scripts(page: PageContext):
    head = page.soup.find("head")
    if head is None:
        return
    blocking = [
        script for script in head.find_all("script", src=True)
        if not script.has_attr("async") and not script.has_attr("defer")
        and (script.get("type") or "").lower() != "module"
    ]
    if blocking:
        yield issue(
            "performance.render-blocking-script",
            Severity.moderate,
            f"{len(blocking)} script(s) in <head> block rendering",
            locations(blocking),
            "Add defer or async to scripts that are not needed for first paint.",
        )


def check_image_dimensions(page: PageContext):
    missing = [
        img for img in page.soup.find_all("img")
        if not img.get("width") or not img.get("height")
    ]
    if missing:
        yield issue(
            "performance.image-dimensions",
            Severity.minor,
            f"{len(missing)} image(s) have no explicit width/height",
            locations(missing),
            "Set width and height to reserve space and avoid layout shift.",
        )


def check_lazy_loading(page: PageContext):
    images = page.soup.find_all("img")[EAGER_IMAGE_ALLOWANCE:]
    eager = [img for img in images if (img.get("loading") or "").lower() != "lazy"]
    if eager:
        yield issue(
            "performance.lazy-loading",
            Severity.minor,
            f"{len(eager)} offscreen image(s) are not lazy-loaded",
            locations(eager),
            'Add loading="lazy" to images below the fold.',
        )


def check_compression(page: PageContext):
    headers = page.artifact.headers
    if not headers:
        return
    content_type = headers.get("content-type", "")
    if "html" in content_type and not headers.get("content-encoding"):
        yield issue(
            "performance.compression",
            Severity.moderate,
            "The HTML response is not compressed",
            "Content-Encoding header",
            "Enable gzip or brotli compression on the server.",
        )


def check_cache_headers(page: PageContext):
    headers = page.artifact.headers
    if not headers:
        return
    if not any(headers.get(name) for name in ("cache-control", "expires", "etag", "last-modified")):
        yield issue(
            "performance.cache-headers",
            Severity.minor,
            "The response carries no caching headers",
            "Cache-Control header",
            "Send Cache-Control (or ETag/Last-Modified) so repeat visits can reuse the response.",
        )


performance_battery = CheckBattery(
    JobKind.performance,
    [
        ("load-time", check_load_time),
        ("ttfb", check_ttfb),
        ("html-weight", check_html_weight),
        ("transfer-weight", check_transfer_weight),
        ("resource-count", check_resource_count),
        ("render-blocking-script", check_render_blocking_scripts),
        ("image-dimensions", check_image_dimensions),
        ("lazy-loading", check_lazy_loading),
        ("compression", check_compression),
        ("cache-headers", check_cache_headers),
    ],
)
