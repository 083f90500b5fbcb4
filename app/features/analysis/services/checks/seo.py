"""
SEO checks.

Covers the on-page signals (title, meta description, headings, canonical,
viewport, indexability, social tags, image alt text) plus the site files
the fetcher collected next to the page (robots.txt, sitemap.xml).
"""
from app.features.analysis.schemas.pipeline import JobKind, Severity
from app.features.analysis.services.checks.base import (
    CheckBattery,
    PageContext,
    issue,
    locations,
    text_of,
)

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 70
DESCRIPTION_MIN_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 160
OPEN_GRAPH_TAGS = ("og:title", "og:description", "og:image")


def _meta_content(page: PageContext, **attrs) -> str:
    tag = page.soup.find("meta", attrs=attrs)
    return (tag.get("content") or "").strip() if tag is not None else ""


def check_title(page: PageContext):
    title_tag = page.soup.find("title")
    title = text_of(title_tag) if title_tag is not None else ""
    if not title:
        yield issue(
            "seo.title-missing",
            Severity.critical,
            "The page has no <title>",
            "head > title",
            f"Add a unique title of {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters.",
        )
    elif not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        yield issue(
            "seo.title-length",
            Severity.minor,
            f"Title is {len(title)} characters long",
            title[:120],
            f"Keep titles between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters.",
        )


def check_meta_description(page: PageContext):
    description = _meta_content(page, name="description")
    if not description:
        yield issue(
            "seo.meta-description-missing",
            Severity.serious,
            "The page has no meta description",
            'meta[name="description"]',
            "Add a meta description summarising the page.",
        )
    elif not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
        yield issue(
            "seo.meta-description-length",
            Severity.minor,
            f"Meta description is {len(description)} characters long",
            description[:160],
            f"Keep descriptions between {DESCRIPTION_MIN_LENGTH} and {DESCRIPTION_MAX_LENGTH} characters.",
        )


def check_h1(page: PageContext):
    h1s = page.soup.find_all("h1")
    if not h1s:
        yield issue(
            "seo.h1-missing",
            Severity.serious,
            "The page has no <h1>",
            "h1",
            "Add one <h1> describing the main topic.",
        )
    elif len(h1s) > 1:
        yield issue(
            "seo.h1-multiple",
            Severity.minor,
            f"The page has {len(h1s)} <h1> elements",
            ", ".join(text_of(h)[:40] for h in h1s[:5]),
            "Use a single <h1> and structure the rest with <h2>-<h6>.",
        )


def check_canonical(page: PageContext):
    canonical = page.soup.find("link", rel=lambda rel: rel and "canonical" in rel)
    if canonical is None or not (canonical.get("href") or "").strip():
        yield issue(
            "seo.canonical-missing",
            Severity.minor,
            "No canonical URL is declared",
            'link[rel="canonical"]',
            "Add <link rel=\"canonical\"> pointing at the preferred URL.",
        )


def check_viewport(page: PageContext):
    if page.soup.find("meta", attrs={"name": "viewport"}) is None:
        yield issue(
            "seo.viewport-missing",
            Severity.serious,
            "No viewport meta tag; the page is not mobile friendly",
            'meta[name="viewport"]',
            'Add <meta name="viewport" content="width=device-width, initial-scale=1">.',
        )


def check_indexable(page: PageContext):
    robots_meta = _meta_content(page, name="robots").lower()
    header = page.artifact.headers.get("x-robots-tag", "").lower()
    if "noindex" in robots_meta or "noindex" in header:
        yield issue(
            "seo.noindex",
            Severity.critical,
            "The page asks search engines not to index it",
            'meta[name="robots"]' if "noindex" in robots_meta else "X-Robots-Tag header",
            "Remove noindex if the page should appear in search results.",
        )


def check_open_graph(page: PageContext):
    missing = [prop for prop in OPEN_GRAPH_TAGS if not _meta_content(page, property=prop)]
    if missing:
        yield issue(
            "seo.open-graph",
            Severity.minor,
            f"Missing Open Graph tags: {', '.join(missing)}",
            "head",
            "Add Open Graph tags so shared links render a proper preview.",
        )


def check_robots_txt(page: PageContext):
    if not (page.artifact.robots_txt or "").strip():
        yield issue(
            "seo.robots-txt-missing",
            Severity.minor,
            "No robots.txt found at the site root",
            "/robots.txt",
            "Publish a robots.txt, even a permissive one, and reference the sitemap from it.",
        )


def check_sitemap(page: PageContext):
    if (page.artifact.sitemap_xml or "").strip():
        return
    robots_lines = (page.artifact.robots_txt or "").lower().splitlines()
    if any(line.strip().startswith("sitemap:") for line in robots_lines):
        return
    yield issue(
        "seo.sitemap-missing",
        Severity.minor,
        "No sitemap.xml found and robots.txt declares none",
        "/sitemap.xml",
        "Publish an XML sitemap and list it in robots.txt.",
    )


def check_image_alt(page: PageContext):
    missing = [img for img in page.soup.find_all("img") if not (img.get("alt") or "").strip()]
    if missing:
        yield issue(
            "seo.image-alt",
            Severity.moderate,
            f"{len(missing)} image(s) have no descriptive alt text",
            locations(missing),
            "Describe images in alt text so they can be indexed.",
        )


seo_battery = CheckBattery(
    JobKind.seo,
    [
        ("title", check_title),
        ("meta-description", check_meta_description),
        ("h1", check_h1),
        ("canonical", check_canonical),
        ("viewport", check_viewport),
        ("noindex", check_indexable),
        ("open-graph", check_open_graph),
        ("robots-txt", check_robots_txt),
        ("sitemap", check_sitemap),
        ("image-alt", check_image_alt),
    ],
)
