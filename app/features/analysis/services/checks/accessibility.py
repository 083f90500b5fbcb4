"""
Accessibility checks.

Mostly WCAG 2.1 A/AA rules that can be decided from the static DOM:
text alternatives, accessible names, document language/title, heading
structure, zoom and table semantics, keyboard order, media alternatives
and ARIA validity.
"""
import re
from collections import Counter

from app.features.analysis.schemas.pipeline import JobKind, Severity
from app.features.analysis.services.checks.base import (
    CheckBattery,
    PageContext,
    issue,
    locations,
    text_of,
)

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
UNLABELLED_INPUT_TYPES = {"hidden", "submit", "reset", "button", "image"}
FOCUSABLE_TAGS = {"a", "button", "input", "select", "textarea", "iframe", "summary"}
CAPTION_TRACK_KINDS = {"captions", "subtitles"}
ARIA_REFERENCE_ATTRS = ("aria-labelledby", "aria-describedby")

# WAI-ARIA 1.2 concrete roles; DPUB (doc-*) and graphics-* roles are accepted by prefix
ARIA_ROLES = {
    "alert", "alertdialog", "application", "article", "banner", "blockquote", "button",
    "caption", "cell", "checkbox", "code", "columnheader", "combobox", "complementary",
    "contentinfo", "definition", "deletion", "dialog", "directory", "document", "emphasis",
    "feed", "figure", "form", "generic", "grid", "gridcell", "group", "heading", "img",
    "insertion", "link", "list", "listbox", "listitem", "log", "main", "marquee", "math",
    "menu", "menubar", "menuitem", "menuitemcheckbox", "menuitemradio", "meter",
    "navigation", "none", "note", "option", "paragraph", "presentation", "progressbar",
    "radio", "radiogroup", "region", "row", "rowgroup", "rowheader", "scrollbar", "search",
    "searchbox", "separator", "slider", "spinbutton", "status", "strong", "subscript",
    "superscript", "switch", "tab", "table", "tablist", "tabpanel", "term", "textbox",
    "time", "timer", "toolbar", "tooltip", "tree", "treegrid", "treeitem",
}
ARIA_ROLE_PREFIXES = ("doc-", "graphics-")


def _has_aria_name(element) -> bool:
    return any(
        (element.get(attr) or "").strip()
        for attr in ("aria-label", "aria-labelledby", "title")
    )


def check_image_alt(page: PageContext):
    missing = [
        img for img in page.soup.find_all("img")
        if img.get("alt") is None and img.get("role") not in ("presentation", "none")
        and img.get("aria-hidden") != "true"
    ]
    if missing:
        yield issue(
            "accessibility.image-alt",
            Severity.serious,
            f"{len(missing)} image(s) have no alt attribute",
            locations(missing),
            'Add descriptive alt text, or alt="" for purely decorative images.',
        )


def check_form_labels(page: PageContext):
    soup = page.soup
    labelled_ids = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    unlabelled = []
    for control in soup.find_all(["input", "textarea", "select"]):
        if (control.get("type") or "").lower() in UNLABELLED_INPUT_TYPES:
            continue
        if _has_aria_name(control):
            continue
        if control.get("id") and control["id"] in labelled_ids:
            continue
        if control.find_parent("label") is not None:
            continue
        unlabelled.append(control)
    if unlabelled:
        yield issue(
            "accessibility.form-label",
            Severity.serious,
            f"{len(unlabelled)} form control(s) have no associated label",
            locations(unlabelled),
            "Associate each control with a <label for>, wrap it in a <label>, or add aria-label.",
        )


def check_button_names(page: PageContext):
    unnamed = []
    for button in page.soup.find_all("button"):
        has_img_alt = any((img.get("alt") or "").strip() for img in button.find_all("img"))
        if not text_of(button) and not _has_aria_name(button) and not has_img_alt:
            unnamed.append(button)
    for button in page.soup.find_all("input", attrs={"type": "button"}):
        if not (button.get("value") or "").strip() and not _has_aria_name(button):
            unnamed.append(button)
    if unnamed:
        yield issue(
            "accessibility.button-name",
            Severity.critical,
            f"{len(unnamed)} button(s) have no accessible name",
            locations(unnamed),
            "Give every button visible text or an aria-label.",
        )


def check_link_names(page: PageContext):
    unnamed = []
    for link in page.soup.find_all("a", href=True):
        has_img_alt = any((img.get("alt") or "").strip() for img in link.find_all("img"))
        if not text_of(link) and not _has_aria_name(link) and not has_img_alt:
            unnamed.append(link)
    if unnamed:
        yield issue(
            "accessibility.link-name",
            Severity.serious,
            f"{len(unnamed)} link(s) have no discernible text",
            locations(unnamed),
            "Add link text, or an aria-label for icon-only links.",
        )


def check_empty_headings(page: PageContext):
    empty = [h for h in page.soup.find_all(HEADING_TAGS) if not text_of(h) and not _has_aria_name(h)]
    if empty:
        yield issue(
            "accessibility.empty-heading",
            Severity.moderate,
            f"{len(empty)} heading(s) are empty",
            locations(empty),
            "Remove empty headings or give them text.",
        )


def check_html_lang(page: PageContext):
    html = page.soup.find("html")
    if html is None or not (html.get("lang") or "").strip():
        yield issue(
            "accessibility.html-lang",
            Severity.serious,
            "The <html> element has no lang attribute",
            "html",
            'Declare the page language, e.g. <html lang="en">.',
        )


def check_document_title(page: PageContext):
    title = page.soup.find("title")
    if title is None or not text_of(title):
        yield issue(
            "accessibility.document-title",
            Severity.serious,
            "The document has no title",
            "head > title",
            "Add a <title> that describes the page.",
        )


def check_heading_order(page: PageContext):
    skipped = []
    previous = 0
    for heading in page.soup.find_all(HEADING_TAGS):
        level = int(heading.name[1])
        if previous and level > previous + 1:
            skipped.append(heading)
        previous = level
    if skipped:
        yield issue(
            "accessibility.heading-order",
            Severity.moderate,
            f"Heading levels are skipped {len(skipped)} time(s)",
            ", ".join(f"{h.name}: {text_of(h)[:40]}" for h in skipped[:5]),
            "Only increase heading levels by one at a time.",
        )


def check_duplicate_ids(page: PageContext):
    counts = Counter(el["id"] for el in page.soup.find_all(id=True) if el["id"].strip())
    duplicates = sorted(element_id for element_id, count in counts.items() if count > 1)
    if duplicates:
        yield issue(
            "accessibility.duplicate-id",
            Severity.minor,
            f"{len(duplicates)} id value(s) are used more than once",
            ", ".join(f"#{element_id}" for element_id in duplicates[:5]),
            "Make every id unique so labels and ARIA references resolve correctly.",
        )


def check_zoom_disabled(page: PageContext):
    viewport = page.soup.find("meta", attrs={"name": "viewport"})
    if viewport is None:
        return
    content = (viewport.get("content") or "").lower().replace(" ", "")
    disabled = "user-scalable=no" in content or "user-scalable=0" in content
    match = re.search(r"maximum-scale=([\d.]+)", content)
    if match:
        try:
            disabled = disabled or float(match.group(1)) < 2
        except ValueError:
            pass
    if disabled:
        yield issue(
            "accessibility.zoom-disabled",
            Severity.serious,
            "The viewport prevents users from zooming",
            'meta[name="viewport"]',
            "Remove user-scalable=no and keep maximum-scale at 2 or above.",
        )


def check_table_headers(page: PageContext):
    missing = []
    for table in page.soup.find_all("table"):
        if table.get("role") in ("presentation", "none"):
            continue
        if len(table.find_all("tr")) > 1 and table.find("th") is None:
            missing.append(table)
    if missing:
        yield issue(
            "accessibility.table-headers",
            Severity.moderate,
            f"{len(missing)} data table(s) have no header cells",
            locations(missing),
            "Use <th> (with scope) for header rows/columns, or mark layout tables role=presentation.",
        )


def _tabindex(element):
    try:
        return int((element.get("tabindex") or "").strip())
    except ValueError:
        return None


def _is_focusable(element) -> bool:
    tabindex = _tabindex(element)
    if tabindex is not None:
        return tabindex >= 0
    if element.has_attr("disabled"):
        return False
    if element.name == "a":
        return element.has_attr("href")
    if element.name == "input":
        return (element.get("type") or "").lower() != "hidden"
    return element.name in FOCUSABLE_TAGS


def check_positive_tabindex(page: PageContext):
    positive = [el for el in page.soup.find_all(attrs={"tabindex": True}) if (_tabindex(el) or 0) > 0]
    if positive:
        yield issue(
            "accessibility.positive-tabindex",
            Severity.critical,
            f"{len(positive)} element(s) use a positive tabindex, which breaks the keyboard focus order",
            locations(positive),
            'Use tabindex="0" or "-1" and order focus through the DOM instead.',
        )


def check_hidden_focusable(page: PageContext):
    hidden = []
    for element in page.soup.find_all(attrs={"aria-hidden": "true"}):
        if _is_focusable(element) or any(_is_focusable(child) for child in element.find_all(True)):
            hidden.append(element)
    if hidden:
        yield issue(
            "accessibility.hidden-focusable",
            Severity.serious,
            f"{len(hidden)} aria-hidden element(s) contain keyboard-focusable content",
            locations(hidden),
            'Remove aria-hidden, or take the content out of the tab order with tabindex="-1".',
        )


def check_media_captions(page: PageContext):
    uncaptioned = [
        video for video in page.soup.find_all("video")
        if not any((track.get("kind") or "").lower() in CAPTION_TRACK_KINDS for track in video.find_all("track"))
    ]
    if uncaptioned:
        yield issue(
            "accessibility.media-captions",
            Severity.critical,
            f"{len(uncaptioned)} video(s) have no captions or subtitles track",
            locations(uncaptioned),
            'Add <track kind="captions" src="captions.vtt" srclang="en"> to each video.',
        )


def check_media_controls(page: PageContext):
    uncontrolled = [media for media in page.soup.find_all(["video", "audio"]) if not media.has_attr("controls")]
    if uncontrolled:
        yield issue(
            "accessibility.media-controls",
            Severity.serious,
            f"{len(uncontrolled)} media element(s) have no playback controls",
            locations(uncontrolled),
            "Add the controls attribute so users can pause, stop and adjust volume.",
        )


def check_media_autoplay(page: PageContext):
    autoplaying = [
        media for media in page.soup.find_all(["video", "audio"])
        if media.has_attr("autoplay") and not media.has_attr("muted")
    ]
    if autoplaying:
        yield issue(
            "accessibility.media-autoplay",
            Severity.moderate,
            f"{len(autoplaying)} media element(s) autoplay with sound",
            locations(autoplaying),
            "Do not autoplay audio, or start muted and let the user turn sound on.",
        )


def check_aria_roles(page: PageContext):
    invalid = []
    for element in page.soup.find_all(attrs={"role": True}):
        roles = (element.get("role") or "").lower().split()
        if not any(role in ARIA_ROLES or role.startswith(ARIA_ROLE_PREFIXES) for role in roles):
            invalid.append(element)
    if invalid:
        yield issue(
            "accessibility.aria-role",
            Severity.serious,
            f"{len(invalid)} element(s) have no valid ARIA role",
            locations(invalid),
            "Use a role defined by WAI-ARIA, or remove the role attribute.",
        )


def check_aria_references(page: PageContext):
    known_ids = {el["id"] for el in page.soup.find_all(id=True)}
    broken = []
    for element in page.soup.find_all(True):
        referenced = []
        for attr in ARIA_REFERENCE_ATTRS:
            referenced.extend((element.get(attr) or "").split())
        if any(ref not in known_ids for ref in referenced):
            broken.append(element)
    if broken:
        yield issue(
            "accessibility.aria-reference",
            Severity.serious,
            f"{len(broken)} element(s) reference ids in aria-labelledby/aria-describedby that do not exist",
            locations(broken),
            "Point aria-labelledby and aria-describedby at ids present on the page.",
        )


accessibility_battery = CheckBattery(
    JobKind.accessibility,
    [
        ("image-alt", check_image_alt),
        ("form-label", check_form_labels),
        ("button-name", check_button_names),
        ("link-name", check_link_names),
        ("empty-heading", check_empty_headings),
        ("html-lang", check_html_lang),
        ("document-title", check_document_title),
        ("heading-order", check_heading_order),
        ("duplicate-id", check_duplicate_ids),
        ("zoom-disabled", check_zoom_disabled),
        ("table-headers", check_table_headers),
        ("positive-tabindex", check_positive_tabindex),
        ("hidden-focusable", check_hidden_focusable),
        ("media-captions", check_media_captions),
        ("media-controls", check_media_controls),
        ("media-autoplay", check_media_autoplay),
        ("aria-role", check_aria_roles),
        ("aria-reference", check_aria_references),
    ],
)
