"""royalroad.parser – fiction page and Rising Stars list extraction.

Every field of a :class:`~rankwatch.models.FictionRecord` is produced by an
ordered list of *strategies*.  A strategy is a pure function taking a
:class:`Document` and returning the value or ``None``; the first strategy
that returns a non-empty value wins and a field whose strategies all miss
keeps its zero/empty default.  Class names on the source pages drift over
time, so each chain goes from the most specific selector to the most
generic text pattern.

``extract`` never raises on odd markup: a strategy that blows up is
logged at DEBUG and treated as a miss.
"""
from __future__ import annotations

import html as html_lib
import logging
import re
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, TypeVar

from bs4 import BeautifulSoup, Tag

from rankwatch.models import Author, FictionRecord, FictionStats, RisingStarEntry

logger = logging.getLogger(__name__)

__all__ = [
    "Document",
    "extract",
    "parse_rising_stars",
    "run_strategies",
    "FIELD_STRATEGIES",
    "STATUS_VOCABULARY",
    "TYPE_VOCABULARY",
]

V = TypeVar("V")
Strategy = Callable[["Document"], Optional[V]]

STATUS_VOCABULARY = frozenset({"ONGOING", "COMPLETED", "HIATUS", "DROPPED"})
TYPE_VOCABULARY = frozenset({"Original", "Fanfiction"})

SCORE_MIN, SCORE_MAX = 0.0, 5.0

_FICTION_HREF = re.compile(r"/fiction/(\d+)")
_PROFILE_HREF = re.compile(r"/profile/(\d+)")
_OUT_OF_FIVE = re.compile(r"(\d+(?:\.\d+)?)\s*/\s*5\b")
_STARS = re.compile(r"(\d+(?:\.\d+)?)\s*stars?", re.I)
_WS = re.compile(r"\s+")


# --------------------------------------------------------------------------- #
# Document wrapper
# --------------------------------------------------------------------------- #
class Document:
    """A parsed page plus the derived views the strategies share."""

    def __init__(self, html: str) -> None:
        self.html = html or ""
        self.soup = BeautifulSoup(self.html, "html.parser")
        self.stats: Optional[Tag] = (
            self.soup.select_one(".fiction-stats") or self.soup.select_one(".stats-content")
        )
        self.stats_text = _squash(self.stats.get_text(" ")) if self.stats else ""
        self.page_text = _squash(self.soup.get_text(" "))


def _squash(text: str) -> str:
    return _WS.sub(" ", text).strip()


def clean_text(text: Optional[str]) -> str:
    """Decode leftover HTML entities and trim."""
    if not text:
        return ""
    return html_lib.unescape(text).strip()


def _number(raw: str) -> int:
    return int(raw.replace(",", "").replace(" ", ""))


def _clamp_score(value: float) -> float:
    return min(max(value, SCORE_MIN), SCORE_MAX)


def run_strategies(strategies: Sequence[Strategy], doc: Document, default: V) -> V:
    """Return the first non-empty strategy result, else ``default``."""
    for strategy in strategies:
        try:
            value = strategy(doc)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Strategy %s failed: %s", getattr(strategy, "__name__", strategy), exc)
            continue
        if value not in (None, "", (), []):
            return value
    return default


# --------------------------------------------------------------------------- #
# Strategy builders
# --------------------------------------------------------------------------- #
def _selector_text(selector: str) -> Strategy[str]:
    def strategy(doc: Document) -> Optional[str]:
        el = doc.soup.select_one(selector)
        return clean_text(el.get_text()) if el else None

    strategy.__name__ = f"text({selector})"
    return strategy


def _selector_attr(selector: str, attr: str) -> Strategy[str]:
    def strategy(doc: Document) -> Optional[str]:
        el = doc.soup.select_one(selector)
        value = el.get(attr) if el else None
        return clean_text(value) if isinstance(value, str) else None

    strategy.__name__ = f"attr({selector}@{attr})"
    return strategy


def _stats_regex(pattern: Pattern[str], *, page_fallback: bool = False) -> Strategy[int]:
    def strategy(doc: Document) -> Optional[int]:
        text = doc.page_text if page_fallback else doc.stats_text
        match = pattern.search(text)
        return _number(match.group(1)) if match else None

    strategy.__name__ = f"{'page' if page_fallback else 'stats'}_regex({pattern.pattern})"
    return strategy


def _numeric_chain(*patterns: str) -> List[Strategy[int]]:
    compiled = [re.compile(p, re.I) for p in patterns]
    return [_stats_regex(p) for p in compiled] + [_stats_regex(p, page_fallback=True) for p in compiled]


def _vocabulary_scan(vocabulary: Iterable[str]) -> Strategy[str]:
    """First text node of the page whose trimmed text is exactly a vocabulary word."""
    words = frozenset(vocabulary)

    def strategy(doc: Document) -> Optional[str]:
        for text in doc.soup.stripped_strings:
            if text in words:
                return text
        return None

    strategy.__name__ = f"vocabulary({'|'.join(sorted(words))})"
    return strategy


def _vocabulary_selector(selector: str, vocabulary: Iterable[str]) -> Strategy[str]:
    words = frozenset(vocabulary)

    def strategy(doc: Document) -> Optional[str]:
        for el in doc.soup.select(selector):
            text = clean_text(el.get_text())
            if text in words:
                return text
        return None

    strategy.__name__ = f"vocabulary({selector})"
    return strategy


def _list_selector(selector: str, skip: Iterable[str] = ()) -> Strategy[Tuple[str, ...]]:
    ignored = frozenset(skip)

    def strategy(doc: Document) -> Optional[Tuple[str, ...]]:
        values = _unique(clean_text(el.get_text()) for el in doc.soup.select(selector))
        values = tuple(v for v in values if v not in ignored)
        return values or None

    strategy.__name__ = f"list({selector})"
    return strategy


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)


# --------------------------------------------------------------------------- #
# Scores
# --------------------------------------------------------------------------- #
def _label_of(el: Tag) -> str:
    parts = [el.get("aria-label"), el.get("data-original-title"), el.get("title")]
    return " ".join(p for p in parts if isinstance(p, str))


def _score_containers(doc: Document) -> List[Tag]:
    return [doc.stats, doc.soup] if doc.stats is not None else [doc.soup]


def _labelled_data_content(label: str) -> Strategy[float]:
    """``data-content="4.61 / 5"`` on an element whose label mentions ``label``."""
    needle = label.lower()

    def strategy(doc: Document) -> Optional[float]:
        for container in _score_containers(doc):
            for el in container.select("[data-content]"):
                if needle not in _label_of(el).lower():
                    continue
                match = _OUT_OF_FIVE.search(el.get("data-content") or "")
                if match:
                    return _clamp_score(float(match.group(1)))
        return None

    strategy.__name__ = f"data_content({label})"
    return strategy


def _labelled_stars(label: str) -> Strategy[float]:
    """``data-original-title="Style Score"`` with ``aria-label="4.5 stars"``."""
    needle = label.lower()

    def strategy(doc: Document) -> Optional[float]:
        for container in _score_containers(doc):
            for el in container.select("[data-original-title]"):
                if needle not in (el.get("data-original-title") or "").lower():
                    continue
                match = _STARS.search(el.get("aria-label") or "")
                if match:
                    return _clamp_score(float(match.group(1)))
        return None

    strategy.__name__ = f"stars({label})"
    return strategy


def _score_text(label: str) -> Strategy[float]:
    pattern = re.compile(rf"{label}\s*Score[:\s]*(\d+(?:\.\d+)?)", re.I)

    def strategy(doc: Document) -> Optional[float]:
        match = pattern.search(doc.stats_text)
        return _clamp_score(float(match.group(1))) if match else None

    strategy.__name__ = f"score_text({label})"
    return strategy


def _first_data_content(doc: Document) -> Optional[float]:
    """Unlabelled ``X / 5`` attribute inside the stats block; the overall score comes first."""
    if doc.stats is None:
        return None
    for el in doc.stats.select("[data-content]"):
        match = _OUT_OF_FIVE.search(el.get("data-content") or "")
        if match:
            return _clamp_score(float(match.group(1)))
    return None


def _out_of_five_text(doc: Document) -> Optional[float]:
    match = _OUT_OF_FIVE.search(doc.stats_text)
    return _clamp_score(float(match.group(1))) if match else None


def _score_chain(label: str) -> List[Strategy[float]]:
    return [_labelled_data_content(label), _labelled_stars(label), _score_text(label)]


# --------------------------------------------------------------------------- #
# Author
# --------------------------------------------------------------------------- #
def _profile_link(doc: Document) -> Optional[Tag]:
    for link in doc.soup.select('a[href*="/profile/"]'):
        if clean_text(link.get_text()) or link.find("img"):
            return link
    return None


def _author_name_from_link(doc: Document) -> Optional[str]:
    link = _profile_link(doc)
    return clean_text(link.get_text()) if link else None


def _author_id_from_link(doc: Document) -> Optional[str]:
    link = _profile_link(doc)
    match = _PROFILE_HREF.search(link.get("href") or "") if link else None
    return match.group(1) if match else None


def _author_avatar_from_link(doc: Document) -> Optional[str]:
    link = _profile_link(doc)
    img = link.find("img") if link else None
    return clean_text(img.get("src")) if img else None


# --------------------------------------------------------------------------- #
# Warnings
# --------------------------------------------------------------------------- #
_WARNING_NOISE = ("Warning", "This fiction contains:")


def _warnings_after_marker(doc: Document) -> Optional[Tuple[str, ...]]:
    """``<strong>This fiction contains:</strong><ul class="list-inline"><li>...``"""
    marker = doc.soup.find(string=re.compile(r"This fiction contains", re.I))
    if marker is None:
        return None
    listing = marker.find_next("ul")
    if listing is None:
        return None
    values = _unique(clean_text(li.get_text()) for li in listing.find_all("li"))
    return tuple(v for v in values if v not in _WARNING_NOISE) or None


def _warnings_from_text(doc: Document) -> Optional[Tuple[str, ...]]:
    match = re.search(r"This fiction contains:\s*([^.\n]+)", doc.page_text, re.I)
    if not match:
        return None
    return _unique(w.strip() for w in re.split(r"[,;]", match.group(1))) or None


# --------------------------------------------------------------------------- #
# Field registry
# --------------------------------------------------------------------------- #
FIELD_STRATEGIES: Dict[str, List[Strategy]] = {
    # free text
    "title": [
        _selector_text(".fic-header h1"),
        _selector_text("h1"),
        _selector_attr('meta[property="og:title"]', "content"),
    ],
    "author_name": [
        _author_name_from_link,
        _selector_text(".fic-header h4 a"),
        _selector_attr('meta[property="books:author"]', "content"),
    ],
    "author_id": [_author_id_from_link],
    "author_avatar": [_author_avatar_from_link, _selector_attr("img.avatar", "src")],
    "description": [
        _selector_text(".description"),
        _selector_text(".fiction-description"),
        _selector_attr('meta[property="og:description"]', "content"),
        _selector_attr('meta[name="description"]', "content"),
    ],
    "image": [
        _selector_attr('img[src*="covers-large"]', "src"),
        _selector_attr(".cover img", "src"),
        _selector_attr('img[src*="cover"]', "src"),
        _selector_attr('meta[property="og:image"]', "content"),
    ],
    "status": [
        _vocabulary_selector(".status", STATUS_VOCABULARY),
        _vocabulary_selector(".label", STATUS_VOCABULARY),
        _vocabulary_scan(STATUS_VOCABULARY),
    ],
    "type": [
        _vocabulary_selector(".type", TYPE_VOCABULARY),
        _vocabulary_selector(".label", TYPE_VOCABULARY),
        _vocabulary_scan(TYPE_VOCABULARY),
    ],
    # lists
    "tags": [
        _list_selector(".tags a"),
        _list_selector("a.fiction-tag"),
        _list_selector('a[href*="tagsAdd="]'),
    ],
    "warnings": [
        _list_selector(".warnings a"),
        _list_selector(".warnings li", skip=_WARNING_NOISE),
        _warnings_after_marker,
        _warnings_from_text,
    ],
    # numbers
    "pages": _numeric_chain(r"Pages\s*:\s*([\d,]+)"),
    "ratings": _numeric_chain(r"Ratings\s*:\s*([\d,]+)"),
    "followers": _numeric_chain(r"Followers\s*:\s*([\d,]+)"),
    "favorites": _numeric_chain(r"Favorites\s*:\s*([\d,]+)"),
    "total_views": _numeric_chain(r"Total\s*Views\s*:\s*([\d,]+)"),
    "average_views": _numeric_chain(r"Average\s*Views\s*:\s*([\d,]+)"),
    # bare "Views" only inside the stats block, chapter lists elsewhere also say "Views"
    "views": [
        _stats_regex(re.compile(r"(?<!Total )(?<!Average )\bViews\s*:\s*([\d,]+)", re.I)),
        _stats_regex(re.compile(r"([\d,]+)\s+Views\b", re.I)),
    ],
    # scores
    "overall_score": _score_chain("Overall") + [_first_data_content, _out_of_five_text],
    "style_score": _score_chain("Style"),
    "story_score": _score_chain("Story"),
    "grammar_score": _score_chain("Grammar"),
    "character_score": _score_chain("Character"),
    "score": [_labelled_data_content("Overall"), _first_data_content, _out_of_five_text],
}

_NUMERIC_FIELDS = ("pages", "ratings", "followers", "favorites", "views", "total_views", "average_views")
_SCORE_FIELDS = ("score", "overall_score", "style_score", "story_score", "grammar_score", "character_score")


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #
def extract(html: str, fiction_id: str = "") -> FictionRecord:
    """Turn one fiction page into a :class:`FictionRecord`.

    Pure: the same input always yields an equal record, and missing fields
    fall back to their defaults instead of raising.
    """
    doc = Document(html)

    def field(name: str, default):
        return run_strategies(FIELD_STRATEGIES[name], doc, default)

    stats = FictionStats(
        **{name: field(name, 0) for name in _NUMERIC_FIELDS},
        **{name: field(name, 0.0) for name in _SCORE_FIELDS},
    )
    author = Author(
        name=field("author_name", ""),
        id=field("author_id", ""),
        avatar=field("author_avatar", ""),
    )
    record = FictionRecord(
        id=fiction_id,
        title=field("title", ""),
        author=author,
        description=field("description", ""),
        image=field("image", ""),
        status=field("status", ""),
        type=field("type", ""),
        tags=field("tags", ()),
        warnings=field("warnings", ()),
        stats=stats,
    )
    logger.debug("Extracted fiction %s: %r (stats container: %s)", fiction_id or "?", record.title, doc.stats is not None)
    return record


def parse_rising_stars(html: str, genre: str, captured_at: datetime) -> List[RisingStarEntry]:
    """Parse one Rising Stars list page.

    Position is the 1-based index of the ``.fiction-list-item`` on the page;
    items without a ``/fiction/{id}`` link are skipped but keep their slot.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    entries: List[RisingStarEntry] = []
    seen: set = set()

    for index, item in enumerate(soup.select(".fiction-list-item"), start=1):
        royalroad_id = None
        for link in item.select("a[href]"):
            match = _FICTION_HREF.search(link.get("href") or "")
            if match:
                royalroad_id = match.group(1)
                break
        if not royalroad_id or royalroad_id in seen:
            continue
        seen.add(royalroad_id)

        title_el = item.select_one(".fiction-title")
        author_el = item.select_one(".author")
        img = item.find("img")
        entries.append(
            RisingStarEntry(
                royalroad_id=royalroad_id,
                title=clean_text(title_el.get_text()) if title_el else "",
                author_name=clean_text(author_el.get_text()) if author_el else "",
                image_url=clean_text(img.get("src")) if img else "",
                genre=genre,
                position=index,
                captured_at=captured_at,
            )
        )

    logger.debug("Parsed %d Rising Stars entries for %s", len(entries), genre)
    return entries
