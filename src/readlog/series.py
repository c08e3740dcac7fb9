"""
Series resolution for readlog.

This module infers series membership from book titles and works with the
candidates returned by the book-metadata search API:
- Title heuristics (series name and position)
- Grouping search results into series
- Suggesting books missing from a series the user already reads
- Planning the rows for importing a whole series
"""

import logging
import math
import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import (
    Book,
    BookSearchRecord,
    SeriesBook,
    SeriesDetection,
    SeriesSearchResult,
    parse_order,
)
from .tracking import change_status, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 10
DEFAULT_GAP_LIMIT = 5

# Patterns that capture a series name from the start of a title, by priority
SERIES_NAME_PATTERNS = [
    re.compile(r"^(.*?)\s+and\s+the\s+", re.IGNORECASE),  # "Harry Potter and the ..."
    re.compile(r"^(.*?):\s+", re.IGNORECASE),  # "Mistborn: The Final Empire"
    re.compile(r"^(.*?):\s*book\s*\d+", re.IGNORECASE),
    re.compile(r"^(.*?)\s*#\s*\d+", re.IGNORECASE),
    re.compile(r"^(.*?)\s+book\s+\d+", re.IGNORECASE),
    re.compile(r"^(.*?)\s*\(book\s*\d+\)", re.IGNORECASE),
    re.compile(r"^(.*?)\s+volume\s+\d+", re.IGNORECASE),
]

_NUMBER = r"(\d+(?:\.\d+)?)"

# Explicit position markers, by priority
ORDER_PATTERNS = [
    re.compile(r"\bbook\s*" + _NUMBER, re.IGNORECASE),
    re.compile(r"#\s*" + _NUMBER),
    re.compile(r"\(book\s*" + _NUMBER + r"\)", re.IGNORECASE),
    re.compile(r"\bvolume\s*" + _NUMBER, re.IGNORECASE),
    re.compile(r"\bpart\s*" + _NUMBER, re.IGNORECASE),
]

# Titles containing any of these are companions or spin-offs, not series entries
COMPANION_KEYWORDS = (
    "guide",
    "companion",
    "magical year",
    "cookbook",
    "journal",
    "diary",
    "handbook",
    "encyclopedia",
    "lexicon",
    "atlas",
    "illustrated",
    "screenplay",
    "script",
    "tales of",
    "fantastic beasts",
    "quidditch",
    "beedle",
    "cursed child",
    "short stories",
    "collection",
    "anthology",
    "treasury",
    "archive",
)


@dataclass(frozen=True)
class KnownSeries:
    """
    A well-known series the title heuristics can recognise by name.

    Attributes:
        key: Lowercase phrase that identifies the series in a title.
        name: Canonical display name.
        total_books: Number of books in the series.
        order_rules: (keywords, position) pairs checked in order against
                     the lowercase title; the first rule with a keyword
                     present gives the position.
        aliases: Extra lowercase phrases that mark a title as belonging
                 to the series when looking for missing books.
        first_title: Normalized title of book one when it is named after
                     the series (a leading "the" is ignored).
    """

    key: str
    name: str
    total_books: int
    order_rules: tuple[tuple[tuple[str, ...], int], ...] = ()
    aliases: tuple[str, ...] = ()
    first_title: str | None = None

    def matches(self, text: str) -> bool:
        """Check whether the key appears as whole words in text."""
        return re.search(r"\b" + re.escape(self.key) + r"\b", text.lower()) is not None

    def order_for(self, title: str) -> int | None:
        """Position of a title within the series, if a rule applies."""
        lower = title.lower()
        for keywords, order in self.order_rules:
            if any(keyword in lower for keyword in keywords):
                return order
        if self.first_title:
            normalized = normalize_title(title)
            if normalized.startswith("the "):
                normalized = normalized[4:]
            if normalized == self.first_title:
                return 1
        return None

    @property
    def title_phrases(self) -> tuple[str, ...]:
        """Every phrase that marks a title as part of this series."""
        phrases = [self.key, self.name.lower(), *self.aliases]
        for keywords, _ in self.order_rules:
            phrases.extend(keywords)
        return tuple(dict.fromkeys(phrases))


KNOWN_SERIES = (
    KnownSeries(
        "harry potter",
        "Harry Potter",
        7,
        (
            (("philosopher", "sorcerer"), 1),
            (("chamber",), 2),
            (("prisoner",), 3),
            (("goblet",), 4),
            (("phoenix",), 5),
            (("prince",), 6),
            (("hallows",), 7),
        ),
    ),
    KnownSeries(
        "lord of the rings",
        "The Lord of the Rings",
        3,
        (
            (("fellowship",), 1),
            (("two towers",), 2),
            (("return",), 3),
        ),
        aliases=("ring",),
    ),
    KnownSeries(
        "chronicles of narnia",
        "The Chronicles of Narnia",
        7,
        (
            (("lion, the witch", "lion the witch"), 1),
            (("prince caspian",), 2),
            (("dawn treader",), 3),
            (("silver chair",), 4),
            (("horse and his boy",), 5),
            (("magician's nephew", "magicians nephew"), 6),
            (("last battle",), 7),
        ),
        aliases=("chronicles", "narnia"),
    ),
    KnownSeries(
        "hunger games",
        "The Hunger Games",
        4,
        (
            (("catching fire",), 2),
            (("mockingjay",), 3),
            (("songbirds and snakes",), 4),
        ),
        first_title="hunger games",
    ),
    KnownSeries(
        "twilight",
        "Twilight",
        4,
        (
            (("new moon",), 2),
            (("eclipse",), 3),
            (("breaking dawn",), 4),
        ),
        first_title="twilight",
    ),
    KnownSeries(
        "divergent",
        "Divergent",
        3,
        (
            (("insurgent",), 2),
            (("allegiant",), 3),
        ),
        first_title="divergent",
    ),
    KnownSeries(
        "maze runner",
        "The Maze Runner",
        3,
        (
            (("scorch trials",), 2),
            (("death cure",), 3),
        ),
        first_title="maze runner",
    ),
    KnownSeries("foundation", "Foundation", 7, first_title="foundation"),
    KnownSeries(
        "dune",
        "Dune",
        6,
        (
            (("messiah",), 2),
            (("children of dune",), 3),
            (("god emperor",), 4),
            (("heretics",), 5),
            (("chapterhouse",), 6),
        ),
        first_title="dune",
    ),
    KnownSeries(
        "game of thrones",
        "A Song of Ice and Fire",
        5,
        (
            (("game of thrones",), 1),
            (("clash of kings",), 2),
            (("storm of swords",), 3),
            (("feast for crows",), 4),
            (("dance with dragons",), 5),
        ),
        aliases=("song of ice and fire",),
    ),
    KnownSeries("wheel of time", "The Wheel of Time", 14),
    KnownSeries(
        "mistborn",
        "Mistborn",
        3,
        (
            (("final empire",), 1),
            (("well of ascension",), 2),
            (("hero of ages",), 3),
        ),
        first_title="mistborn",
    ),
    KnownSeries(
        "stormlight archive",
        "The Stormlight Archive",
        5,
        (
            (("way of kings",), 1),
            (("words of radiance",), 2),
            (("oathbringer",), 3),
            (("rhythm of war",), 4),
            (("wind and truth",), 5),
        ),
    ),
)


@dataclass
class SeriesSignal:
    """What a title alone says about its series."""

    series_name: str | None = None
    order: int | float | None = None
    total_books: int | None = None


def find_known_series(text: str | None) -> KnownSeries | None:
    """Find the first known series named in text."""
    if not text:
        return None
    for series in KNOWN_SERIES:
        if series.matches(text):
            return series
    return None


def normalize_title(title: str) -> str:
    """Lowercase a title and strip punctuation for duplicate detection."""
    return " ".join(re.sub(r"[^\w\s]", "", title.lower()).split())


def extract_series_signal(title: str | None) -> SeriesSignal:
    """
    Infer a series name and position from a title.

    Name patterns are tried first, then position markers. A well-known
    series named in the extracted name (or, failing a name, anywhere in the
    title) supplies its canonical name, its size, and a position from its
    title keywords, which overrides any marker.

    Args:
        title: The book title.

    Returns:
        SeriesSignal; fields are None when nothing was found.
    """
    if not title:
        return SeriesSignal()

    name = None
    for pattern in SERIES_NAME_PATTERNS:
        match = pattern.match(title)
        if match:
            candidate = match.group(1).strip(" -,(")
            if candidate:
                name = candidate
                break

    order = None
    for pattern in ORDER_PATTERNS:
        match = pattern.search(title)
        if match:
            order = parse_order(match.group(1))
            break

    known = find_known_series(name if name else title)
    if known is None:
        return SeriesSignal(series_name=name, order=order)

    rule_order = known.order_for(title)
    return SeriesSignal(
        series_name=known.name,
        order=rule_order if rule_order is not None else order,
        total_books=known.total_books,
    )


def fallback_series_detection(title: str | None) -> SeriesDetection:
    """
    Detect series membership from the title alone.

    Used whenever AI-assisted detection is unavailable or fails. Confidence
    is 0.5 when a position was found and 0.3 otherwise.
    """
    signal = extract_series_signal(title)
    return SeriesDetection(
        is_part_of_series=signal.series_name is not None or signal.order is not None,
        series_name=signal.series_name,
        series_order=signal.order,
        total_books=signal.total_books,
        confidence=0.5 if signal.order is not None else 0.3,
    )


def _as_record(item: Any) -> BookSearchRecord | None:
    """Accept a BookSearchRecord or a raw API item; None when unusable."""
    if isinstance(item, BookSearchRecord):
        record = item
    elif isinstance(item, dict):
        record = BookSearchRecord.from_dict(item)
    else:
        return None
    return record if record.is_usable else None


@dataclass
class _SeriesGroup:
    name: str
    author: str
    estimate: int = 0
    entries: list[tuple[BookSearchRecord, int | float | None]] = field(default_factory=list)


def resolve_series(
    candidates: Iterable[Any] | None,
    limit: int | None = DEFAULT_RESULT_LIMIT,
) -> list[SeriesSearchResult]:
    """
    Group search candidates into probable series.

    Candidates are grouped by series name and first author. Within a group,
    books are ordered by position, with unpositioned books after the rest
    in the order they were found; titles that normalize the same are kept
    once. Groups with fewer than two distinct books are dropped, and the
    rest are ranked by 2 * book count + size estimate (ties keep discovery
    order).

    Args:
        candidates: BookSearchRecord objects or raw API items.
        limit: Maximum number of series to return (None for all).

    Returns:
        List of SeriesSearchResult, most relevant first.
    """
    groups: dict[tuple[str, str], _SeriesGroup] = {}
    for item in candidates or []:
        record = _as_record(item)
        if record is None:
            continue
        signal = extract_series_signal(record.title)
        if not signal.series_name:
            continue

        author = record.primary_author
        key = (signal.series_name.casefold(), author.casefold())
        group = groups.get(key)
        if group is None:
            group = groups[key] = _SeriesGroup(name=signal.series_name, author=author)
        group.entries.append((record, signal.order))
        if signal.total_books and signal.total_books > group.estimate:
            group.estimate = signal.total_books

    results = []
    for group in groups.values():
        unplaced = len(group.entries) + 1
        ordered = sorted(group.entries, key=lambda e: e[1] if e[1] is not None else unplaced)

        books = []
        seen = set()
        for record, order in ordered:
            normalized = normalize_title(record.title)
            if normalized in seen:
                continue
            seen.add(normalized)
            books.append(SeriesBook(title=record.title, author=group.author, order=order, record=record))

        if len(books) < 2:
            continue

        # Unpositioned books take the positions after the highest known one
        known = [b.order for b in books if b.order is not None]
        next_order = math.floor(max(known)) + 1 if known else 1
        for book in books:
            if book.order is None:
                book.order = next_order
                next_order += 1

        results.append(
            SeriesSearchResult(
                series_name=group.name,
                author=group.author,
                total_books_estimate=max(group.estimate, len(books)),
                books=books,
            )
        )

    results.sort(key=lambda r: -r.relevance)
    return results if limit is None else results[:limit]


def is_companion_title(title: str) -> bool:
    """Check whether a title looks like a companion or spin-off."""
    lower = title.lower()
    return any(keyword in lower for keyword in COMPANION_KEYWORDS)


def series_title_phrases(series_name: str) -> tuple[str, ...]:
    """
    Phrases that mark a title as part of the named series.

    The series name itself, plus the key, aliases and per-book keywords of
    a matching well-known series.
    """
    lower = series_name.lower()
    phrases = [lower]
    known = find_known_series(series_name)
    if known:
        phrases.extend(known.title_phrases)
    if "chronicles" in lower:
        phrases.append("chronicles")
    return tuple(dict.fromkeys(phrases))


def _titles_overlap(a: str, b: str) -> bool:
    """Loose duplicate check: either lowercase title contains the other."""
    return a in b or b in a


def _published_key(published: str | None) -> tuple[int, int, int] | None:
    if not published:
        return None
    match = re.match(r"^(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?", published.strip())
    if not match:
        return None
    year, month, day = match.groups()
    return (int(year), int(month or 1), int(day or 1))


def _publication_sort_key(record: BookSearchRecord) -> tuple:
    published = _published_key(record.published_date)
    title = record.title.lower()
    if published is None:
        return (1, (0, 0, 0), title)
    return (0, published, title)


def _series_reference(owned_books: list[Book]) -> tuple[str | None, str | None]:
    for book in owned_books:
        if book.series_name:
            return book.series_name, book.author
    return None, None


def find_missing_series_books(
    owned_books: Iterable[Book],
    candidates: Iterable[Any] | None,
    series_name: str | None = None,
    author: str | None = None,
    limit: int | None = DEFAULT_GAP_LIMIT,
) -> list[BookSearchRecord]:
    """
    Find candidates that look like books of a series the user has not added.

    A candidate is kept when its first author equals the series author
    (case-insensitive), its title contains the series name or a known
    alias, its title is not a companion/spin-off, and it does not overlap
    an owned title (either lowercase title containing the other). Kept
    candidates that overlap an earlier kept one are dropped too.

    Args:
        owned_books: The user's books in the series.
        candidates: BookSearchRecord objects or raw API items.
        series_name: Series to complete (default: from the first owned
                     book with a series name).
        author: Series author (default: that book's author).
        limit: Maximum number of suggestions (None for all).

    Returns:
        Suggested records, earliest published first; unknown dates last,
        ties by title.
    """
    owned_books = list(owned_books or [])
    if series_name is None or author is None:
        ref_name, ref_author = _series_reference(owned_books)
        series_name = series_name or ref_name
        author = author or ref_author
    if not series_name or not author:
        return []

    author_lower = author.strip().lower()
    phrases = series_title_phrases(series_name)
    owned_titles = [b.title.lower() for b in owned_books if b.title]

    matches: list[BookSearchRecord] = []
    for item in candidates or []:
        record = _as_record(item)
        if record is None:
            continue
        title = record.title.lower()
        if record.primary_author.strip().lower() != author_lower:
            continue
        if is_companion_title(title):
            logger.debug("Skipping companion title: %s", record.title)
            continue
        if not any(phrase in title for phrase in phrases):
            continue
        if any(_titles_overlap(title, owned) for owned in owned_titles):
            continue
        if any(_titles_overlap(title, kept.title.lower()) for kept in matches):
            continue
        matches.append(record)

    matches.sort(key=_publication_sort_key)
    return matches if limit is None else matches[:limit]


def find_series_gaps(
    owned_books: Iterable[Book],
    candidates: Iterable[Any] | None,
    series_name: str | None = None,
    author: str | None = None,
    limit: int | None = DEFAULT_GAP_LIMIT,
) -> list[str]:
    """Titles of the books missing from a series; see find_missing_series_books."""
    return [
        record.title
        for record in find_missing_series_books(owned_books, candidates, series_name, author, limit)
    ]


def plan_series_import(
    result: SeriesSearchResult,
    existing_books: Iterable[Book],
    user_id: str,
    default_status: str = "planned",
    now: datetime | None = None,
) -> list[Book]:
    """
    Build the book rows for adding a whole series to a library.

    Books whose title the user already has in this series (case-insensitive)
    are skipped.

    Args:
        result: The chosen series.
        existing_books: The user's books already in the series.
        user_id: Owner of the new rows.
        default_status: Status for every new book.
        now: Creation time (default: the current UTC time).

    Returns:
        New Book objects, in series order.

    Raises:
        ValueError: If default_status is not a known status.
    """
    if now is None:
        now = utc_now()
    existing_titles = {b.title.lower() for b in existing_books if b.title}
    new_books = []
    for entry in result.books:
        if entry.title.lower() in existing_titles:
            continue
        record = entry.record or BookSearchRecord(title=entry.title, authors=[entry.author])
        book = Book(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=entry.title,
            author=entry.author,
            genres=list(record.categories),
            date_added=now,
            total_pages=record.page_count,
            current_page=0,
            is_part_of_series=True,
            series_name=result.series_name,
            series_order=entry.order,
            series_total_books=len(result.books),
            cover_url=record.thumbnail,
        )
        new_books.append(change_status(book, default_status, now))
    return new_books
