"""
Data models for readlog.

This module contains the dataclasses for rows read from the reading store
(books, daily reading entries, user settings) and for records returned by
the book-metadata search API. All timestamps are normalized to UTC.
"""

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, TypeVar

__all__ = [
    "Book",
    "BookSearchRecord",
    "DailyReadingEntry",
    "SeriesBook",
    "SeriesDetection",
    "SeriesSearchResult",
    "UserSettings",
    "parse_date",
    "parse_order",
    "parse_rows",
    "parse_timestamp",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a timestamp into an aware UTC datetime.

    Naive values are taken to already be in UTC. Plain dates become
    midnight UTC.

    Args:
        value: A datetime, date, ISO 8601 string, or None.

    Returns:
        The UTC datetime, or None if the value is empty or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date(value: Any) -> date | None:
    """
    Parse a calendar day.

    Timestamps are converted to UTC before the day is taken.

    Args:
        value: A date, datetime, "YYYY-MM-DD" or ISO timestamp string, or None.

    Returns:
        The calendar day, or None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        # Plain day strings carry no time zone to convert
        if len(text) == 10:
            try:
                return date.fromisoformat(text)
            except ValueError:
                return None
        ts = parse_timestamp(text)
        return ts.date() if ts else None
    return None


def parse_order(value: Any) -> int | float | None:
    """Parse a series position, keeping fractional positions like 1.5."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _optional_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def parse_rows(rows: Iterable[Any] | None, factory: Callable[[dict[str, Any]], T]) -> list[T]:
    """
    Build model objects from raw rows, skipping malformed ones.

    Args:
        rows: Raw row dicts (None is treated as no rows).
        factory: The model's from_dict constructor.

    Returns:
        The parsed objects, in input order.
    """
    parsed = []
    for row in rows or []:
        if not isinstance(row, dict):
            logger.debug("Skipping non-mapping row: %r", row)
            continue
        try:
            parsed.append(factory(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping malformed row %r: %s", row, e)
    return parsed


@dataclass
class Book:
    """A book in a user's library."""

    id: str
    title: str
    author: str
    status: str = "planned"
    genres: list[str] = field(default_factory=list)
    favorite: bool = False
    date_added: datetime | None = None
    date_completed: datetime | None = None
    total_pages: int | None = None
    current_page: int | None = None
    is_part_of_series: bool = False
    series_name: str | None = None
    series_order: int | float | None = None
    series_total_books: int | None = None
    user_id: str | None = None
    cover_url: str | None = None

    def __post_init__(self):
        self.date_added = parse_timestamp(self.date_added)
        self.date_completed = parse_timestamp(self.date_completed)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Book":
        """
        Create a Book from a store row.

        Raises:
            KeyError: If id, title or author is missing.
            ValueError: If title or author is empty.
        """
        title = data["title"]
        author = data["author"]
        if not title or not author:
            raise ValueError("title and author must be non-empty")

        genres = data.get("genre")
        if genres is None:
            genres = data.get("genres")
        return cls(
            id=str(data["id"]),
            title=title,
            author=author,
            status=data.get("status") or "planned",
            genres=_text_list(genres),
            favorite=bool(data.get("favorite")),
            date_added=data.get("date_added"),
            date_completed=data.get("date_completed"),
            total_pages=_optional_int(data.get("total_pages")),
            current_page=_optional_int(data.get("current_page")),
            is_part_of_series=bool(data.get("is_part_of_series")),
            series_name=data.get("series_name") or None,
            series_order=parse_order(data.get("series_order")),
            series_total_books=_optional_int(data.get("series_total_books")),
            user_id=data.get("user_id"),
            cover_url=data.get("coverurl") or data.get("cover_url"),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the column layout used by the store."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "author": self.author,
            "status": self.status,
            "genre": list(self.genres),
            "favorite": self.favorite,
            "date_added": self.date_added.isoformat() if self.date_added else None,
            "date_completed": self.date_completed.isoformat() if self.date_completed else None,
            "total_pages": self.total_pages,
            "current_page": self.current_page,
            "is_part_of_series": self.is_part_of_series,
            "series_name": self.series_name,
            "series_order": self.series_order,
            "series_total_books": self.series_total_books,
            "coverurl": self.cover_url,
        }


@dataclass
class DailyReadingEntry:
    """Pages read for one book on one day. Unique per (user_id, book_id, date)."""

    user_id: str
    book_id: str
    date: date
    pages_read: int = 0

    @property
    def key(self) -> tuple[str, str, date]:
        """The upsert key."""
        return (self.user_id, self.book_id, self.date)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyReadingEntry":
        """
        Create an entry from a store row.

        Raises:
            KeyError: If book_id or date is missing.
            ValueError: If the date cannot be parsed.
        """
        day = parse_date(data["date"])
        if day is None:
            raise ValueError(f"invalid date: {data['date']!r}")
        pages = _optional_int(data.get("pages_read")) or 0
        return cls(
            user_id=str(data.get("user_id") or ""),
            book_id=str(data["book_id"] or ""),
            date=day,
            pages_read=max(pages, 0),
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the column layout used by the store."""
        return {
            "user_id": self.user_id,
            "book_id": self.book_id,
            "date": self.date.isoformat(),
            "pages_read": self.pages_read,
        }


@dataclass
class UserSettings:
    """Per-user settings."""

    user_id: str | None = None
    favorite_genres: list[str] = field(default_factory=list)
    reading_goal: int = 0  # books per calendar year

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "UserSettings":
        """Create settings from a store row; None gives the defaults."""
        if not data:
            return cls()
        goal = _optional_int(data.get("reading_goal")) or 0
        return cls(
            user_id=data.get("user_id"),
            favorite_genres=_text_list(data.get("favorite_genres")),
            reading_goal=max(goal, 0),
        )


@dataclass
class BookSearchRecord:
    """
    A raw candidate returned by the book-metadata search API.

    Every field is optional: the API omits whatever it does not know, and
    absent fields stay None (or empty) rather than raising.
    """

    title: str | None = None
    authors: list[str] = field(default_factory=list)
    published_date: str | None = None
    page_count: int | None = None
    image_links: dict[str, str] | None = None
    categories: list[str] = field(default_factory=list)
    description: str | None = None

    @property
    def primary_author(self) -> str | None:
        """The first listed author."""
        return self.authors[0] if self.authors else None

    @property
    def is_usable(self) -> bool:
        """True when the record has both a title and an author."""
        return bool(self.title) and bool(self.primary_author)

    @property
    def thumbnail(self) -> str | None:
        """Cover thumbnail URL, upgraded to https."""
        if not self.image_links:
            return None
        url = self.image_links.get("thumbnail") or self.image_links.get("smallThumbnail")
        if url and url.startswith("http:"):
            url = "https:" + url[len("http:") :]
        return url

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BookSearchRecord":
        """
        Create a record from an API item.

        Accepts either a full volume item (with a ``volumeInfo`` member) or
        the bare volume info.
        """
        info = data.get("volumeInfo", data)
        if not isinstance(info, dict):
            info = {}
        return cls(
            title=_optional_text(info.get("title")),
            authors=_text_list(info.get("authors")),
            published_date=_optional_text(info.get("publishedDate")),
            page_count=_optional_int(info.get("pageCount")),
            image_links=info.get("imageLinks") if isinstance(info.get("imageLinks"), dict) else None,
            categories=_text_list(info.get("categories")),
            description=_optional_text(info.get("description")),
        )


@dataclass
class SeriesBook:
    """One book inside a series search result."""

    title: str
    author: str
    order: int | float
    record: BookSearchRecord | None = None  # full metadata


@dataclass
class SeriesSearchResult:
    """A probable series assembled from search candidates."""

    series_name: str
    author: str
    total_books_estimate: int
    books: list[SeriesBook] = field(default_factory=list)

    @property
    def relevance(self) -> int:
        """Ranking score: two points per book found plus the size estimate."""
        return 2 * len(self.books) + self.total_books_estimate


@dataclass
class SeriesDetection:
    """Outcome of deciding whether a single book belongs to a series."""

    is_part_of_series: bool
    series_name: str | None = None
    series_order: int | float | None = None
    total_books: int | None = None
    confidence: float = 0.0  # 0.0 to 1.0
