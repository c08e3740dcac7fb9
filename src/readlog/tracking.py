"""
Reading status and progress rules for readlog.

This module contains the business logic applied when a user changes a
book's status or logs pages read. It works on in-memory snapshots only;
the resulting ProgressUpdate is handed to the store as a single unit.
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone

from .config import READING_STATUSES
from .models import Book, DailyReadingEntry


def utc_now() -> datetime:
    """The current time in UTC."""
    return datetime.now(timezone.utc)


@dataclass
class StatusChange:
    """Represents a status transition for one book."""

    book_id: str
    title: str
    old_status: str
    new_status: str
    date_completed: datetime | None

    @property
    def display_status(self) -> str:
        """Get a display-friendly label for the new status."""
        return READING_STATUSES.get(self.new_status, self.new_status)

    @property
    def is_noop(self) -> bool:
        """True when the status does not actually change."""
        return self.old_status == self.new_status


@dataclass
class ProgressUpdate:
    """
    The two writes produced by logging pages for a book.

    Attributes:
        entry: Daily entry to upsert; replaces any entry with the same key.
        book: The book with current_page advanced.
        old_page: current_page before the update.
    """

    entry: DailyReadingEntry
    book: Book
    old_page: int

    @property
    def new_page(self) -> int:
        """current_page after the update."""
        return self.book.current_page or 0

    @property
    def pages_advanced(self) -> int:
        """How far current_page moved (less than pages read when clamped)."""
        return self.new_page - self.old_page


def change_status(book: Book, new_status: str, now: datetime | None = None) -> Book:
    """
    Apply a status transition.

    Moving to past stamps date_completed with now unless it is already set.
    Moving away from past clears date_completed, so a book that is no
    longer finished stops counting toward goals and pace.

    Args:
        book: The book to transition.
        new_status: One of planned, current, past.
        now: Transition time (default: the current UTC time).

    Returns:
        A new Book; the input is not modified.

    Raises:
        ValueError: If new_status is not a known status.
    """
    if new_status not in READING_STATUSES:
        raise ValueError(f"Unknown reading status: {new_status!r}")

    if new_status == "past":
        completed = book.date_completed or now or utc_now()
    else:
        completed = None
    return replace(book, status=new_status, date_completed=completed)


def describe_status_change(book: Book, new_status: str, now: datetime | None = None) -> StatusChange:
    """Preview a transition without applying it."""
    updated = change_status(book, new_status, now)
    return StatusChange(
        book_id=book.id,
        title=book.title,
        old_status=book.status,
        new_status=new_status,
        date_completed=updated.date_completed,
    )


def advance_current_page(current_page: int | None, pages_read: int, total_pages: int | None) -> int:
    """
    Advance the current page by the pages read, never past the last page.

    Args:
        current_page: The page before reading (None means 0).
        pages_read: Pages read; must be non-negative.
        total_pages: Page count, or None when unknown (no upper bound).

    Returns:
        min(current_page + pages_read, total_pages).

    Raises:
        ValueError: If pages_read is negative.
    """
    if pages_read < 0:
        raise ValueError("pages_read must be non-negative")

    new_page = (current_page or 0) + pages_read
    if total_pages is not None:
        new_page = min(new_page, total_pages)
    return new_page


def upsert_daily_entry(
    entries: Iterable[DailyReadingEntry],
    entry: DailyReadingEntry,
) -> list[DailyReadingEntry]:
    """
    Insert an entry, replacing any existing entry with the same key.

    Args:
        entries: Existing entries.
        entry: The entry to write.

    Returns:
        A new list with the entry in place of its predecessor, or appended.
    """
    result = []
    replaced = False
    for existing in entries:
        if existing.key == entry.key:
            if not replaced:
                result.append(entry)
                replaced = True
            continue
        result.append(existing)
    if not replaced:
        result.append(entry)
    return result


def plan_progress_update(
    book: Book,
    pages_read: int,
    user_id: str | None = None,
    day: date | None = None,
) -> ProgressUpdate:
    """
    Build the writes for logging pages read today.

    The daily entry records pages_read for the day, replacing any earlier
    value for the same day. current_page is advanced by pages_read on every
    call. Both writes must be applied together.

    Args:
        book: The book being read.
        pages_read: Pages read in this session.
        user_id: Owner of the entry (default: the book's user_id).
        day: Day to log against (default: the current UTC day).

    Returns:
        ProgressUpdate holding the entry and the updated book.

    Raises:
        ValueError: If pages_read is negative or there is no user id.
    """
    owner = user_id or book.user_id
    if not owner:
        raise ValueError("A user id is required to log progress")
    if day is None:
        day = utc_now().date()

    old_page = book.current_page or 0
    new_page = advance_current_page(book.current_page, pages_read, book.total_pages)
    return ProgressUpdate(
        entry=DailyReadingEntry(user_id=owner, book_id=book.id, date=day, pages_read=pages_read),
        book=replace(book, current_page=new_page),
        old_page=old_page,
    )
