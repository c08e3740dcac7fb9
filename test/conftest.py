"""
Pytest configuration for readlog tests.

Adds src/ to the import path and provides factories for the store rows and
model objects most tests need.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from readlog.models import Book, DailyReadingEntry, UserSettings  # noqa: E402

USER_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def make_book():
    """Factory for Book objects with sensible defaults."""
    counter = {"n": 0}

    def _make(title="A Book", author="An Author", **kwargs):
        counter["n"] += 1
        kwargs.setdefault("id", f"book-{counter['n']}")
        kwargs.setdefault("user_id", USER_ID)
        return Book(title=title, author=author, **kwargs)

    return _make


@pytest.fixture
def make_entry():
    """Factory for DailyReadingEntry objects."""

    def _make(day, pages_read=10, book_id="book-1"):
        if isinstance(day, str):
            day = date.fromisoformat(day)
        return DailyReadingEntry(user_id=USER_ID, book_id=book_id, date=day, pages_read=pages_read)

    return _make


@pytest.fixture
def settings():
    return UserSettings(user_id=USER_ID, favorite_genres=["Fantasy"], reading_goal=10)


@pytest.fixture
def book_row():
    """A raw book row as returned by the store."""
    return {
        "id": "8b0f3c52-2f8c-4a8e-9c1f-3c7d6e1b2a90",
        "user_id": USER_ID,
        "title": "Mistborn: The Final Empire",
        "author": "Brandon Sanderson",
        "genre": ["Fantasy", "Epic"],
        "status": "past",
        "favorite": True,
        "date_added": "2024-01-02T10:00:00Z",
        "date_completed": "2024-01-20T22:30:00+00:00",
        "total_pages": 541,
        "current_page": 541,
        "is_part_of_series": True,
        "series_name": "Mistborn",
        "series_order": 1,
        "series_total_books": 3,
        "coverurl": "https://example.com/mistborn.jpg",
    }


def volume(title, authors, published=None, pages=None, categories=None, thumbnail=None):
    """A raw book-search API item."""
    info = {"title": title, "authors": authors}
    if published:
        info["publishedDate"] = published
    if pages:
        info["pageCount"] = pages
    if categories:
        info["categories"] = categories
    if thumbnail:
        info["imageLinks"] = {"thumbnail": thumbnail}
    return {"kind": "books#volume", "volumeInfo": info}


@pytest.fixture
def make_volume():
    """Factory for raw book-search API items."""
    return volume
