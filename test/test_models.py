"""
Tests for the data models.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from readlog.models import (
    Book,
    BookSearchRecord,
    DailyReadingEntry,
    SeriesBook,
    SeriesSearchResult,
    UserSettings,
    parse_date,
    parse_order,
    parse_rows,
    parse_timestamp,
)


# =============================================================================
# Parsing Helpers
# =============================================================================


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_z_suffix(self):
        """Test that a trailing Z is read as UTC."""
        ts = parse_timestamp("2024-03-01T08:15:00Z")
        assert ts == datetime(2024, 3, 1, 8, 15, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        """Test that offsets are converted to UTC."""
        ts = parse_timestamp("2024-03-01T01:00:00+05:00")
        assert ts == datetime(2024, 2, 29, 20, 0, tzinfo=timezone.utc)
        assert ts.tzinfo == timezone.utc

    def test_naive_is_utc(self):
        """Test that naive values are taken as UTC."""
        ts = parse_timestamp(datetime(2024, 1, 1, 12, 0))
        assert ts.tzinfo == timezone.utc
        assert ts.hour == 12

    def test_date_becomes_midnight(self):
        """Test that plain dates become midnight UTC."""
        assert parse_timestamp(date(2024, 5, 6)) == datetime(2024, 5, 6, tzinfo=timezone.utc)

    def test_invalid_values(self):
        """Test that empty and unparseable values give None."""
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(12345) is None


class TestParseDate:
    """Tests for parse_date."""

    def test_plain_day(self):
        assert parse_date("2024-01-10") == date(2024, 1, 10)

    def test_timestamp_uses_utc_day(self):
        """Test that the day is taken after converting to UTC."""
        assert parse_date("2024-01-10T23:30:00-02:00") == date(2024, 1, 11)

    def test_datetime_and_date(self):
        tz = timezone(timedelta(hours=3))
        assert parse_date(datetime(2024, 1, 10, 1, 0, tzinfo=tz)) == date(2024, 1, 9)
        assert parse_date(date(2024, 1, 10)) == date(2024, 1, 10)

    def test_invalid(self):
        assert parse_date(None) is None
        assert parse_date("2024-13-45") is None
        assert parse_date(["2024-01-01"]) is None


class TestParseOrder:
    """Tests for parse_order."""

    def test_integers_and_fractions(self):
        """Test that whole numbers become ints and fractions stay floats."""
        assert parse_order("3") == 3
        assert isinstance(parse_order(2.0), int)
        assert parse_order("1.5") == 1.5

    def test_invalid(self):
        assert parse_order(None) is None
        assert parse_order("") is None
        assert parse_order("two") is None
        assert parse_order(True) is None
        assert parse_order(float("nan")) is None

    def test_non_finite(self):
        """Test that overflowing digit runs and infinities are rejected."""
        assert parse_order("9" * 400) is None
        assert parse_order(float("inf")) is None
        assert parse_order("-inf") is None


class TestParseRows:
    """Tests for parse_rows."""

    def test_skips_malformed_rows(self, book_row):
        """Test that malformed rows are skipped, not raised."""
        rows = [
            book_row,
            {"id": "x", "title": "", "author": "Someone"},
            {"id": "y", "author": "No Title"},
            "not a row",
            None,
        ]
        books = parse_rows(rows, Book.from_dict)
        assert len(books) == 1
        assert books[0].title == "Mistborn: The Final Empire"

    def test_none(self):
        assert parse_rows(None, Book.from_dict) == []


# =============================================================================
# Store Rows
# =============================================================================


class TestBook:
    """Tests for the Book model."""

    def test_from_dict(self, book_row):
        """Test creating a Book from a store row."""
        book = Book.from_dict(book_row)

        assert book.id == book_row["id"]
        assert book.genres == ["Fantasy", "Epic"]
        assert book.status == "past"
        assert book.favorite is True
        assert book.date_added == datetime(2024, 1, 2, 10, tzinfo=timezone.utc)
        assert book.date_completed == datetime(2024, 1, 20, 22, 30, tzinfo=timezone.utc)
        assert book.total_pages == 541
        assert book.is_part_of_series is True
        assert book.series_order == 1
        assert book.cover_url == "https://example.com/mistborn.jpg"

    def test_from_dict_minimal(self):
        """Test defaults for a row with only the required columns."""
        book = Book.from_dict({"id": 1, "title": "T", "author": "A"})
        assert book.id == "1"
        assert book.status == "planned"
        assert book.genres == []
        assert book.total_pages is None
        assert book.date_completed is None

    def test_from_dict_null_genre(self):
        book = Book.from_dict({"id": "1", "title": "T", "author": "A", "genre": None})
        assert book.genres == []

    def test_from_dict_single_genre_string(self):
        """Test that a bare genre string is one genre, not one per letter."""
        book = Book.from_dict({"id": "1", "title": "T", "author": "A", "genre": "Fantasy"})
        assert book.genres == ["Fantasy"]

    def test_from_dict_genre_entries_cleaned(self):
        book = Book.from_dict({"id": "1", "title": "T", "author": "A", "genre": [" Horror ", "", None, 3]})
        assert book.genres == ["Horror"]

    def test_timestamps_normalized_to_utc(self):
        """Test that directly built books carry aware UTC timestamps."""
        local = timezone(timedelta(hours=2))
        book = Book(
            id="1",
            title="T",
            author="A",
            date_added=datetime(2024, 1, 1, 0, 30),
            date_completed=datetime(2024, 1, 1, 0, 30, tzinfo=local),
        )
        assert book.date_added == datetime(2024, 1, 1, 0, 30, tzinfo=timezone.utc)
        assert book.date_completed.tzinfo == timezone.utc
        assert book.date_completed.date() == date(2023, 12, 31)

    def test_timestamp_strings_parsed(self):
        book = Book(id="1", title="T", author="A", date_completed="2024-03-05T09:00:00Z")
        assert book.date_completed == datetime(2024, 3, 5, 9, tzinfo=timezone.utc)

    def test_from_dict_requires_title_and_author(self):
        with pytest.raises(ValueError):
            Book.from_dict({"id": "1", "title": "T", "author": ""})
        with pytest.raises(KeyError):
            Book.from_dict({"id": "1", "author": "A"})

    def test_to_row(self, book_row):
        """Test serializing back to store columns."""
        row = Book.from_dict(book_row).to_row()
        assert row["genre"] == ["Fantasy", "Epic"]
        assert row["coverurl"] == book_row["coverurl"]
        assert row["date_completed"] == "2024-01-20T22:30:00+00:00"
        assert row["series_name"] == "Mistborn"


class TestDailyReadingEntry:
    """Tests for the DailyReadingEntry model."""

    def test_from_dict(self):
        entry = DailyReadingEntry.from_dict(
            {"user_id": "u", "book_id": "b", "date": "2024-01-10", "pages_read": 25}
        )
        assert entry.date == date(2024, 1, 10)
        assert entry.pages_read == 25
        assert entry.key == ("u", "b", date(2024, 1, 10))

    def test_negative_pages_become_zero(self):
        entry = DailyReadingEntry.from_dict({"book_id": "b", "date": "2024-01-10", "pages_read": -4})
        assert entry.pages_read == 0

    def test_invalid_date(self):
        with pytest.raises(ValueError):
            DailyReadingEntry.from_dict({"book_id": "b", "date": "yesterday"})

    def test_to_row(self):
        entry = DailyReadingEntry(user_id="u", book_id="b", date=date(2024, 2, 1), pages_read=7)
        assert entry.to_row() == {"user_id": "u", "book_id": "b", "date": "2024-02-01", "pages_read": 7}


class TestUserSettings:
    """Tests for the UserSettings model."""

    def test_defaults_for_none(self):
        settings = UserSettings.from_dict(None)
        assert settings.reading_goal == 0
        assert settings.favorite_genres == []

    def test_from_dict(self):
        settings = UserSettings.from_dict(
            {"user_id": "u", "favorite_genres": ["Fantasy", None], "reading_goal": 12}
        )
        assert settings.favorite_genres == ["Fantasy"]
        assert settings.reading_goal == 12

    def test_negative_goal(self):
        assert UserSettings.from_dict({"reading_goal": -3}).reading_goal == 0


# =============================================================================
# Search Records
# =============================================================================


class TestBookSearchRecord:
    """Tests for the BookSearchRecord model."""

    def test_from_volume_item(self, make_volume):
        """Test parsing a full volume item."""
        record = BookSearchRecord.from_dict(
            make_volume(
                "The Well of Ascension",
                ["Brandon Sanderson"],
                published="2007-08-21",
                pages=590,
                categories=["Fiction"],
                thumbnail="http://books.example.com/cover.jpg",
            )
        )
        assert record.title == "The Well of Ascension"
        assert record.primary_author == "Brandon Sanderson"
        assert record.page_count == 590
        assert record.is_usable is True
        assert record.thumbnail == "https://books.example.com/cover.jpg"

    def test_from_bare_info(self):
        record = BookSearchRecord.from_dict({"title": "Dune", "authors": ["Frank Herbert"]})
        assert record.title == "Dune"
        assert record.is_usable is True

    def test_missing_fields(self):
        """Test that absent fields stay empty instead of raising."""
        record = BookSearchRecord.from_dict({"volumeInfo": {"title": "Anonymous"}})
        assert record.authors == []
        assert record.primary_author is None
        assert record.is_usable is False
        assert record.thumbnail is None

    def test_wrong_types(self):
        record = BookSearchRecord.from_dict(
            {"volumeInfo": {"title": 42, "authors": "Someone", "imageLinks": "x", "pageCount": "n/a"}}
        )
        assert record.title is None
        assert record.authors == []
        assert record.image_links is None
        assert record.page_count is None

    def test_non_dict_volume_info(self):
        assert BookSearchRecord.from_dict({"volumeInfo": None}).is_usable is False


class TestSeriesSearchResult:
    """Tests for SeriesSearchResult."""

    def test_relevance(self):
        result = SeriesSearchResult(
            series_name="Mistborn",
            author="Brandon Sanderson",
            total_books_estimate=3,
            books=[SeriesBook("A", "Brandon Sanderson", 1), SeriesBook("B", "Brandon Sanderson", 2)],
        )
        assert result.relevance == 7
