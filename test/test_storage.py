"""
Tests for the reading store client.

These tests use a mocked GraphQL client to avoid actual requests.
"""

from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest
from gql.transport.exceptions import TransportQueryError, TransportServerError

from readlog import queries
from readlog.api import AuthenticationError, RateLimitedError, UpstreamError, UpstreamUnavailableError
from readlog.models import UserSettings
from readlog.storage import ReadingStore


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_client():
    """Create a mock GraphQL client."""
    with patch("readlog.storage.Client") as mock:
        yield mock


@pytest.fixture
def store(mock_client):
    """Create a store instance with a mocked client."""
    return ReadingStore(url="https://xyz.supabase.co/", api_key="anon-key", access_token="jwt")


@pytest.fixture
def dry_store(mock_client):
    return ReadingStore(url="https://xyz.supabase.co", api_key="anon-key", dry_run=True)


def page(collection, nodes, has_next=False, cursor=None):
    return {
        collection: {
            "edges": [{"node": node} for node in nodes],
            "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
        }
    }


def sent_variables(mock_client, call=-1):
    """Variables of a request sent through the mocked client."""
    request = mock_client.return_value.execute.call_args_list[call].args[0]
    return request.variable_values


# =============================================================================
# Client Setup
# =============================================================================


class TestClient:
    """Tests for the client property."""

    def test_transport(self, store):
        with patch("readlog.storage.RequestsHTTPTransport") as transport:
            store._client = None
            store.client
        kwargs = transport.call_args.kwargs
        assert kwargs["url"] == "https://xyz.supabase.co/graphql/v1"
        assert kwargs["headers"] == {"apiKey": "anon-key", "Authorization": "Bearer jwt"}
        assert kwargs["timeout"] == 30

    def test_anonymous_bearer(self, mock_client):
        with patch("readlog.storage.RequestsHTTPTransport") as transport:
            ReadingStore(url="https://xyz.supabase.co", api_key="anon-key").client
        assert transport.call_args.kwargs["headers"]["Authorization"] == "Bearer anon-key"

    def test_client_reused(self, store, mock_client):
        assert store.client is store.client
        assert mock_client.call_count == 1


class TestErrors:
    """Tests for error translation."""

    def test_query_error_unauthorized(self, store, mock_client):
        mock_client.return_value.execute.side_effect = TransportQueryError("JWT expired")
        with pytest.raises(AuthenticationError):
            store.get_books("u")

    def test_server_error_codes(self, store, mock_client):
        mock_client.return_value.execute.side_effect = TransportServerError("busy", 429)
        with pytest.raises(RateLimitedError):
            store.get_books("u")

        mock_client.return_value.execute.side_effect = TransportServerError("down", 503)
        with pytest.raises(UpstreamUnavailableError):
            store.get_books("u")

    def test_other_error(self, store, mock_client):
        mock_client.return_value.execute.side_effect = RuntimeError("boom")
        with pytest.raises(UpstreamError):
            store.get_books("u")


# =============================================================================
# Read Tests
# =============================================================================


class TestGetBooks:
    """Tests for the get_books method."""

    def test_pagination(self, store, mock_client, book_row):
        """Test that every page is fetched and malformed rows skipped."""
        second = {**book_row, "id": "b2", "title": "Mistborn: The Well of Ascension"}
        mock_client.return_value.execute.side_effect = [
            page("booksCollection", [book_row, {"id": "bad", "title": None, "author": "x"}], True, "c1"),
            page("booksCollection", [second]),
        ]

        books = store.get_books("u")

        assert [b.title for b in books] == ["Mistborn: The Final Empire", "Mistborn: The Well of Ascension"]
        assert sent_variables(mock_client, 0) == {"userId": "u", "after": None}
        assert sent_variables(mock_client, 1) == {"userId": "u", "after": "c1"}

    def test_empty(self, store, mock_client):
        mock_client.return_value.execute.return_value = {"booksCollection": None}
        assert store.get_books("u") == []


class TestGetSeriesBooks:
    """Tests for the get_series_books method."""

    def test_variables(self, store, mock_client, book_row):
        mock_client.return_value.execute.return_value = page("booksCollection", [book_row])
        books = store.get_series_books("u", "Mistborn")
        assert books[0].series_name == "Mistborn"
        assert sent_variables(mock_client) == {"userId": "u", "seriesName": "Mistborn", "after": None}


class TestGetDailyEntries:
    """Tests for the get_daily_entries method."""

    def test_all(self, store, mock_client):
        mock_client.return_value.execute.return_value = page(
            "daily_readingCollection",
            [{"user_id": "u", "book_id": "b", "date": "2024-01-10", "pages_read": 12}],
        )
        entries = store.get_daily_entries("u")
        assert entries[0].date == date(2024, 1, 10)
        assert entries[0].pages_read == 12

    def test_since(self, store, mock_client):
        mock_client.return_value.execute.return_value = page("daily_readingCollection", [])
        store.get_daily_entries("u", since=date(2024, 1, 1))
        assert sent_variables(mock_client)["since"] == "2024-01-01"


class TestGetSettings:
    """Tests for the get_settings method."""

    def test_existing(self, store, mock_client):
        mock_client.return_value.execute.return_value = {
            "user_settingsCollection": {
                "edges": [{"node": {"user_id": "u", "favorite_genres": ["Fantasy"], "reading_goal": 24}}]
            }
        }
        settings = store.get_settings("u")
        assert settings.reading_goal == 24
        assert mock_client.return_value.execute.call_count == 1

    def test_creates_defaults(self, store, mock_client):
        """Test that a missing settings row is created with defaults."""
        mock_client.return_value.execute.side_effect = [
            {"user_settingsCollection": {"edges": []}},
            {"insertIntouser_settingsCollection": {"affectedCount": 1, "records": []}},
        ]
        settings = store.get_settings("u")

        assert settings == UserSettings(user_id="u")
        assert sent_variables(mock_client) == {
            "settings": {"user_id": "u", "favorite_genres": [], "reading_goal": 0}
        }


# =============================================================================
# Write Tests
# =============================================================================


class TestSaveSettings:
    """Tests for the save_settings method."""

    def test_update(self, store, mock_client):
        mock_client.return_value.execute.return_value = {"updateuser_settingsCollection": {"affectedCount": 1}}
        store.save_settings(UserSettings(user_id="u", reading_goal=12))
        assert mock_client.return_value.execute.call_count == 1
        assert sent_variables(mock_client)["set"] == {"favorite_genres": [], "reading_goal": 12}

    def test_insert_when_missing(self, store, mock_client):
        mock_client.return_value.execute.side_effect = [
            {"updateuser_settingsCollection": {"affectedCount": 0}},
            {"insertIntouser_settingsCollection": {"affectedCount": 1}},
        ]
        store.save_settings(UserSettings(user_id="u", reading_goal=12))
        assert mock_client.return_value.execute.call_count == 2

    def test_requires_user(self, store):
        with pytest.raises(ValueError):
            store.save_settings(UserSettings(reading_goal=5))


class TestBookWrites:
    """Tests for book mutations."""

    def test_insert_books(self, store, mock_client, make_book):
        mock_client.return_value.execute.return_value = {"insertIntobooksCollection": {"affectedCount": 2}}
        count = store.insert_books([make_book("A"), make_book("B")])
        assert count == 2
        assert [row["title"] for row in sent_variables(mock_client)["objects"]] == ["A", "B"]

    def test_insert_nothing(self, store, mock_client):
        assert store.insert_books([]) == 0
        mock_client.return_value.execute.assert_not_called()

    def test_update_book_status(self, store, mock_client, make_book):
        mock_client.return_value.execute.return_value = {"updatebooksCollection": {"affectedCount": 1}}
        now = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)
        book = make_book(status="current")

        updated = store.update_book_status(book, "past", now)

        assert updated.status == "past"
        variables = sent_variables(mock_client)
        assert variables["bookId"] == book.id
        assert variables["set"] == {"status": "past", "date_completed": "2024-03-05T09:00:00+00:00"}

    def test_update_book_status_clears_completion(self, store, mock_client, make_book):
        mock_client.return_value.execute.return_value = {"updatebooksCollection": {"affectedCount": 1}}
        book = make_book(status="past", date_completed=datetime(2024, 1, 1, tzinfo=timezone.utc))
        store.update_book_status(book, "planned")
        assert sent_variables(mock_client)["set"] == {"status": "planned", "date_completed": None}

    def test_update_book_status_invalid(self, store, mock_client, make_book):
        with pytest.raises(ValueError):
            store.update_book_status(make_book(), "lost")
        mock_client.return_value.execute.assert_not_called()

    def test_delete_book(self, store, mock_client, make_book):
        mock_client.return_value.execute.return_value = {"deleteFrombooksCollection": {"affectedCount": 1}}
        assert store.delete_book(make_book()) == 1


class TestLogProgress:
    """Tests for the log_progress method."""

    def test_single_request(self, store, mock_client, make_book, user_id):
        """Test that the entry and current_page are written by one mutation."""
        mock_client.return_value.execute.return_value = {}
        book = make_book(current_page=280, total_pages=300)

        update = store.log_progress(book, 50, day=date(2024, 3, 5))

        assert update.new_page == 300
        assert mock_client.return_value.execute.call_count == 1
        variables = sent_variables(mock_client)
        assert variables["currentPage"] == 300
        assert variables["date"] == "2024-03-05"
        assert variables["entry"] == {
            "user_id": user_id,
            "book_id": book.id,
            "date": "2024-03-05",
            "pages_read": 50,
        }

    def test_failure_propagates(self, store, mock_client, make_book):
        mock_client.return_value.execute.side_effect = TransportServerError("down", 502)
        with pytest.raises(UpstreamUnavailableError):
            store.log_progress(make_book(current_page=1), 5)

    def test_negative_pages(self, store, mock_client, make_book):
        with pytest.raises(ValueError):
            store.log_progress(make_book(), -1)
        mock_client.return_value.execute.assert_not_called()


# =============================================================================
# Dry-Run Tests
# =============================================================================


class TestDryRun:
    """Tests for dry-run mode."""

    def test_mutations_logged_not_sent(self, dry_store, mock_client, make_book):
        dry_store.log_progress(make_book(current_page=0), 10, day=date(2024, 3, 5))
        dry_store.update_book_status(make_book(), "current")

        mock_client.return_value.execute.assert_not_called()
        log = dry_store.get_dry_run_log()
        assert [op["operation"] for op in log] == ["log_progress", "update_book"]
        assert log[0]["variables"]["currentPage"] == 10

    def test_reads_still_sent(self, dry_store, mock_client):
        mock_client.return_value.execute.return_value = page("booksCollection", [])
        dry_store.get_books("u")
        mock_client.return_value.execute.assert_called_once()

    def test_clear_log(self, dry_store, make_book):
        dry_store.delete_book(make_book())
        assert len(dry_store.get_dry_run_log()) == 1
        dry_store.clear_dry_run_log()
        assert dry_store.get_dry_run_log() == []


class TestQueries:
    """Sanity checks for the GraphQL documents."""

    def test_progress_mutation_touches_both_tables(self):
        assert "insertIntodaily_readingCollection" in queries.LOG_PROGRESS_MUTATION
        assert "deleteFromdaily_readingCollection" in queries.LOG_PROGRESS_MUTATION
        assert "updatebooksCollection" in queries.LOG_PROGRESS_MUTATION

    def test_since_filter(self):
        assert "gte: $since" in queries.DAILY_READING_SINCE_QUERY
        assert "$since" not in queries.DAILY_READING_QUERY
