"""
Reading store client for readlog.

This module provides the ReadingStore class for reading and writing a
user's books, daily reading entries and settings through the store's
GraphQL endpoint.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

import requests
from gql import Client, gql
from gql.graphql_request import GraphQLRequest
from gql.transport.exceptions import TransportQueryError, TransportServerError
from gql.transport.requests import RequestsHTTPTransport

from . import queries
from .api import (
    DEFAULT_TIMEOUT,
    UpstreamError,
    UpstreamUnavailableError,
    classify_error,
)
from .models import Book, DailyReadingEntry, UserSettings, parse_rows
from .tracking import ProgressUpdate, change_status, plan_progress_update

logger = logging.getLogger(__name__)

GRAPHQL_PATH = "/graphql/v1"


class ReadingStore:
    """
    Client for the reading store.

    Usage:
        store = ReadingStore(url="https://xyz.supabase.co", api_key="anon-key",
                             access_token=session_jwt)
        books = store.get_books(user_id)

    Dry-run mode:
        store = ReadingStore(url, api_key, dry_run=True)
        # Mutations will be logged but not executed
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        dry_run: bool = False,
    ):
        """
        Initialize the store client.

        Args:
            url: The project URL (the GraphQL path is appended).
            api_key: The project API key.
            access_token: The user's session token; row-level security uses
                          it to scope every query to that user.
            timeout: Request timeout in seconds (default 30).
            dry_run: If True, mutations are logged but not executed.
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.dry_run = dry_run
        self._client: Client | None = None
        self._dry_run_log: list[dict] = []

    @property
    def client(self) -> Client:
        """Get or create the GraphQL client."""
        if self._client is None:
            transport = RequestsHTTPTransport(
                url=self.url + GRAPHQL_PATH,
                headers={
                    "apiKey": self.api_key,
                    "Authorization": f"Bearer {self.access_token or self.api_key}",
                },
                timeout=self.timeout,
            )
            self._client = Client(transport=transport, fetch_schema_from_transport=False)
        return self._client

    def _execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Execute a GraphQL operation.

        Args:
            query: The GraphQL document.
            variables: Optional variables.

        Returns:
            The result data.

        Raises:
            AuthenticationError: If the key or session token is rejected.
            RateLimitedError: If the rate limit is exceeded.
            UpstreamUnavailableError: If the store cannot be reached.
            UpstreamError: For other store errors.
        """
        try:
            request = GraphQLRequest(gql(query), variable_values=variables)
            return self.client.execute(request)
        except TransportQueryError as e:
            raise classify_error(str(e))(f"Store error: {e}") from e
        except TransportServerError as e:
            error_class = classify_error(str(e), e.code)
            raise error_class(f"Store request failed ({e.code}): {e}") from e
        except (requests.Timeout, requests.ConnectionError) as e:
            raise UpstreamUnavailableError(f"Store unreachable: {e}") from e
        except Exception as e:
            raise UpstreamError(f"Request failed: {e}") from e

    def _execute_mutation(
        self,
        mutation: str,
        variables: dict[str, Any],
        operation_name: str,
        dry_run_result: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Execute a GraphQL mutation with dry-run support.

        In dry-run mode, the mutation is logged but not executed.

        Args:
            mutation: The GraphQL mutation string.
            variables: Mutation variables.
            operation_name: Human-readable name for logging.
            dry_run_result: Mock result to return in dry-run mode.

        Returns:
            The mutation result (real or mocked).
        """
        if self.dry_run:
            logger.info("Dry run: skipping %s", operation_name)
            self._dry_run_log.append(
                {
                    "operation": operation_name,
                    "variables": variables,
                    "would_execute": mutation[:100] + "..." if len(mutation) > 100 else mutation,
                }
            )
            return dry_run_result

        return self._execute(mutation, variables)

    def get_dry_run_log(self) -> list[dict]:
        """
        Get the log of operations that would have been performed in dry-run mode.

        Returns:
            List of operation dictionaries with keys: operation, variables, would_execute
        """
        return self._dry_run_log.copy()

    def clear_dry_run_log(self):
        """Clear the dry-run log."""
        self._dry_run_log = []

    def _fetch_all(self, query: str, variables: dict[str, Any], collection: str) -> list[dict]:
        """
        Fetch every node of a collection, following pagination cursors.

        Args:
            query: A collection query taking an $after cursor.
            variables: Query variables (without the cursor).
            collection: Name of the collection field in the result.

        Returns:
            The node dicts of all pages.
        """
        nodes = []
        cursor = None
        while True:
            result = self._execute(query, {**variables, "after": cursor})
            data = result.get(collection) or {}
            nodes.extend(edge["node"] for edge in data.get("edges", []) if edge.get("node"))

            page_info = data.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor:
                return nodes

    # =========================================================================
    # Read Methods
    # =========================================================================

    def get_books(self, user_id: str) -> list[Book]:
        """
        Get every book in a user's library.

        Rows missing an id, title or author are skipped.
        """
        rows = self._fetch_all(queries.BOOKS_QUERY, {"userId": user_id}, "booksCollection")
        return parse_rows(rows, Book.from_dict)

    def get_series_books(self, user_id: str, series_name: str) -> list[Book]:
        """Get a user's books in one series, by series order."""
        rows = self._fetch_all(
            queries.SERIES_BOOKS_QUERY,
            {"userId": user_id, "seriesName": series_name},
            "booksCollection",
        )
        return parse_rows(rows, Book.from_dict)

    def get_daily_entries(self, user_id: str, since: date | None = None) -> list[DailyReadingEntry]:
        """
        Get a user's daily reading entries, newest first.

        Args:
            user_id: The user ID.
            since: Only return entries on or after this day.
        """
        if since is None:
            query, variables = queries.DAILY_READING_QUERY, {"userId": user_id}
        else:
            query = queries.DAILY_READING_SINCE_QUERY
            variables = {"userId": user_id, "since": since.isoformat()}
        rows = self._fetch_all(query, variables, "daily_readingCollection")
        return parse_rows(rows, DailyReadingEntry.from_dict)

    def get_settings(self, user_id: str) -> UserSettings:
        """
        Get a user's settings, creating the defaults row on first access.

        Returns:
            The stored settings, or the newly created defaults.
        """
        result = self._execute(queries.USER_SETTINGS_QUERY, {"userId": user_id})
        edges = (result.get("user_settingsCollection") or {}).get("edges", [])
        if edges:
            return UserSettings.from_dict(edges[0].get("node"))

        logger.info("Creating default settings for user %s", user_id)
        defaults = UserSettings(user_id=user_id)
        self._insert_settings(defaults)
        return defaults

    # =========================================================================
    # Write Methods
    # =========================================================================

    def _insert_settings(self, settings: UserSettings) -> None:
        self._execute_mutation(
            queries.INSERT_USER_SETTINGS_MUTATION,
            {
                "settings": {
                    "user_id": settings.user_id,
                    "favorite_genres": settings.favorite_genres,
                    "reading_goal": settings.reading_goal,
                }
            },
            operation_name="insert_settings",
            dry_run_result={"insertIntouser_settingsCollection": {"affectedCount": 1, "records": []}},
        )

    def save_settings(self, settings: UserSettings) -> UserSettings:
        """
        Upsert a user's settings.

        Raises:
            ValueError: If the settings have no user_id.
        """
        if not settings.user_id:
            raise ValueError("Settings must have a user_id")

        result = self._execute_mutation(
            queries.UPDATE_USER_SETTINGS_MUTATION,
            {
                "userId": settings.user_id,
                "set": {
                    "favorite_genres": settings.favorite_genres,
                    "reading_goal": settings.reading_goal,
                },
            },
            operation_name="update_settings",
            dry_run_result={"updateuser_settingsCollection": {"affectedCount": 1, "records": []}},
        )
        updated = (result.get("updateuser_settingsCollection") or {}).get("affectedCount", 0)
        if not updated:
            self._insert_settings(settings)
        return settings

    def insert_books(self, books: Iterable[Book]) -> int:
        """
        Add books to a library.

        Returns:
            Number of rows inserted.
        """
        rows = [book.to_row() for book in books]
        if not rows:
            return 0
        result = self._execute_mutation(
            queries.INSERT_BOOKS_MUTATION,
            {"objects": rows},
            operation_name="insert_books",
            dry_run_result={"insertIntobooksCollection": {"affectedCount": len(rows)}},
        )
        return (result.get("insertIntobooksCollection") or {}).get("affectedCount", 0)

    def update_book(self, book: Book, fields: dict[str, Any]) -> int:
        """
        Update columns of a stored book.

        Args:
            book: The book (its id and user_id select the row).
            fields: Column -> new value.

        Returns:
            Number of rows updated (0 or 1).
        """
        result = self._execute_mutation(
            queries.UPDATE_BOOK_MUTATION,
            {"userId": book.user_id, "bookId": book.id, "set": fields},
            operation_name="update_book",
            dry_run_result={"updatebooksCollection": {"affectedCount": 1}},
        )
        return (result.get("updatebooksCollection") or {}).get("affectedCount", 0)

    def update_book_status(self, book: Book, new_status: str, now: datetime | None = None) -> Book:
        """
        Change a book's status and store it.

        Returns:
            The updated book.

        Raises:
            ValueError: If new_status is not a known status.
        """
        updated = change_status(book, new_status, now)
        self.update_book(
            book,
            {
                "status": updated.status,
                "date_completed": (
                    updated.date_completed.isoformat() if updated.date_completed else None
                ),
            },
        )
        return updated

    def delete_book(self, book: Book) -> int:
        """Delete a book from its owner's library."""
        result = self._execute_mutation(
            queries.DELETE_BOOK_MUTATION,
            {"userId": book.user_id, "bookId": book.id},
            operation_name="delete_book",
            dry_run_result={"deleteFrombooksCollection": {"affectedCount": 1}},
        )
        return (result.get("deleteFrombooksCollection") or {}).get("affectedCount", 0)

    def apply_progress_update(self, update: ProgressUpdate) -> None:
        """
        Store a progress update as one transaction.

        The day's entry is replaced and current_page is written by a single
        mutation request, so either both land or neither does.
        """
        entry = update.entry
        self._execute_mutation(
            queries.LOG_PROGRESS_MUTATION,
            {
                "userId": entry.user_id,
                "bookId": entry.book_id,
                "date": entry.date.isoformat(),
                "entry": entry.to_row(),
                "currentPage": update.new_page,
            },
            operation_name="log_progress",
            dry_run_result={
                "deleteFromdaily_readingCollection": {"affectedCount": 0},
                "insertIntodaily_readingCollection": {"affectedCount": 1},
                "updatebooksCollection": {"affectedCount": 1},
            },
        )

    def log_progress(
        self,
        book: Book,
        pages_read: int,
        day: date | None = None,
    ) -> ProgressUpdate:
        """
        Log pages read for a book today.

        Args:
            book: The book being read.
            pages_read: Pages read in this session.
            day: Day to log against (default: the current UTC day).

        Returns:
            The applied ProgressUpdate.

        Raises:
            ValueError: If pages_read is negative or the book has no user_id.
        """
        update = plan_progress_update(book, pages_read, day=day)
        self.apply_progress_update(update)
        return update
