"""
Book metadata search client for readlog.

This module provides the typed failures shared by every upstream
collaborator and the BookSearchAPI class for the public book-metadata
search API (Google Books volumes endpoint).
"""

import logging
from typing import Any

import requests

from .models import BookSearchRecord

logger = logging.getLogger(__name__)

# API Configuration
API_URL = "https://www.googleapis.com/books/v1/volumes"
DEFAULT_TIMEOUT = 30  # seconds
MAX_RESULTS = 40  # per-request cap imposed by the API


class UpstreamError(Exception):
    """Base exception for failures of an upstream service."""

    pass


class AuthenticationError(UpstreamError):
    """Raised when credentials are missing, invalid or rejected."""

    pass


class RateLimitedError(UpstreamError):
    """Raised when the upstream rate limit is exceeded."""

    pass


class UpstreamUnavailableError(UpstreamError):
    """Raised when the upstream cannot be reached or is failing."""

    pass


def classify_error(message: str, status_code: int | None = None) -> type[UpstreamError]:
    """
    Pick the exception class for an upstream failure.

    Args:
        message: The error text reported by the transport or service.
        status_code: HTTP status, if known.

    Returns:
        The UpstreamError subclass to raise.
    """
    if status_code in (401, 403):
        return AuthenticationError
    if status_code == 429:
        return RateLimitedError
    if status_code is not None and status_code >= 500:
        return UpstreamUnavailableError

    lower = message.lower()
    if "unauthorized" in lower or "api key" in lower or "jwt" in lower:
        return AuthenticationError
    if "rate limit" in lower or "too many requests" in lower:
        return RateLimitedError
    return UpstreamError


def series_queries(series_name: str, author: str) -> list[str]:
    """Search queries used to find the books of a series, broadest match first."""
    return [
        f'"{series_name}" inauthor:"{author}"',
        f'"{series_name}" "{author}"',
        f'intitle:"{series_name}" inauthor:"{author}"',
    ]


class BookSearchAPI:
    """
    Client for the book-metadata search API.

    Usage:
        api = BookSearchAPI()
        for record in api.search("mistborn"):
            print(record.title, record.authors)
    """

    def __init__(
        self,
        api_key: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        """
        Initialize the API client.

        Args:
            api_key: Optional API key (anonymous requests have lower quotas).
            timeout: Request timeout in seconds (default 30).
            session: Optional pre-built requests session.
        """
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Get or create the HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a volumes request.

        Args:
            params: Query string parameters.

        Returns:
            The decoded JSON body.

        Raises:
            AuthenticationError: If the API key is rejected.
            RateLimitedError: If the quota is exhausted.
            UpstreamUnavailableError: On timeouts, connection errors and 5xx.
            UpstreamError: For other API errors.
        """
        if self.api_key:
            params = {**params, "key": self.api_key}
        try:
            response = self.session.get(API_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.Timeout, requests.ConnectionError) as e:
            raise UpstreamUnavailableError(f"Book search unreachable: {e}") from e
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            error_class = classify_error(str(e), status)
            raise error_class(f"Book search failed ({status}): {e}") from e
        except requests.RequestException as e:
            raise UpstreamError(f"Request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Invalid response from book search: {e}") from e

    def search(
        self,
        query: str,
        max_results: int = MAX_RESULTS,
        order_by: str = "relevance",
    ) -> list[BookSearchRecord]:
        """
        Search for books.

        Args:
            query: The search query (supports intitle:/inauthor: operators).
            max_results: Number of results to request (capped at 40).
            order_by: "relevance" or "newest".

        Returns:
            Records that have both a title and an author.
        """
        data = self._get(
            {
                "q": query,
                "maxResults": max(1, min(max_results, MAX_RESULTS)),
                "orderBy": order_by,
            }
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []

        records = []
        for item in items:
            if not isinstance(item, dict):
                continue
            record = BookSearchRecord.from_dict(item)
            if record.is_usable:
                records.append(record)
        return records

    def find_page_count(self, title: str, author: str) -> int | None:
        """
        Look up the page count for a title/author pair.

        Returns:
            The page count of the best match, or None if unknown.
        """
        records = self.search(f"intitle:{title} inauthor:{author}", max_results=1)
        for record in records:
            if record.page_count:
                return record.page_count
        return None

    def find_series_candidates(
        self,
        series_name: str,
        author: str,
        max_results: int = 20,
    ) -> list[BookSearchRecord]:
        """
        Collect candidate books for a series across several queries.

        A failing query is logged and skipped; the error is raised only if
        every query fails. Records repeated across queries (same title and
        first author) are returned once.

        Args:
            series_name: The series name.
            author: The series author.
            max_results: Results per query.

        Returns:
            Candidate records in the order they were found.

        Raises:
            UpstreamError: If every query failed (the last error).
        """
        records: list[BookSearchRecord] = []
        seen = set()
        last_error: UpstreamError | None = None
        succeeded = 0

        for query in series_queries(series_name, author):
            try:
                results = self.search(query, max_results=max_results)
            except UpstreamError as e:
                logger.warning("Series search query %r failed: %s", query, e)
                last_error = e
                continue
            succeeded += 1
            for record in results:
                key = (record.title, record.primary_author)
                if key in seen:
                    continue
                seen.add(key)
                records.append(record)

        if not succeeded and last_error is not None:
            raise last_error
        return records
