"""
readlog command line.

Quick start:
  1. Add READLOG_SUPABASE_URL, READLOG_SUPABASE_KEY and READLOG_ACCESS_TOKEN to .env
  2. readlog stats --user <user-id>
  3. readlog series "Mistborn" "Brandon Sanderson"
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any

from .api import BookSearchAPI, UpstreamError
from .config import READING_STATUSES, STATUS_VALUES, load_prefs
from .insights import (
    LIBRARY_QUERY_PARAMS,
    RECOMMENDATION_PARAMS,
    SIMILAR_BOOKS_PARAMS,
    GenerationParams,
    build_analysis_prompt,
    build_library_query_prompt,
    build_recommendation_prompt,
    build_similar_books_prompt,
    detect_series,
    with_model,
)
from .models import Book
from .series import find_missing_series_books, resolve_series
from .statistics import compute_reading_heatmap, compute_reading_statistics, one_year_before, utc_today
from .storage import ReadingStore

logger = logging.getLogger(__name__)

PROMPT_KINDS = ["analysis", "books", "authors", "similar", "ask"]


def status_value(text: str) -> str:
    """Accept a stored status or its display label, case-insensitively."""
    lowered = text.strip().lower()
    for label, value in STATUS_VALUES.items():
        if lowered in (value, label.lower()):
            return value
    choices = ", ".join(sorted(READING_STATUSES))
    raise argparse.ArgumentTypeError(f"invalid status {text!r} (choose from {choices} or their labels)")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="readlog",
        description="Reading statistics, progress tracking and series tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Reading profile as JSON:
  readlog stats --user 6d1c...

  # Log 30 pages of a book today (preview only):
  readlog --dry-run progress --user 6d1c... <book-id> 30

  # Mark a book as finished, by status or by its label:
  readlog status --user 6d1c... <book-id> "Read"

  # Ask about a library:
  readlog prompt ask --user 6d1c... --query "What should I read next?"

  # Find a series and the books missing from it:
  readlog series "Mistborn" "Brandon Sanderson"
  readlog gaps --user 6d1c... "Mistborn"
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log store writes instead of executing them",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    stats = sub.add_parser("stats", help="Print the reading statistics profile")
    stats.add_argument("--user", required=True, help="User ID")
    stats.add_argument("--months", type=int, default=None, help="Trailing months in monthly stats")

    status = sub.add_parser("status", help="Change a book's reading status")
    status.add_argument("--user", required=True, help="User ID")
    status.add_argument("book_id", help="Book ID")
    status.add_argument(
        "new_status",
        type=status_value,
        help="New status: planned, current or past (or Want to Read, Currently Reading, Read)",
    )

    progress = sub.add_parser("progress", help="Log pages read today")
    progress.add_argument("--user", required=True, help="User ID")
    progress.add_argument("book_id", help="Book ID")
    progress.add_argument("pages", type=int, help="Pages read in this session")

    series = sub.add_parser("series", help="Search for series by name and author")
    series.add_argument("name", help="Series name")
    series.add_argument("author", help="Series author")
    series.add_argument("--limit", type=int, default=None, help="Maximum series to list")

    gaps = sub.add_parser("gaps", help="List books missing from a series in the library")
    gaps.add_argument("--user", required=True, help="User ID")
    gaps.add_argument("name", help="Series name")
    gaps.add_argument("--author", default=None, help="Series author (default: from the library)")
    gaps.add_argument("--limit", type=int, default=None, help="Maximum suggestions")

    detect = sub.add_parser("detect", help="Guess a book's series from its title")
    detect.add_argument("title", help="Book title")
    detect.add_argument("author", help="Book author")

    prompt = sub.add_parser("prompt", help="Print a text-generation prompt for a library")
    prompt.add_argument("kind", choices=PROMPT_KINDS, help="Prompt to build")
    prompt.add_argument("--user", required=True, help="User ID")
    prompt.add_argument("--book", default=None, help="Book ID (for similar)")
    prompt.add_argument("--query", default=None, help="Question (for ask)")

    heatmap = sub.add_parser("heatmap", help="Print daily reading activity for the trailing year")
    heatmap.add_argument("--user", required=True, help="User ID")
    heatmap.add_argument("--active", action="store_true", help="Only list days with reading")

    return parser.parse_args(argv)


def make_store(prefs: dict[str, Any], dry_run: bool = False) -> ReadingStore:
    """
    Build the store client from preferences.

    Raises:
        ValueError: If the store URL or key is not configured.
    """
    if not prefs["supabase_url"] or not prefs["supabase_key"]:
        raise ValueError("READLOG_SUPABASE_URL and READLOG_SUPABASE_KEY must be set")
    return ReadingStore(
        url=prefs["supabase_url"],
        api_key=prefs["supabase_key"],
        access_token=prefs["access_token"] or None,
        timeout=prefs["request_timeout"],
        dry_run=dry_run,
    )


def make_search_api(prefs: dict[str, Any]) -> BookSearchAPI:
    return BookSearchAPI(api_key=prefs["books_api_key"] or None, timeout=prefs["request_timeout"])


def _find_book(store: ReadingStore, user_id: str, book_id: str) -> Book:
    for book in store.get_books(user_id):
        if book.id == book_id:
            return book
    raise ValueError(f"No book {book_id} in the library of user {user_id}")


def _record_summary(record) -> dict[str, Any]:
    return {
        "title": record.title,
        "authors": record.authors,
        "published_date": record.published_date,
        "page_count": record.page_count,
        "thumbnail": record.thumbnail,
    }


# =============================================================================
# Commands
# =============================================================================


def cmd_stats(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    store = make_store(prefs, args.dry_run)
    stats = compute_reading_statistics(
        store.get_books(args.user),
        store.get_daily_entries(args.user),
        store.get_settings(args.user),
        month_count=args.months if args.months is not None else prefs["monthly_window"],
    )
    return stats.to_dict()


def cmd_status(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    store = make_store(prefs, args.dry_run)
    book = _find_book(store, args.user, args.book_id)
    updated = store.update_book_status(book, args.new_status)
    logger.info("%s: %s -> %s", book.title, book.status, updated.status)
    return {
        "id": updated.id,
        "title": updated.title,
        "status": updated.status,
        "date_completed": updated.date_completed.isoformat() if updated.date_completed else None,
    }


def cmd_progress(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    store = make_store(prefs, args.dry_run)
    book = _find_book(store, args.user, args.book_id)
    update = store.log_progress(book, args.pages)
    return {
        "id": book.id,
        "title": book.title,
        "date": update.entry.date.isoformat(),
        "pages_read": update.entry.pages_read,
        "current_page": update.new_page,
        "total_pages": book.total_pages,
    }


def cmd_series(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    api = make_search_api(prefs)
    candidates = api.find_series_candidates(args.name, args.author)
    limit = args.limit if args.limit is not None else prefs["series_result_limit"]
    return [
        {
            "series_name": result.series_name,
            "author": result.author,
            "total_books_estimate": result.total_books_estimate,
            "books": [{"title": b.title, "order": b.order} for b in result.books],
        }
        for result in resolve_series(candidates, limit=limit)
    ]


def cmd_gaps(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    store = make_store(prefs, args.dry_run)
    owned = store.get_series_books(args.user, args.name)
    author = args.author or next((b.author for b in owned), None)
    if not author:
        raise ValueError(f"No books of {args.name!r} in the library; pass --author")

    candidates = make_search_api(prefs).find_series_candidates(args.name, author)
    limit = args.limit if args.limit is not None else prefs["series_gap_limit"]
    missing = find_missing_series_books(owned, candidates, args.name, author, limit)
    return [_record_summary(record) for record in missing]


def cmd_detect(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    detection = detect_series(args.title, args.author)
    return {
        "is_part_of_series": detection.is_part_of_series,
        "series_name": detection.series_name,
        "series_order": detection.series_order,
        "total_books": detection.total_books,
        "confidence": detection.confidence,
    }


def _recently_finished(books: list[Book], limit: int = 20) -> list[Book]:
    finished = [b for b in books if b.status == "past"]
    finished.sort(key=lambda b: b.date_completed.timestamp() if b.date_completed else 0, reverse=True)
    return finished[:limit]


def cmd_prompt(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    if args.kind == "similar" and not args.book:
        raise ValueError("prompt similar needs --book")
    if args.kind == "ask" and not (args.query or "").strip():
        raise ValueError("prompt ask needs --query")

    store = make_store(prefs, args.dry_run)
    books = store.get_books(args.user)
    settings = store.get_settings(args.user)
    model = prefs["llm_model"]

    if args.kind == "analysis":
        stats = compute_reading_statistics(
            books,
            store.get_daily_entries(args.user),
            settings,
            month_count=prefs["monthly_window"],
        )
        params = GenerationParams(
            model=model,
            max_tokens=prefs["llm_max_tokens"],
            temperature=prefs["llm_temperature"],
        )
        prompt = build_analysis_prompt(stats, params)
    elif args.kind == "similar":
        target = next((b for b in books if b.id == args.book), None)
        if target is None:
            raise ValueError(f"No book {args.book} in the library of user {args.user}")
        prompt = build_similar_books_prompt(
            target,
            _recently_finished(books),
            settings,
            params=with_model(SIMILAR_BOOKS_PARAMS, model),
        )
    elif args.kind == "ask":
        newest_first = sorted(
            books, key=lambda b: b.date_added.timestamp() if b.date_added else 0, reverse=True
        )
        recent = store.get_daily_entries(args.user)[:30]
        prompt = build_library_query_prompt(
            args.query,
            newest_first,
            settings,
            recent,
            params=with_model(LIBRARY_QUERY_PARAMS, model),
        )
    else:
        prompt = build_recommendation_prompt(
            _recently_finished(books),
            settings,
            kind=args.kind,
            params=with_model(RECOMMENDATION_PARAMS, model),
        )

    return {
        "system": prompt.system,
        "user": prompt.user,
        "model": prompt.params.model,
        "max_tokens": prompt.params.max_tokens,
        "temperature": prompt.params.temperature,
    }


def cmd_heatmap(args: argparse.Namespace, prefs: dict[str, Any]) -> Any:
    store = make_store(prefs, args.dry_run)
    today = utc_today()
    entries = store.get_daily_entries(args.user, since=one_year_before(today))
    cells = compute_reading_heatmap(entries, today)
    if args.active:
        cells = [c for c in cells if c.count > 0]
    return [asdict(c) for c in cells]


COMMANDS = {
    "stats": cmd_stats,
    "status": cmd_status,
    "progress": cmd_progress,
    "series": cmd_series,
    "gaps": cmd_gaps,
    "detect": cmd_detect,
    "prompt": cmd_prompt,
    "heatmap": cmd_heatmap,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        prefs = load_prefs()
        result = COMMANDS[args.command](args, prefs)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except UpstreamError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
