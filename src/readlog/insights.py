"""
Text-generation helpers for readlog.

This module assembles prompts for the hosted text-generation service and
post-processes its replies:
- Reading analysis from a ReadingStatistics profile
- Book and author recommendations from a reading history
- Books similar to one book, and free-form questions about a library
- Series detection for a single book, with the title heuristic as fallback

The service itself is reached through a caller-supplied ``complete``
function, so nothing here performs I/O.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from .models import Book, DailyReadingEntry, SeriesDetection, UserSettings, parse_order
from .series import fallback_series_detection
from .statistics import (
    ReadingStatistics,
    compute_author_stats,
    compute_core_counts,
    compute_genre_distribution,
    compute_reading_activity,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"

# Reasoning blocks some models emit before their answer
REASONING_PATTERN = re.compile(r"<(think|thinking|reasoning)>.*?</\1>", re.IGNORECASE | re.DOTALL)
UNCLOSED_REASONING_PATTERN = re.compile(r"^\s*<(think|thinking|reasoning)>.*", re.IGNORECASE | re.DOTALL)
CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.IGNORECASE | re.DOTALL)

RECOMMENDATION_KINDS = ("books", "authors")


@dataclass(frozen=True)
class GenerationParams:
    """Generation settings sent along with a prompt."""

    model: str = DEFAULT_MODEL
    max_tokens: int = 1000
    temperature: float = 0.7


ANALYSIS_PARAMS = GenerationParams(max_tokens=2000, temperature=0.7)
RECOMMENDATION_PARAMS = GenerationParams(max_tokens=1000, temperature=0.7)
SERIES_DETECTION_PARAMS = GenerationParams(max_tokens=200, temperature=0.1)
SIMILAR_BOOKS_PARAMS = GenerationParams(max_tokens=1500, temperature=0.7)
LIBRARY_QUERY_PARAMS = GenerationParams(max_tokens=1500, temperature=0.7)

# Books listed by title in a library question
LIBRARY_QUERY_BOOK_LIMIT = 30


@dataclass
class Prompt:
    """A prompt ready to send to the text-generation service."""

    user: str
    system: str | None = None
    params: GenerationParams = ANALYSIS_PARAMS


# Sends a prompt and returns the reply text; raises UpstreamError subclasses
CompleteFn = Callable[[Prompt], str]


def strip_reasoning(text: str | None) -> str:
    """
    Remove reasoning blocks (<think>...</think> and similar) from a reply.

    A reasoning block that is opened but never closed swallows the rest of
    the reply, leaving an empty answer.
    """
    if not text:
        return ""
    cleaned = REASONING_PATTERN.sub("", text)
    cleaned = UNCLOSED_REASONING_PATTERN.sub("", cleaned)
    return cleaned.strip()


# =============================================================================
# Reading Analysis
# =============================================================================

ANALYSIS_SYSTEM_PROMPT = (
    "You are an experienced reading coach who is good with data. Study the "
    "reader's statistics and give specific, encouraging and honest insights "
    "that help them read more and enjoy it more. Ground every observation in "
    "the numbers you are given."
)


def _bullets(lines: Iterable[str], empty: str = "- (none yet)") -> str:
    lines = list(lines)
    return "\n".join(lines) if lines else empty


def build_analysis_prompt(
    stats: ReadingStatistics,
    params: GenerationParams | None = None,
) -> Prompt:
    """
    Build the reading-analysis prompt from a statistics profile.

    Goal progress is reported unclamped so the model can see when a reader
    is ahead of their goal.
    """
    counts = stats.counts
    goal = stats.goal
    activity = stats.activity
    pace = stats.pace

    genres = _bullets(
        f"- {genre}: {share.count} books ({share.percentage}%)"
        for genre, share in list(stats.genre_distribution.items())[:8]
    )
    authors = _bullets(
        f"- {author}: {count} books" for author, count in list(stats.author_stats.items())[:5]
    )
    series = _bullets(
        f"- {name}: {progress.completed}/{progress.total} books ({progress.percentage}%)"
        for name, progress in list(stats.series_progress.items())[:5]
    )
    months = _bullets(
        f"- {month.label}: {month.books} books, {month.pages} pages" for month in stats.monthly_stats
    )

    if pace.fastest_book:
        fastest = f"{pace.fastest_book.title} ({pace.fastest_book.days} days)"
    else:
        fastest = "n/a"
    average_days = pace.average_days_per_book if pace.average_days_per_book is not None else "n/a"
    lengths = stats.books_by_length

    user = f"""Here are a reader's statistics. Analyze their reading habits.

LIBRARY:
- Total books: {counts.total}
- Completed: {counts.completed}
- Currently reading: {counts.current}
- Planned: {counts.planned}
- Completion rate: {counts.completion_rate}%

YEARLY GOAL:
- Goal: {goal.goal} books
- Finished this year: {goal.books_this_year} (last year: {goal.books_last_year})
- Goal progress: {goal.progress_raw}%

ACTIVITY:
- Active days: {activity.active_days}
- Pages read: {activity.total_pages_read}
- Average pages per active day: {activity.average_pages_per_day}
- Longest streak: {stats.streaks.longest_streak} days
- Current streak: {stats.streaks.current_streak} days

GENRES:
{genres}

MOST-READ AUTHORS:
{authors}

SERIES:
{series}

MONTH BY MONTH:
{months}

PACE:
- Fastest book: {fastest}
- Average days per book: {average_days}
- By length: short {lengths.short}, medium {lengths.medium}, long {lengths.long}

Cover, in clearly headed sections:
1. Patterns in how and when they read
2. Strengths
3. Areas to improve
4. Genre diversity
5. Whether they are on track for their goal
6. Consistency
7. Three to five concrete recommendations
8. Two or three reading challenges to try"""

    return Prompt(user=user, system=ANALYSIS_SYSTEM_PROMPT, params=params or ANALYSIS_PARAMS)


# =============================================================================
# Recommendations
# =============================================================================

RECOMMENDATION_SYSTEM_PROMPT = (
    "You recommend books. Connect each suggestion to the reader's history: "
    "the genres they favour, the authors they enjoyed and the books they "
    "marked as favourites."
)


def _history_line(book: Book) -> str:
    genres = ", ".join(book.genres) if book.genres else "no genre"
    favorite = " - marked as favorite" if book.favorite else ""
    return f'- "{book.title}" by {book.author} ({genres}){favorite}'


def build_recommendation_prompt(
    history: Iterable[Book],
    settings: UserSettings | None,
    kind: str = "books",
    params: GenerationParams | None = None,
) -> Prompt:
    """
    Build a recommendation prompt.

    Args:
        history: Recently finished books, newest first.
        settings: The reader's settings (favorite genres, goal).
        kind: "books" or "authors".
        params: Generation settings (default RECOMMENDATION_PARAMS).

    Raises:
        ValueError: If kind is not a known recommendation kind.
    """
    if kind not in RECOMMENDATION_KINDS:
        raise ValueError(f"Unknown recommendation kind: {kind!r}")

    settings = settings or UserSettings()
    history_text = _bullets((_history_line(b) for b in history), empty="- (no finished books yet)")
    favorite_genres = ", ".join(settings.favorite_genres) or "none given"

    if kind == "books":
        user = f"""Suggest 5 books this reader would enjoy.

Reading history:
{history_text}

Favorite genres: {favorite_genres}
Reading goal: {settings.reading_goal} books per year

Use exactly this format:
1. [Title] by [Author]
   Genre(s): [genres]
   Why you'll love it: [2-3 sentences tied to their reading history]

Keep the list varied but relevant, and weigh favorites and preferred genres."""
    else:
        user = f"""Suggest 5 authors this reader would enjoy.

Reading history:
{history_text}

Favorite genres: {favorite_genres}

Use exactly this format:
1. [Author Name]
   Known for: [2-3 notable works]
   Why you'll enjoy their writing: [2-3 sentences tied to their preferences]
   Start with: [one specific book]

Prefer authors writing in their favorite genres with a style close to the books they loved."""

    return Prompt(user=user, system=RECOMMENDATION_SYSTEM_PROMPT, params=params or RECOMMENDATION_PARAMS)


SIMILAR_BOOKS_SYSTEM_PROMPT = (
    "You recommend books. Given one book and the reader's history, suggest "
    "books with similar themes, writing style, genres or authors, mixing "
    "popular picks with lesser-known ones."
)


def _series_tag(book: Book) -> str:
    if not book.series_name:
        return ""
    order = book.series_order if book.series_order is not None else "?"
    return f"{book.series_name} #{order}"


def build_similar_books_prompt(
    book: Book,
    history: Iterable[Book],
    settings: UserSettings | None,
    params: GenerationParams | None = None,
) -> Prompt:
    """
    Build the prompt asking for books similar to one book.

    Args:
        book: The book to find neighbours for.
        history: Recently finished books, newest first. The target book
                 itself is left out.
        settings: The reader's settings (favorite genres).
        params: Generation settings (default SIMILAR_BOOKS_PARAMS).
    """
    settings = settings or UserSettings()
    history_text = _bullets(
        (_history_line(b) for b in history if b.id != book.id),
        empty="- (no finished books yet)",
    )
    details = [
        f'Title: "{book.title}"',
        f"Author: {book.author}",
        f"Genres: {', '.join(book.genres) or 'not specified'}",
    ]
    if book.series_name:
        details.append(f"Series: {_series_tag(book)}")
    details_text = "\n".join(details)
    favorite_genres = ", ".join(settings.favorite_genres) or "none given"

    user = f"""Suggest 8 to 10 books similar to this one.

TARGET BOOK:
{details_text}

READING HISTORY:
{history_text}

FAVORITE GENRES: {favorite_genres}

Use exactly this format:
1. [Title] by [Author]
   Genres: [genres]
   Why it's similar: [2-3 sentences tied to the target book]
   Match score: [1-10]

Look for shared themes, mood and writing style, related genres and authors
with a comparable approach. Mix well-known books with lesser-known ones,
and leave out anything already in the reading history."""

    return Prompt(user=user, system=SIMILAR_BOOKS_SYSTEM_PROMPT, params=params or SIMILAR_BOOKS_PARAMS)


# =============================================================================
# Library Questions
# =============================================================================

LIBRARY_QUERY_SYSTEM_PROMPT = (
    "You are a reading assistant with access to the reader's whole library "
    "and recent activity. Answer their question conversationally, refer to "
    "books they actually own or have read, and make specific suggestions."
)


def _library_line(book: Book) -> str:
    genres = ", ".join(book.genres) if book.genres else "no genre"
    favorite = " - favorite" if book.favorite else ""
    series = f" [{_series_tag(book)}]" if book.series_name else ""
    return f'- "{book.title}" by {book.author} ({genres}) - {book.status}{favorite}{series}'


def build_library_query_prompt(
    query: str,
    books: Iterable[Book],
    settings: UserSettings | None,
    recent_entries: Iterable[DailyReadingEntry] = (),
    params: GenerationParams | None = None,
) -> Prompt:
    """
    Build the prompt answering a free-form question about a library.

    Args:
        query: The reader's question.
        books: The whole library, most recently added first. Only the
               first LIBRARY_QUERY_BOOK_LIMIT are listed by title.
        settings: The reader's settings (favorite genres, goal).
        recent_entries: Recent daily reading entries, for the activity line.
        params: Generation settings (default LIBRARY_QUERY_PARAMS).

    Raises:
        ValueError: If the query is empty.
    """
    if not query or not query.strip():
        raise ValueError("A question is required")

    books = list(books)
    settings = settings or UserSettings()
    counts = compute_core_counts(books)
    activity = compute_reading_activity(recent_entries)

    listed = books[:LIBRARY_QUERY_BOOK_LIMIT]
    library = _bullets((_library_line(b) for b in listed), empty="- (empty library)")
    if len(books) > len(listed):
        library += f"\n... and {len(books) - len(listed)} more books"

    favorites = _bullets(
        f'- "{b.title}" by {b.author}' for b in [b for b in books if b.favorite][:10]
    )
    genres = _bullets(
        f"- {genre}: {share.count} books"
        for genre, share in list(compute_genre_distribution(books).items())[:5]
    )
    authors = _bullets(
        f"- {author}: {count} books" for author, count in list(compute_author_stats(books).items())[:5]
    )
    favorite_genres = ", ".join(settings.favorite_genres) or "none given"
    status = "active" if activity.active_days else "inactive"

    user = f"""Question: "{query.strip()}"

READER PROFILE:
- Total books: {counts.total}
- Completed: {counts.completed}, currently reading: {counts.current}, planned: {counts.planned}
- Reading goal: {settings.reading_goal} books per year
- Favorite genres: {favorite_genres}
- Recent activity: {status} ({activity.average_pages_per_day} pages per reading day)

LIBRARY:
{library}

FAVORITE BOOKS:
{favorites}

GENRES:
{genres}

TOP AUTHORS:
{authors}

Answer the question using this library. When recommending, suggest 5 to 8
specific books; when asked about habits, give concrete observations."""

    return Prompt(user=user, system=LIBRARY_QUERY_SYSTEM_PROMPT, params=params or LIBRARY_QUERY_PARAMS)

# =============================================================================
# Series Detection
# =============================================================================


def build_series_detection_prompt(
    title: str,
    author: str,
    description: str | None = None,
    published_date: str | None = None,
    params: GenerationParams | None = None,
) -> Prompt:
    """Build the prompt asking whether a book belongs to a series."""
    details = [f'Title: "{title}"', f"Author: {author}"]
    if description:
        details.append(f"Description: {description[:500]}...")
    if published_date:
        details.append(f"Published: {published_date}")
    details_text = "\n".join(details)

    user = f"""Decide whether this book is part of a series.

{details_text}

Reply with ONLY a JSON object with these keys:
- isPartOfSeries: boolean
- seriesName: string, the series name without numbering ("Harry Potter", not "Harry Potter Book 1")
- seriesOrder: number, the book's position (decimals such as 1.5 are allowed for novellas)
- totalBooks: number of books in the series, or null if unknown
- confidence: number from 0 to 1

Examples:
- "Harry Potter and the Order of the Phoenix" -> {{"isPartOfSeries": true, "seriesName": "Harry Potter", "seriesOrder": 5, "totalBooks": 7, "confidence": 0.95}}
- "The Fellowship of the Ring" -> {{"isPartOfSeries": true, "seriesName": "The Lord of the Rings", "seriesOrder": 1, "totalBooks": 3, "confidence": 0.9}}
- "To Kill a Mockingbird" -> {{"isPartOfSeries": false, "seriesName": null, "seriesOrder": null, "totalBooks": null, "confidence": 0.95}}

Take into account well-known series, the author's other books in the same world, numbering in the title or subtitle, and prequels or spin-offs."""

    return Prompt(user=user, params=params or SERIES_DETECTION_PARAMS)


def parse_series_detection(text: str | None) -> SeriesDetection:
    """
    Parse the series-detection reply.

    Reasoning blocks and code fences are removed first. Missing or falsy
    fields are treated as absent and confidence is clamped to 0-1.

    Raises:
        ValueError: If the reply is not a JSON object with a boolean
                    isPartOfSeries.
    """
    cleaned = strip_reasoning(text)
    fenced = CODE_FENCE_PATTERN.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)

    data = json.loads(cleaned)
    if not isinstance(data, dict) or not isinstance(data.get("isPartOfSeries"), bool):
        raise ValueError("Invalid series detection response format")

    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    total = parse_order(data.get("totalBooks"))

    return SeriesDetection(
        is_part_of_series=data["isPartOfSeries"],
        series_name=data.get("seriesName") or None,
        series_order=parse_order(data.get("seriesOrder")) or None,
        total_books=int(total) if total else None,
        confidence=min(max(confidence, 0.0), 1.0),
    )


def detect_series(
    title: str,
    author: str,
    description: str | None = None,
    published_date: str | None = None,
    complete: CompleteFn | None = None,
    params: GenerationParams | None = None,
) -> SeriesDetection:
    """
    Detect whether a book belongs to a series.

    Asks the text-generation service when ``complete`` is given, and falls
    back to the title heuristic when it is not or when the call or the
    parsing fails.

    Args:
        title: The book title.
        author: The book author.
        description: Optional blurb.
        published_date: Optional publication date.
        complete: Function that sends a Prompt and returns the reply text.
        params: Generation settings (default SERIES_DETECTION_PARAMS).

    Returns:
        SeriesDetection from the service or from the fallback heuristic.
    """
    if complete is None:
        return fallback_series_detection(title)

    prompt = build_series_detection_prompt(title, author, description, published_date, params)
    try:
        return parse_series_detection(complete(prompt))
    except Exception as e:
        logger.warning("Series detection failed for %r, using title heuristic: %s", title, e)
        return fallback_series_detection(title)


def with_model(params: GenerationParams, model: str | None) -> GenerationParams:
    """Copy of params using a different model, if one is given."""
    return replace(params, model=model) if model else params
