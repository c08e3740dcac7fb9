"""
Reading statistics for readlog.

This module derives a reading profile from a snapshot of a user's books,
daily reading entries and settings:
- Core counts and completion rate
- Yearly goal progress
- Reading streaks and activity
- Genre, author and series distributions
- Monthly trends, reading pace and book-length buckets
- A day-by-day activity heatmap over the trailing year

Every function is pure. Empty input gives zeros, None or empty collections,
never an exception. Calendar days and years are taken in UTC throughout.
"""

import math
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from .models import Book, DailyReadingEntry, UserSettings, parse_date, parse_rows, parse_timestamp


# Page-count thresholds for length buckets
SHORT_BOOK_PAGES = 250
LONG_BOOK_PAGES = 500

# Pages-per-day upper bounds for heatmap levels 1-3; anything above is level 4
HEATMAP_THRESHOLDS = (10, 25, 50)

DEFAULT_MONTH_COUNT = 6

SECONDS_PER_DAY = 86400

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 -> 3)."""
    return math.floor(value + 0.5)


def percentage(part: float, whole: float) -> int:
    """Whole-number percentage of part in whole; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def utc_today() -> date:
    """The current calendar day in UTC."""
    return datetime.now(timezone.utc).date()


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class CoreCounts:
    """Library size by status."""

    total: int = 0
    completed: int = 0
    current: int = 0
    planned: int = 0
    completion_rate: int = 0  # percent


@dataclass
class GoalProgress:
    """Progress toward the yearly reading goal.

    Attributes:
        progress: Percentage clamped to 0-100, for display.
        progress_raw: Unclamped percentage, for pace projections.
    """

    goal: int = 0
    books_this_year: int = 0
    books_last_year: int = 0
    progress: int = 0
    progress_raw: int = 0


@dataclass
class Streaks:
    """Consecutive-day reading streaks."""

    longest_streak: int = 0
    current_streak: int = 0


@dataclass
class ReadingActivity:
    """Totals over the daily reading log."""

    active_days: int = 0
    total_pages_read: int = 0
    average_pages_per_day: int = 0


@dataclass
class GenreShare:
    """How many books carry a genre, and their share of the library."""

    count: int = 0
    percentage: int = 0


@dataclass
class SeriesProgress:
    """Completion of one series in the library."""

    total: int = 0
    completed: int = 0
    current: int = 0
    planned: int = 0
    percentage: int = 0


@dataclass
class MonthlyStat:
    """Books finished and pages read in one calendar month."""

    year: int
    month: int
    label: str
    books: int = 0
    pages: int = 0


@dataclass
class FastestBook:
    """The book read in the fewest days."""

    title: str
    days: int


@dataclass
class ReadingPace:
    """Days from adding a book to finishing it."""

    average_days_per_book: int | None = None
    fastest_book: FastestBook | None = None


@dataclass
class LengthBuckets:
    """Book counts by page length."""

    short: int = 0
    medium: int = 0
    long: int = 0


@dataclass
class HeatmapDay:
    """Reading activity on one calendar day."""

    date: date
    count: int = 0  # pages read
    level: int = 0  # intensity 0-4
    books: list[str] = field(default_factory=list)


@dataclass
class ReadingStatistics:
    """The full reading profile for one user."""

    counts: CoreCounts = field(default_factory=CoreCounts)
    goal: GoalProgress = field(default_factory=GoalProgress)
    streaks: Streaks = field(default_factory=Streaks)
    activity: ReadingActivity = field(default_factory=ReadingActivity)
    genre_distribution: dict[str, GenreShare] = field(default_factory=dict)
    author_stats: dict[str, int] = field(default_factory=dict)
    series_progress: dict[str, SeriesProgress] = field(default_factory=dict)
    monthly_stats: list[MonthlyStat] = field(default_factory=list)
    pace: ReadingPace = field(default_factory=ReadingPace)
    books_by_length: LengthBuckets = field(default_factory=LengthBuckets)

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain dicts and lists for JSON serialization."""
        return asdict(self)


# =============================================================================
# Input Handling
# =============================================================================


def _as_books(books: Iterable[Any] | None) -> list[Book]:
    """Accept Book objects or raw rows, dropping anything malformed."""
    result = []
    raw_rows = []
    for item in books or []:
        if isinstance(item, Book):
            result.append(item)
        else:
            raw_rows.append(item)
    if raw_rows:
        result.extend(parse_rows(raw_rows, Book.from_dict))
    return result


def _as_entries(entries: Iterable[Any] | None) -> list[DailyReadingEntry]:
    """Accept DailyReadingEntry objects or raw rows, dropping anything malformed."""
    result = []
    raw_rows = []
    for item in entries or []:
        if isinstance(item, DailyReadingEntry):
            result.append(item)
        else:
            raw_rows.append(item)
    if raw_rows:
        result.extend(parse_rows(raw_rows, DailyReadingEntry.from_dict))
    return result


def _entry_day(entry: DailyReadingEntry) -> date | None:
    return parse_date(entry.date)


def _entry_pages(entry: DailyReadingEntry) -> int:
    pages = entry.pages_read
    if not isinstance(pages, int) or isinstance(pages, bool) or pages < 0:
        return 0
    return pages


# =============================================================================
# Operations
# =============================================================================


def compute_core_counts(books: Iterable[Book]) -> CoreCounts:
    """
    Count books by status.

    Args:
        books: The user's books.

    Returns:
        CoreCounts with completion_rate = round(completed / total * 100).
    """
    books = list(books)
    completed = sum(1 for b in books if b.status == "past")
    return CoreCounts(
        total=len(books),
        completed=completed,
        current=sum(1 for b in books if b.status == "current"),
        planned=sum(1 for b in books if b.status == "planned"),
        completion_rate=percentage(completed, len(books)),
    )


def compute_goal_progress(
    books: Iterable[Book],
    settings: UserSettings | None,
    reference_year: int | None = None,
) -> GoalProgress:
    """
    Measure progress toward the yearly reading goal.

    A book counts toward a year when its status is past and its
    date_completed falls in that UTC calendar year.

    Args:
        books: The user's books.
        settings: The user's settings (None means no goal).
        reference_year: Year to measure (default: the current UTC year).

    Returns:
        GoalProgress; both percentages are 0 when the goal is 0.
    """
    if reference_year is None:
        reference_year = utc_today().year
    goal = settings.reading_goal if settings and settings.reading_goal > 0 else 0

    this_year = 0
    last_year = 0
    for book in books:
        completed = parse_timestamp(book.date_completed)
        if book.status != "past" or completed is None:
            continue
        year = completed.year
        if year == reference_year:
            this_year += 1
        elif year == reference_year - 1:
            last_year += 1

    raw = percentage(this_year, goal)
    return GoalProgress(
        goal=goal,
        books_this_year=this_year,
        books_last_year=last_year,
        progress=min(max(raw, 0), 100),
        progress_raw=raw,
    )


def compute_streaks(
    daily_entries: Iterable[DailyReadingEntry],
    today: date | None = None,
) -> Streaks:
    """
    Calculate the longest and current reading streaks.

    Several entries on the same day count as one active day. The current
    streak is the run ending at the most recent active day, and is 0 once
    that day is more than one day before today.

    Args:
        daily_entries: The user's daily reading entries.
        today: Reference day (default: the current UTC day).

    Returns:
        Streaks, both 0 when there are no entries.
    """
    days = sorted({d for d in (_entry_day(e) for e in daily_entries) if d}, reverse=True)
    if not days:
        return Streaks()

    longest = 1
    run = 1
    current = None
    for newer, older in zip(days, days[1:]):
        if (newer - older).days <= 1:
            run += 1
        else:
            if current is None:
                current = run
            run = 1
        longest = max(longest, run)
    if current is None:
        current = run

    if today is None:
        today = utc_today()
    if (today - days[0]).days > 1:
        current = 0

    return Streaks(longest_streak=longest, current_streak=current)


def compute_reading_activity(daily_entries: Iterable[DailyReadingEntry]) -> ReadingActivity:
    """Total pages and average pages per active day."""
    active_days = set()
    total_pages = 0
    for entry in daily_entries:
        day = _entry_day(entry)
        if day is None:
            continue
        active_days.add(day)
        total_pages += _entry_pages(entry)

    average = round_half_up(total_pages / len(active_days)) if active_days else 0
    return ReadingActivity(
        active_days=len(active_days),
        total_pages_read=total_pages,
        average_pages_per_day=average,
    )


def compute_genre_distribution(books: Iterable[Book]) -> dict[str, GenreShare]:
    """
    Count books per genre.

    A book counts once toward every genre it carries, so counts can sum to
    more than the number of books and percentages to more than 100.

    Returns:
        Mapping of genre -> GenreShare, by count descending. Ties keep the
        order in which genres were first seen.
    """
    books = list(books)
    counts: dict[str, int] = {}
    for book in books:
        for genre in dict.fromkeys(book.genres or []):
            if genre:
                counts[genre] = counts.get(genre, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return {
        genre: GenreShare(count=count, percentage=percentage(count, len(books)))
        for genre, count in ranked
    }


def compute_author_stats(books: Iterable[Book]) -> dict[str, int]:
    """Count books per author, by count descending (ties by first seen)."""
    counts: dict[str, int] = {}
    for book in books:
        if book.author:
            counts[book.author] = counts.get(book.author, 0) + 1
    return dict(sorted(counts.items(), key=lambda item: -item[1]))


def compute_series_progress(books: Iterable[Book]) -> dict[str, SeriesProgress]:
    """
    Summarize completion for each series in the library.

    Only books flagged is_part_of_series with a series_name take part.

    Returns:
        Mapping of series name -> SeriesProgress, in first-seen order.
    """
    series: dict[str, SeriesProgress] = {}
    for book in books:
        if not book.is_part_of_series or not book.series_name:
            continue
        progress = series.setdefault(book.series_name, SeriesProgress())
        progress.total += 1
        if book.status == "past":
            progress.completed += 1
        elif book.status == "current":
            progress.current += 1
        elif book.status == "planned":
            progress.planned += 1

    for progress in series.values():
        progress.percentage = percentage(progress.completed, progress.total)
    return series


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def compute_monthly_stats(
    books: Iterable[Book],
    daily_entries: Iterable[DailyReadingEntry],
    month_count: int = DEFAULT_MONTH_COUNT,
    today: date | None = None,
) -> list[MonthlyStat]:
    """
    Books finished and pages read over the trailing months.

    Args:
        books: The user's books; a book counts in the month of its date_completed.
        daily_entries: The user's daily reading entries.
        month_count: Number of months, ending with the current month.
        today: Reference day (default: the current UTC day).

    Returns:
        One MonthlyStat per month, oldest first. Months without activity
        are included with zero counts.
    """
    if month_count <= 0:
        return []
    if today is None:
        today = utc_today()

    months: dict[tuple[int, int], MonthlyStat] = {}
    for offset in range(-(month_count - 1), 1):
        year, month = _shift_month(today.year, today.month, offset)
        months[(year, month)] = MonthlyStat(
            year=year,
            month=month,
            label=f"{MONTH_NAMES[month - 1]} {year}",
        )

    for book in books:
        completed = parse_timestamp(book.date_completed)
        if completed is None:
            continue
        stat = months.get((completed.year, completed.month))
        if stat:
            stat.books += 1

    for entry in daily_entries:
        day = _entry_day(entry)
        if day is None:
            continue
        stat = months.get((day.year, day.month))
        if stat:
            stat.pages += _entry_pages(entry)

    return list(months.values())


def compute_reading_pace(books: Iterable[Book]) -> ReadingPace:
    """
    Average and fastest days-to-read over finished books.

    Days to read is the elapsed time from date_added to date_completed,
    rounded up to whole days. Books missing either date are ignored.

    Returns:
        ReadingPace; both fields are None when no book qualifies. The
        fastest book is the first one seen with the fewest days.
    """
    total_days = 0
    qualifying = 0
    fastest = None
    for book in books:
        added = parse_timestamp(book.date_added)
        completed = parse_timestamp(book.date_completed)
        if book.status != "past" or added is None or completed is None:
            continue
        elapsed = (completed - added).total_seconds()
        days = max(math.ceil(elapsed / SECONDS_PER_DAY), 0)
        total_days += days
        qualifying += 1
        if fastest is None or days < fastest.days:
            fastest = FastestBook(title=book.title, days=days)

    if not qualifying:
        return ReadingPace()
    return ReadingPace(
        average_days_per_book=round_half_up(total_days / qualifying),
        fastest_book=fastest,
    )


def bucket_by_length(books: Iterable[Book]) -> LengthBuckets:
    """
    Count books as short (<250 pages), medium (250-499) or long (500+).

    Books without a page count are left out of every bucket.
    """
    buckets = LengthBuckets()
    for book in books:
        pages = book.total_pages
        if not pages or pages < 0:
            continue
        if pages < SHORT_BOOK_PAGES:
            buckets.short += 1
        elif pages < LONG_BOOK_PAGES:
            buckets.medium += 1
        else:
            buckets.long += 1
    return buckets


def heatmap_level(pages: int) -> int:
    """Intensity level for a day's pages: 0 idle, then 1-4 by HEATMAP_THRESHOLDS."""
    if pages <= 0:
        return 0
    for level, threshold in enumerate(HEATMAP_THRESHOLDS, start=1):
        if pages < threshold:
            return level
    return len(HEATMAP_THRESHOLDS) + 1


def one_year_before(day: date) -> date:
    """The same calendar day a year earlier (Feb 29 maps to Feb 28)."""
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        return day.replace(year=day.year - 1, day=28)


def compute_reading_heatmap(
    daily_entries: Iterable[DailyReadingEntry],
    today: date | None = None,
) -> list[HeatmapDay]:
    """
    Day-by-day reading activity over the trailing year.

    Every day from one year before today through today gets a cell, idle
    days included. Entries without a book id are ignored; entries outside
    the window fall off.

    Args:
        daily_entries: The user's daily reading entries.
        today: Last day of the window (default: the current UTC day).

    Returns:
        HeatmapDay cells, oldest first. books lists the ids read that day
        in first-seen order.
    """
    if today is None:
        today = utc_today()
    start = one_year_before(today)

    pages_by_day: dict[date, int] = {}
    books_by_day: dict[date, dict[str, None]] = {}
    for entry in daily_entries:
        day = _entry_day(entry)
        if day is None or not entry.book_id or not start <= day <= today:
            continue
        pages_by_day[day] = pages_by_day.get(day, 0) + _entry_pages(entry)
        books_by_day.setdefault(day, {})[entry.book_id] = None

    cells = []
    for offset in range((today - start).days + 1):
        day = start + timedelta(days=offset)
        pages = pages_by_day.get(day, 0)
        cells.append(
            HeatmapDay(
                date=day,
                count=pages,
                level=heatmap_level(pages),
                books=list(books_by_day.get(day, {})),
            )
        )
    return cells


def compute_reading_statistics(
    books: Iterable[Any],
    daily_entries: Iterable[Any],
    settings: UserSettings | None = None,
    *,
    today: date | None = None,
    month_count: int = DEFAULT_MONTH_COUNT,
) -> ReadingStatistics:
    """
    Build the full reading profile for one user.

    Args:
        books: Book objects or raw book rows.
        daily_entries: DailyReadingEntry objects or raw entry rows.
        settings: The user's settings (None means defaults).
        today: Reference day for "this year", streaks and months
               (default: the current UTC day).
        month_count: Trailing months to include in monthly_stats.

    Returns:
        ReadingStatistics. Malformed rows are skipped.
    """
    if today is None:
        today = utc_today()
    book_list = _as_books(books)
    entry_list = _as_entries(daily_entries)

    return ReadingStatistics(
        counts=compute_core_counts(book_list),
        goal=compute_goal_progress(book_list, settings, today.year),
        streaks=compute_streaks(entry_list, today),
        activity=compute_reading_activity(entry_list),
        genre_distribution=compute_genre_distribution(book_list),
        author_stats=compute_author_stats(book_list),
        series_progress=compute_series_progress(book_list),
        monthly_stats=compute_monthly_stats(book_list, entry_list, month_count, today),
        pace=compute_reading_pace(book_list),
        books_by_length=bucket_by_length(book_list),
    )
