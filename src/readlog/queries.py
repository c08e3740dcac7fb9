"""
GraphQL queries and mutations for the reading store.

The store is a Postgres database exposed through Supabase's GraphQL
endpoint (pg_graphql), so every table is a <table>Collection with
filter/orderBy/first/after arguments and insertInto/update/deleteFrom
mutations. This module contains all the operations readlog uses:
- Books (library, single series)
- Daily reading entries
- User settings
- Status and progress writes
"""

# Columns selected for every book node
BOOK_FIELDS = """
                id
                user_id
                title
                author
                genre
                status
                favorite
                date_added
                date_completed
                total_pages
                current_page
                is_part_of_series
                series_name
                series_order
                series_total_books
                coverurl
"""

PAGE_INFO = """
        pageInfo {
            hasNextPage
            endCursor
        }
"""

# =============================================================================
# Book Queries
# =============================================================================

BOOKS_QUERY = f"""
query Books($userId: UUID!, $after: Cursor) {{
    booksCollection(
        filter: {{user_id: {{eq: $userId}}}}
        orderBy: [{{date_added: DescNullsLast}}]
        first: 100
        after: $after
    ) {{
        edges {{
            node {{{BOOK_FIELDS}            }}
        }}{PAGE_INFO}    }}
}}
"""

SERIES_BOOKS_QUERY = f"""
query SeriesBooks($userId: UUID!, $seriesName: String!, $after: Cursor) {{
    booksCollection(
        filter: {{user_id: {{eq: $userId}}, series_name: {{eq: $seriesName}}}}
        orderBy: [{{series_order: AscNullsLast}}]
        first: 100
        after: $after
    ) {{
        edges {{
            node {{{BOOK_FIELDS}            }}
        }}{PAGE_INFO}    }}
}}
"""

# =============================================================================
# Daily Reading Queries
# =============================================================================


def _daily_reading_query(since: bool) -> str:
    """Generate the daily reading query, optionally limited to dates on or after $since."""
    label = "DailyReadingSince" if since else "DailyReading"
    params = "$userId: UUID!, $since: Date!, $after: Cursor" if since else "$userId: UUID!, $after: Cursor"
    date_filter = ", date: {gte: $since}" if since else ""
    return f"""
query {label}({params}) {{
    daily_readingCollection(
        filter: {{user_id: {{eq: $userId}}{date_filter}}}
        orderBy: [{{date: DescNullsLast}}]
        first: 100
        after: $after
    ) {{
        edges {{
            node {{
                user_id
                book_id
                date
                pages_read
            }}
        }}{PAGE_INFO}    }}
}}
"""


DAILY_READING_QUERY = _daily_reading_query(since=False)

DAILY_READING_SINCE_QUERY = _daily_reading_query(since=True)

# =============================================================================
# User Settings
# =============================================================================

SETTINGS_FIELDS = """
                user_id
                favorite_genres
                reading_goal
"""

USER_SETTINGS_QUERY = f"""
query UserSettings($userId: UUID!) {{
    user_settingsCollection(filter: {{user_id: {{eq: $userId}}}}, first: 1) {{
        edges {{
            node {{{SETTINGS_FIELDS}            }}
        }}
    }}
}}
"""

INSERT_USER_SETTINGS_MUTATION = f"""
mutation InsertUserSettings($settings: user_settingsInsertInput!) {{
    insertIntouser_settingsCollection(objects: [$settings]) {{
        affectedCount
        records {{{SETTINGS_FIELDS}        }}
    }}
}}
"""

UPDATE_USER_SETTINGS_MUTATION = f"""
mutation UpdateUserSettings($userId: UUID!, $set: user_settingsUpdateInput!) {{
    updateuser_settingsCollection(set: $set, filter: {{user_id: {{eq: $userId}}}}, atMost: 1) {{
        affectedCount
        records {{{SETTINGS_FIELDS}        }}
    }}
}}
"""

# =============================================================================
# Book Mutations
# =============================================================================

INSERT_BOOKS_MUTATION = """
mutation InsertBooks($objects: [booksInsertInput!]!) {
    insertIntobooksCollection(objects: $objects) {
        affectedCount
    }
}
"""

UPDATE_BOOK_MUTATION = """
mutation UpdateBook($userId: UUID!, $bookId: UUID!, $set: booksUpdateInput!) {
    updatebooksCollection(
        set: $set
        filter: {id: {eq: $bookId}, user_id: {eq: $userId}}
        atMost: 1
    ) {
        affectedCount
    }
}
"""

DELETE_BOOK_MUTATION = """
mutation DeleteBook($userId: UUID!, $bookId: UUID!) {
    deleteFrombooksCollection(filter: {id: {eq: $bookId}, user_id: {eq: $userId}}, atMost: 1) {
        affectedCount
    }
}
"""

# Replaces the day's entry and advances current_page in one request, which
# the store runs as a single transaction.
LOG_PROGRESS_MUTATION = """
mutation LogProgress(
    $userId: UUID!
    $bookId: UUID!
    $date: Date!
    $entry: daily_readingInsertInput!
    $currentPage: Int!
) {
    deleteFromdaily_readingCollection(
        filter: {user_id: {eq: $userId}, book_id: {eq: $bookId}, date: {eq: $date}}
        atMost: 1
    ) {
        affectedCount
    }
    insertIntodaily_readingCollection(objects: [$entry]) {
        affectedCount
    }
    updatebooksCollection(
        set: {current_page: $currentPage}
        filter: {id: {eq: $bookId}, user_id: {eq: $userId}}
        atMost: 1
    ) {
        affectedCount
    }
}
"""
