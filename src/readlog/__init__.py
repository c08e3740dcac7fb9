"""
readlog - Reading statistics, progress tracking and series tools.

This package computes a reader's statistics from their library and daily
reading log, records status changes and page progress in the reading
store, and finds the series a book belongs to and the books missing from it.
"""

__version__ = "0.1.0"
