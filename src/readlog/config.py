"""
Configuration management for readlog.

This module provides:
- READING_STATUSES: Mapping of stored status values to labels
- DEFAULT_PREFS: Every tunable with its default value
- load_prefs(): Build the preferences dict from .env and the environment
"""

import os
from collections.abc import Mapping
from typing import Any

from dotenv import load_dotenv

# Reading status values as stored on a book row
READING_STATUSES = {
    "planned": "Want to Read",
    "current": "Currently Reading",
    "past": "Read",
}

# Reverse mapping for convenience
STATUS_VALUES = {v: k for k, v in READING_STATUSES.items()}

# Prefix for environment overrides, e.g. READLOG_SUPABASE_URL
ENV_PREFIX = "READLOG_"

# Default preferences
DEFAULT_PREFS = {
    # Reading store (Supabase GraphQL endpoint)
    "supabase_url": "",
    "supabase_key": "",
    "access_token": "",
    # Book metadata search
    "books_api_key": "",
    "request_timeout": 30,  # seconds
    # Hosted text generation
    "llm_model": "llama-3.3-70b-versatile",
    "llm_max_tokens": 2000,
    "llm_temperature": 0.7,
    # Statistics
    "monthly_window": 6,  # trailing months in monthly stats
    # Series resolution
    "series_result_limit": 10,
    "series_gap_limit": 5,
}


def _coerce(value: str, default: Any) -> Any:
    """Coerce an environment string to the type of the default."""
    if isinstance(default, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def load_prefs(env: Mapping[str, str] | None = None, dotenv: bool = True) -> dict[str, Any]:
    """
    Get the preferences.

    Args:
        env: Environment mapping to read overrides from (default os.environ).
        dotenv: Whether to load a .env file into the environment first.

    Returns:
        A new dict with DEFAULT_PREFS overlaid by READLOG_* variables.

    Raises:
        ValueError: If a numeric override cannot be parsed.
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    prefs = dict(DEFAULT_PREFS)
    for key, default in DEFAULT_PREFS.items():
        raw = env.get(ENV_PREFIX + key.upper())
        if raw is None or raw == "":
            continue
        try:
            prefs[key] = _coerce(raw, default)
        except ValueError as e:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{key.upper()}: {raw!r}") from e
    return prefs
