"""
Helper Utilities Module
Common utility functions used across the application.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

import pytz
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    Some databases (SQLite) drop tzinfo on the way back, so values read
    from storage are normalized before being compared with utc_now().
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def parse_jira_datetime(dt_string: Optional[str]) -> Optional[datetime]:
    """
    Parse Jira datetime string to Python datetime.

    Args:
        dt_string: Jira datetime string (ISO 8601 format)

    Returns:
        datetime object or None if parsing fails
    """
    if not dt_string:
        return None

    try:
        return date_parser.parse(dt_string)
    except (ValueError, TypeError, OverflowError):
        return None


def parse_jira_date(date_string: Optional[str]) -> Optional[date]:
    """
    Parse Jira date string (YYYY-MM-DD) to Python date.

    Longer timestamps are accepted; only their first ten characters are read.
    """
    if not date_string:
        return None

    try:
        return datetime.strptime(date_string[:10], '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def truncate_to_day(dt_string: Optional[str]) -> Optional[str]:
    """Cut a Jira timestamp such as ``2024-03-05T10:22:01.000+0100`` to ``2024-03-05``."""
    if not dt_string:
        return None
    return dt_string[:10]


def safe_get(data: Dict, *keys, default=None) -> Any:
    """
    Safely get nested dictionary value.

    Args:
        data: Dictionary to traverse
        *keys: Keys to follow
        default: Default value if key not found

    Returns:
        Value at path or default
    """
    result = data
    for key in keys:
        if isinstance(result, dict):
            result = result.get(key)
        else:
            return default
        if result is None:
            return default
    return result


def sanitize_string(text: Optional[str], max_length: int = None) -> Optional[str]:
    """
    Sanitize string for database storage.

    Args:
        text: Text to sanitize
        max_length: Maximum length (truncate if exceeded)

    Returns:
        Sanitized string
    """
    if text is None:
        return None

    # Remove null bytes
    text = text.replace('\x00', '')

    # Truncate if needed
    if max_length and len(text) > max_length:
        text = text[:max_length - 3] + '...'

    return text


def mask_secret(value: Optional[str], visible: int = 8) -> str:
    """Shorten a secret for log output, e.g. ``a1b2c3d4...``."""
    if not value:
        return ''
    return value[:visible] + '...'
