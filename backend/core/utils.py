"""
Utility functions for the integration access gateway.

Includes:
- UTC datetime helpers
- Pagination helpers
- Redirect URI validation
"""

from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes (SQLite drops tzinfo on read).

    Args:
        value: Datetime from the database or caller, may be None

    Returns:
        Timezone-aware datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_offset(page: int = 1, per_page: int = 20) -> int:
    """
    Calculate database offset from page and per_page values.

    Args:
        page: Page number (1-indexed)
        per_page: Items per page

    Returns:
        Offset for database queries
    """
    return (max(page, 1) - 1) * per_page


def is_absolute_url(uri: str) -> bool:
    """Check that a redirect URI carries both a scheme and a host."""
    parsed = urlparse(uri or "")
    return bool(parsed.scheme) and bool(parsed.netloc)
