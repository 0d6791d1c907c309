"""
Date and Time Utilities Module for Futures Trading Bot.

This module provides UTC time helpers and exchange timestamp conversion.
Crypto futures trade around the clock, so everything is kept in UTC.
"""

from datetime import datetime, timezone
from typing import Optional
import logging


logger = logging.getLogger(__name__)


UTC = timezone.utc


# =============================================================================
# CURRENT TIME
# =============================================================================

def now_utc() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC
    """
    return datetime.now(UTC)


def start_of_day_utc(dt: Optional[datetime] = None) -> datetime:
    """
    Get midnight UTC for the given datetime.

    Args:
        dt: Reference datetime (defaults to now)

    Returns:
        Midnight of the same UTC day
    """
    dt = make_aware(dt or now_utc())
    return dt.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


# =============================================================================
# CONVERSION
# =============================================================================

def make_aware(dt: datetime) -> datetime:
    """
    Attach UTC to a naive datetime.

    Args:
        dt: Datetime to convert

    Returns:
        Timezone-aware datetime
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(dt: datetime) -> str:
    """
    Format datetime as ISO 8601 timestamp.

    Args:
        dt: Datetime to format

    Returns:
        Fixed-width ISO 8601 timestamp string, sortable as text
    """
    return make_aware(dt).astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp written by ``format_timestamp``."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value))


def from_milliseconds(ms: int) -> datetime:
    """
    Convert an exchange millisecond timestamp to a UTC datetime.

    Args:
        ms: Milliseconds since epoch

    Returns:
        UTC datetime
    """
    return datetime.fromtimestamp(ms / 1000, tz=UTC)
