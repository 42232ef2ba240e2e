"""
Time utilities for the check-in service

Provides timezone-aware datetime handling so that schedules, jobs and
generated content are stored in UTC and rendered in the owner's local zone.
"""
from datetime import datetime, timezone
from typing import Optional
import logging

import pytz

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string

    Returns:
        datetime object in UTC timezone

    Raises:
        ValueError: If the ISO string is invalid
    """
    try:
        dt = datetime.fromisoformat(iso_string)

        # If naive datetime, assume UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
            logger.warning(f"Naive datetime {iso_string} assumed to be UTC")
        else:
            dt = dt.astimezone(SYSTEM_TIMEZONE)

        return dt
    except ValueError as e:
        logger.error(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive input as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(SYSTEM_TIMEZONE)


def to_iso(dt: Optional[datetime]) -> str:
    """Serialize an optional datetime for Redis ("" for None)"""
    if dt is None:
        return ""
    return ensure_utc(dt).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Inverse of to_iso"""
    if not value:
        return None
    return parse_iso_to_utc(value)


def to_epoch(dt: datetime) -> float:
    """UTC epoch seconds, used as sorted-set scores"""
    return ensure_utc(dt).timestamp()


def to_local(dt: datetime, timezone_name: str) -> datetime:
    """
    Convert a UTC datetime to the given IANA timezone

    Raises:
        pytz.UnknownTimeZoneError: If the timezone cannot be resolved
    """
    return ensure_utc(dt).astimezone(pytz.timezone(timezone_name))


def format_local_time(dt: datetime, timezone_name: str) -> str:
    """
    Format a datetime for speech in the owner's timezone, e.g. "Oct 28, 2025, 9:30 AM"
    """
    local_dt = to_local(dt, timezone_name)
    hour = local_dt.hour % 12 or 12
    meridiem = "AM" if local_dt.hour < 12 else "PM"
    return f"{local_dt.strftime('%b')} {local_dt.day}, {local_dt.year}, {hour}:{local_dt.minute:02d} {meridiem}"


def format_short_date(dt: datetime) -> str:
    """Numeric month/day/year without padding, e.g. "3/7/2025" """
    return f"{dt.month}/{dt.day}/{dt.year}"
