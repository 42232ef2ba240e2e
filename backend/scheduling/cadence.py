"""
Cadence arithmetic for recurring check-ins

Pure functions turning a time-of-day, cadence and IANA timezone into a
minute-of-day, a weekday bitmask and the next UTC instant to fire. Weekday
bits follow bit0=Sunday ... bit6=Saturday.
"""
import logging
import re
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Iterable, List, Optional, Union

import pytz

from utils.time_utils import ensure_utc

from .errors import InvalidCadence, InvalidTimeOfDay, InvalidTimezone
from .models import Cadence

logger = logging.getLogger("cadence")

TIME_OF_DAY_PATTERN = re.compile(r"^([0-1][0-9]|2[0-3]):([0-5][0-9])$")

ALL_DAYS_MASK = 0b1111111
WEEKDAYS_MASK = 0b0111110
WEEKENDS_MASK = 0b1000001

DAY_ABBREVIATIONS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# One week plus today covers every enabled weekday; each skipped
# nonexistent slot pushes the horizon out by another week.
MAX_DAYS_SEARCH_FORWARD = 8


def minute_of_day(time_of_day: str) -> int:
    """
    Parse "HH:MM" into minutes after local midnight

    Raises:
        InvalidTimeOfDay: If the string is not a 24-hour HH:MM time
    """
    match = TIME_OF_DAY_PATTERN.match(time_of_day or "")
    if not match:
        raise InvalidTimeOfDay(f"Invalid time of day '{time_of_day}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_of_day(minutes: int) -> str:
    """Inverse of minute_of_day"""
    if not 0 <= minutes < 1440:
        raise InvalidTimeOfDay(f"Minute of day {minutes} out of range")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_cadence(cadence: Union[str, Cadence]) -> Cadence:
    if isinstance(cadence, Cadence):
        return cadence
    try:
        return Cadence(cadence)
    except ValueError:
        raise InvalidCadence(f"Unknown cadence '{cadence}'")


def weekday_mask(cadence: Union[str, Cadence], custom_days: Optional[Iterable[int]] = None) -> int:
    """
    Build the 7-bit weekday mask for a cadence

    Args:
        cadence: daily, weekdays, weekends or custom
        custom_days: Day numbers 0=Sunday ... 6=Saturday (custom only)

    Raises:
        InvalidCadence: For an unknown cadence or an empty/invalid custom list
    """
    kind = parse_cadence(cadence)

    if kind is Cadence.DAILY:
        return ALL_DAYS_MASK
    if kind is Cadence.WEEKDAYS:
        return WEEKDAYS_MASK
    if kind is Cadence.WEEKENDS:
        return WEEKENDS_MASK
    if kind is Cadence.CUSTOM:
        days = list(custom_days or [])
        if not days:
            raise InvalidCadence("Custom cadence requires at least one day")
        mask = 0
        for day in days:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise InvalidCadence(f"Invalid custom day {day!r}, expected 0 (Sunday) to 6 (Saturday)")
            mask |= 1 << day
        return mask

    raise InvalidCadence(f"Unhandled cadence {kind}")


def days_from_mask(mask: int) -> List[int]:
    return [day for day in range(7) if mask & (1 << day)]


def describe_cadence(cadence: Union[str, Cadence], mask: int) -> str:
    """Human label for a cadence, e.g. "Weekdays" or "Mon, Wed, Fri" """
    kind = parse_cadence(cadence)
    if kind is Cadence.DAILY or mask == ALL_DAYS_MASK:
        return "Every day"
    if kind is Cadence.WEEKDAYS:
        return "Weekdays"
    if kind is Cadence.WEEKENDS:
        return "Weekends"
    return ", ".join(DAY_ABBREVIATIONS[day] for day in days_from_mask(mask))


def resolve_timezone(timezone_name: str):
    """
    Look up an IANA timezone

    Raises:
        InvalidTimezone: If pytz does not know the identifier
    """
    try:
        return pytz.timezone(timezone_name)
    except (pytz.UnknownTimeZoneError, AttributeError):
        raise InvalidTimezone(f"Unknown timezone '{timezone_name}'")


def weekday_bit(day: date) -> int:
    """Mask bit for a date (Python counts Monday=0, the mask counts Sunday=0)"""
    return 1 << ((day.weekday() + 1) % 7)


def _localize_wall_time(tz, wall_time: datetime) -> Optional[datetime]:
    """
    Attach ``tz`` to a naive wall-clock time.

    Returns None when the wall time falls in a DST gap. When it occurs twice,
    the earlier instant is returned.
    """
    try:
        return tz.localize(wall_time, is_dst=None)
    except pytz.NonExistentTimeError:
        return None
    except pytz.AmbiguousTimeError:
        return min(tz.localize(wall_time, is_dst=True), tz.localize(wall_time, is_dst=False))


def next_run_at_utc(minute: int, mask: int, timezone_name: str, after_utc: datetime) -> datetime:
    """
    Earliest UTC instant strictly after ``after_utc`` whose local wall time in
    ``timezone_name`` is ``minute`` on a weekday enabled in ``mask``

    Raises:
        InvalidTimezone: If the timezone cannot be resolved
        InvalidCadence: If the mask enables no weekday
    """
    if not mask & ALL_DAYS_MASK:
        raise InvalidCadence("Weekday mask enables no days")
    if not 0 <= minute < 1440:
        raise InvalidTimeOfDay(f"Minute of day {minute} out of range")

    tz = resolve_timezone(timezone_name)
    after_utc = ensure_utc(after_utc)
    hour, minute_of_hour = divmod(minute, 60)

    # Start one local day early so zones that fall back across midnight
    # cannot hide a slot on the previous calendar date.
    start = after_utc.astimezone(tz).date() - timedelta(days=1)
    horizon = MAX_DAYS_SEARCH_FORWARD + 1
    offset = 0

    while offset <= horizon:
        day = start + timedelta(days=offset)
        offset += 1

        if not mask & weekday_bit(day):
            continue

        candidate = _localize_wall_time(tz, datetime(day.year, day.month, day.day, hour, minute_of_hour))
        if candidate is None:
            logger.info(f"{day.isoformat()} {hour:02d}:{minute_of_hour:02d} does not exist in {timezone_name}, skipping day")
            horizon += 7
            continue

        candidate_utc = candidate.astimezone(dt_timezone.utc)
        if candidate_utc > after_utc:
            return candidate_utc

    raise InvalidCadence(f"No eligible slot found for mask {mask:07b} in {timezone_name}")
