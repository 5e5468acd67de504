"""Timezone utilities."""

from datetime import date, datetime, time

import pytz


def localize_time(dt: datetime, tz_name: str) -> datetime:
    """Express an aware datetime in the named timezone (e.g. 'America/New_York')."""
    if dt.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return dt.astimezone(pytz.timezone(tz_name))


def exchange_datetime(session_date: date, wall_time: time, tz_name: str) -> datetime:
    """Build an aware datetime for a wall-clock time on an exchange date.

    Uses ``localize`` so DST transitions resolve to the correct offset.
    """
    tz = pytz.timezone(tz_name)
    return tz.localize(datetime.combine(session_date, wall_time))
