from datetime import date, datetime, timezone
from typing import Union
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    Timestamps are stored naive in UTC.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)


def now_in_zone(zone_name: str) -> datetime:
    """
    Get the current wall-clock time in the given IANA time zone.

    This is the only place the reminder engine reads the clock; everything
    downstream receives ``now`` as an argument.
    """
    return datetime.now(ZoneInfo(zone_name))


def to_calendar_date(value: Union[date, datetime]) -> date:
    """
    Normalise a date or datetime to a calendar date (time of day dropped).

    Aware datetimes keep the calendar day of their own offset, so callers
    should convert them to the notification time zone first.
    """
    if isinstance(value, datetime):
        return value.date()
    return value
