"""
Sequence/time algebra.

A query's timeline is divided into fixed width windows starting at the
query's start. Sequence ``s`` is represented by the closing instant of its
window, ``start + s * unit``; the window itself is
``[start + (s - 1) * unit, start + s * unit)``. All arithmetic is done on
UTC-aware datetimes so DST transitions never shift a boundary.
"""
from datetime import datetime, timedelta, timezone
from typing import Tuple

from caracol.core.exceptions import InvalidIntervalError
from caracol.models.database.queries import QueryInterval

_UNITS = {
    QueryInterval.HOURLY: timedelta(hours=1),
    QueryInterval.DAILY: timedelta(hours=24),
    QueryInterval.WEEKLY: timedelta(hours=168),
}

# 0001-01-01 is a Monday, so weekly truncation lands on Mondays.
_TRUNCATE_ORIGIN = datetime(1, 1, 1, tzinfo=timezone.utc)


def ensure_utc(t: datetime) -> datetime:
    """Return t as an aware UTC datetime; naive values are taken to be UTC."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def interval_unit(interval) -> timedelta:
    """Length of one window for the interval."""
    try:
        return _UNITS[QueryInterval(interval)]
    except (ValueError, KeyError):
        raise InvalidIntervalError(interval) from None


def seq_time(start: datetime, interval, seq: int) -> datetime:
    """Closing instant of the window for seq."""
    return ensure_utc(start) + seq * interval_unit(interval)


def window_for(start: datetime, interval, seq: int) -> Tuple[datetime, datetime]:
    """
    Half-open window ``[from, to)`` collected for seq.

    Sequence 0 is the unit immediately preceding start.
    """
    if seq < 0:
        raise ValueError(f"sequence must not be negative: {seq}")
    unit = interval_unit(interval)
    from_time = ensure_utc(start) + (seq - 1) * unit
    return from_time, from_time + unit


def seq_after(start: datetime, interval, t: datetime) -> int:
    """
    The sequence whose window closes exactly at t when t is on a boundary,
    otherwise the first sequence whose window closes after t.

    t must not be before start.
    """
    unit = interval_unit(interval)
    since_start = ensure_utc(t) - ensure_utc(start)
    whole, rest = divmod(since_start, unit)
    if rest:
        return whole + 1
    return whole


def truncate_start(t: datetime, interval) -> datetime:
    """Truncate t down to the nearest interval boundary."""
    unit = interval_unit(interval)
    t = ensure_utc(t)
    return t - (t - _TRUNCATE_ORIGIN) % unit
