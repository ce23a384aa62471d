"""
Query time ranges and bucket intervals.

The metrics surface accepts a look-back such as ``15 MINUTE`` or ``2 hour``
plus a bucket interval (``1m`` or ``1h``).
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

TIME_RANGE_PATTERN = re.compile(r"^(\d+)\s+(MINUTE|HOUR|DAY)$", re.IGNORECASE)

UNIT_DELTAS = {
    "MINUTE": timedelta(minutes=1),
    "HOUR": timedelta(hours=1),
    "DAY": timedelta(days=1),
}

INTERVALS = {
    "1m": timedelta(minutes=1),
    "1h": timedelta(hours=1),
}


class InvalidTimeRangeError(ValueError):
    """Time range or interval string is not in the accepted form."""


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def contains(self, dt: datetime) -> bool:
        return self.start <= dt <= self.end


def parse_time_range(value: str) -> timedelta:
    """Parse ``<integer> (MINUTE|HOUR|DAY)`` (case-insensitive) into a timedelta."""
    match = TIME_RANGE_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidTimeRangeError(f"Invalid time range: {value!r}")
    amount, unit = match.groups()
    try:
        return int(amount) * UNIT_DELTAS[unit.upper()]
    except (OverflowError, ValueError):
        raise InvalidTimeRangeError(f"Time range out of range: {value!r}") from None


def parse_interval(value: str) -> timedelta:
    try:
        return INTERVALS[value]
    except (KeyError, TypeError):
        raise InvalidTimeRangeError(f"Invalid interval: {value!r} (expected one of {sorted(INTERVALS)})") from None


def window_for(time_range: str, now: Optional[datetime] = None) -> TimeWindow:
    """The window `[now - time_range, now]`."""
    end = now or datetime.now(timezone.utc)
    try:
        start = end - parse_time_range(time_range)
    except OverflowError:
        raise InvalidTimeRangeError(f"Time range out of range: {time_range!r}") from None
    return TimeWindow(start=start, end=end)


def truncate(dt: datetime, interval: timedelta) -> datetime:
    """Start of the interval bucket containing `dt` (buckets aligned to the epoch)."""
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    return epoch + ((dt - epoch) // interval) * interval
