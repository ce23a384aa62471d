"""
Event-time utilities for the telemetry pipeline.

Events carry ISO-8601 UTC timestamps on the wire. The analytical store wants
`YYYY-MM-DD HH:MM:SS.mmm` strings and the search index wants integer epoch
seconds, so every conversion between those forms lives here.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Union

ISO_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?Z$"
)
STORAGE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class EventTimeExtractor:
    """Parse and format event timestamps."""

    @staticmethod
    def parse_iso(value: str) -> datetime:
        """
        Parse an ISO-8601 UTC timestamp (`Z` suffix required).

        Args:
            value: Timestamp such as ``2023-10-20T12:00:00.000Z``

        Returns:
            Timezone-aware datetime in UTC

        Raises:
            ValueError: If the string is not a valid UTC ISO-8601 datetime
        """
        match = ISO_TIMESTAMP_PATTERN.match(value) if isinstance(value, str) else None
        if not match:
            raise ValueError(f"Invalid ISO-8601 UTC datetime: {value!r}")

        year, month, day, hour, minute, second, fraction = match.groups()
        microsecond = int((fraction or "0")[:6].ljust(6, "0"))
        # datetime() rejects out-of-range components (month 13, Feb 30, ...)
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            microsecond, tzinfo=timezone.utc
        )

    @staticmethod
    def to_iso(dt: datetime) -> str:
        """Format a datetime as ISO-8601 UTC with millisecond precision."""
        dt = dt.astimezone(timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

    @staticmethod
    def to_storage(value: Union[str, datetime]) -> str:
        """Format as `YYYY-MM-DD HH:MM:SS.mmm` (UTC, zero-padded, truncated to ms)."""
        dt = EventTimeExtractor.parse_iso(value) if isinstance(value, str) else value.astimezone(timezone.utc)
        return dt.strftime(STORAGE_TIMESTAMP_FORMAT) + f".{dt.microsecond // 1000:03d}"

    @staticmethod
    def from_storage(value: str) -> datetime:
        """Parse a storage-format timestamp back into an aware UTC datetime."""
        base, _, millis = value.partition(".")
        dt = datetime.strptime(base, STORAGE_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        if millis:
            dt += timedelta(milliseconds=int(millis))
        return dt

    @staticmethod
    def to_epoch_seconds(value: Union[str, datetime]) -> int:
        """Unix epoch seconds, integer-truncated."""
        dt = EventTimeExtractor.parse_iso(value) if isinstance(value, str) else value
        return (dt - EPOCH) // timedelta(seconds=1)

    @staticmethod
    def to_epoch_ms(dt: datetime) -> int:
        return (dt - EPOCH) // timedelta(milliseconds=1)
