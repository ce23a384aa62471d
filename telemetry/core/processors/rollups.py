"""
Rollup aggregation.

Aggregates analytical rows into per-bucket, per-type metrics. Rows are folded
in one at a time, so a window of any size is aggregated in a single streaming
pass with memory proportional to the number of buckets, not rows.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog

from telemetry.core.models.events import EventType
from telemetry.core.models.metrics import HourlyMetrics, RollupMetrics
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.time_range import TimeWindow, truncate

logger = structlog.get_logger(__name__)


@dataclass
class _Bucket:
    event_count: int = 0
    successful_logins: int = 0
    failed_logins: int = 0
    api_requests: int = 0
    response_time_sum: int = 0
    error_count: int = 0
    warning_count: int = 0
    emails_sent: int = 0
    hard_bounces: int = 0
    soft_bounces: int = 0
    ips: Set[str] = field(default_factory=set)
    countries: Set[str] = field(default_factory=set)

    def add(self, row: AnalyticalRow, track_uniques: bool = False):
        self.event_count += 1

        if row.type == EventType.ACCOUNT_ACTIVITY.value:
            if row.success is True:
                self.successful_logins += 1
            elif row.success is False:
                self.failed_logins += 1

        elif row.type == EventType.API_REQUEST.value:
            if row.response_time_ms is not None:
                self.api_requests += 1
                self.response_time_sum += row.response_time_ms
            if row.status_code is not None:
                if row.status_code >= 500:
                    self.error_count += 1
                elif row.status_code >= 400:
                    self.warning_count += 1

        elif row.type == EventType.EMAIL_SEND.value:
            if row.success:
                self.emails_sent += 1
            if row.bounce_type == "hard":
                self.hard_bounces += 1
            elif row.bounce_type == "soft":
                self.soft_bounces += 1

        if track_uniques:
            if row.source_ip:
                self.ips.add(row.source_ip)
            if row.geo_country:
                self.countries.add(row.geo_country)

    @property
    def avg_response_time_ms(self) -> Optional[float]:
        if self.api_requests == 0:
            return None
        return self.response_time_sum / self.api_requests


class RollupAggregator:
    """Incremental rollup over analytical rows."""

    def __init__(
        self,
        interval: timedelta = timedelta(minutes=1),
        window: Optional[TimeWindow] = None,
        include_uniques: bool = False,
    ):
        """
        Args:
            interval: Bucket width
            window: Rows outside this window are skipped
            include_uniques: Emit HourlyMetrics with unique IP/country counts
        """
        self.interval = interval
        self.window = window
        self.include_uniques = include_uniques
        self.buckets: Dict[Tuple[datetime, str], _Bucket] = {}
        self.rows_seen = 0
        self.rows_skipped = 0

    def add(self, row: AnalyticalRow) -> bool:
        """Fold one row in. Returns False if the row was outside the window."""
        self.rows_seen += 1
        ts = EventTimeExtractor.from_storage(row.timestamp)
        if self.window and not self.window.contains(ts):
            self.rows_skipped += 1
            return False

        key = (truncate(ts, self.interval), row.type)
        bucket = self.buckets.get(key)
        if bucket is None:
            bucket = self.buckets[key] = _Bucket()
        bucket.add(row, track_uniques=self.include_uniques)
        return True

    def add_many(self, rows: Iterable[AnalyticalRow]) -> "RollupAggregator":
        for row in rows:
            self.add(row)
        return self

    def results(self) -> List[RollupMetrics]:
        """Metrics ordered by bucket start ascending, then type."""
        model = HourlyMetrics if self.include_uniques else RollupMetrics
        results = []
        for (window_start, event_type), bucket in sorted(self.buckets.items()):
            values = dict(
                window_start=window_start,
                type=event_type,
                event_count=bucket.event_count,
                successful_logins=bucket.successful_logins,
                failed_logins=bucket.failed_logins,
                avg_response_time_ms=bucket.avg_response_time_ms,
                error_count=bucket.error_count,
                warning_count=bucket.warning_count,
                emails_sent=bucket.emails_sent,
                hard_bounces=bucket.hard_bounces,
                soft_bounces=bucket.soft_bounces,
            )
            if self.include_uniques:
                values.update(
                    unique_countries=len(bucket.countries),
                    unique_ips=len(bucket.ips),
                )
            results.append(model(**values))

        logger.debug("Computed rollups",
                     buckets=len(results),
                     rows_seen=self.rows_seen,
                     rows_skipped=self.rows_skipped)
        return results


def compute_rollups(
    rows: Iterable[AnalyticalRow],
    interval: timedelta = timedelta(minutes=1),
    window: Optional[TimeWindow] = None,
) -> List[RollupMetrics]:
    """Per-interval rollups over `rows`."""
    return RollupAggregator(interval=interval, window=window).add_many(rows).results()


def compute_hourly_metrics(
    rows: Iterable[AnalyticalRow],
    window: Optional[TimeWindow] = None,
) -> List[HourlyMetrics]:
    """Hourly rollups with unique IP and country counts."""
    return RollupAggregator(
        interval=timedelta(hours=1), window=window, include_uniques=True
    ).add_many(rows).results()
