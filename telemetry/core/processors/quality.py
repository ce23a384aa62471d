"""
Data quality aggregation.

Counts missing fields and duplicate ids per time bucket. Duplicates are
measured, never removed: the store is append-only and ingestion is
at-least-once, so the same id can legitimately appear more than once.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

import structlog

from telemetry.core.models.events import EventType
from telemetry.core.models.metrics import (
    DataQualityMetrics,
    DataQualityReport,
    build_quality_report,
)
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.time_range import TimeWindow, truncate

logger = structlog.get_logger(__name__)

# Variants that own a userAgent column
USER_AGENT_TYPES = (EventType.ACCOUNT_ACTIVITY.value, EventType.API_REQUEST.value)


@dataclass
class _QualityBucket:
    total_events: int = 0
    account_events: int = 0
    api_events: int = 0
    email_events: int = 0
    missing_ip: int = 0
    missing_user: int = 0
    missing_user_agent: int = 0
    missing_email: int = 0
    ids: Set[str] = field(default_factory=set)

    def add(self, row: AnalyticalRow):
        self.total_events += 1

        if row.type == EventType.ACCOUNT_ACTIVITY.value:
            self.account_events += 1
        elif row.type == EventType.API_REQUEST.value:
            self.api_events += 1
        elif row.type == EventType.EMAIL_SEND.value:
            self.email_events += 1

        if not row.source_ip:
            self.missing_ip += 1
        if not row.user_id:
            self.missing_user += 1
        if row.type in USER_AGENT_TYPES and not row.user_agent:
            self.missing_user_agent += 1
        if row.type == EventType.EMAIL_SEND.value and not row.recipient_email:
            self.missing_email += 1

        self.ids.add(row.id)


class DataQualityAggregator:
    """Incremental data quality metrics over analytical rows."""

    def __init__(self, interval: timedelta = timedelta(minutes=1), window: Optional[TimeWindow] = None):
        self.interval = interval
        self.window = window
        self.buckets: Dict[datetime, _QualityBucket] = {}

    def add(self, row: AnalyticalRow) -> bool:
        ts = EventTimeExtractor.from_storage(row.timestamp)
        if self.window and not self.window.contains(ts):
            return False

        window_start = truncate(ts, self.interval)
        bucket = self.buckets.get(window_start)
        if bucket is None:
            bucket = self.buckets[window_start] = _QualityBucket()
        bucket.add(row)
        return True

    def add_many(self, rows: Iterable[AnalyticalRow]) -> "DataQualityAggregator":
        for row in rows:
            self.add(row)
        return self

    def results(self) -> List[DataQualityMetrics]:
        """Metrics ordered by bucket start ascending."""
        results = []
        for window_start in sorted(self.buckets):
            bucket = self.buckets[window_start]
            unique_ids = len(bucket.ids)
            results.append(DataQualityMetrics(
                window_start=window_start,
                total_events=bucket.total_events,
                account_events=bucket.account_events,
                api_events=bucket.api_events,
                email_events=bucket.email_events,
                missing_ip=bucket.missing_ip,
                missing_user=bucket.missing_user,
                missing_user_agent=bucket.missing_user_agent,
                missing_email=bucket.missing_email,
                unique_ids=unique_ids,
                duplicate_count=bucket.total_events - unique_ids,
            ))
        return results

    def reports(self) -> List[DataQualityReport]:
        """Metrics with quality_score and the has_issues flag attached."""
        reports = [build_quality_report(m) for m in self.results()]
        flagged = sum(1 for r in reports if r.has_issues)
        if flagged:
            logger.warning("Data quality issues detected", buckets=len(reports), flagged=flagged)
        return reports
