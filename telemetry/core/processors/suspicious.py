"""
Suspicious activity detection.

Two independent mechanisms:

* SuspiciousActivityDetector: batch, two-stage heuristic over the rows of a
  lookback window. Stage 1 keeps users with more than 10 account_activity
  events; stage 2 flags those seen from more than 3 IPs or more than 2
  countries. All rows of flagged users are returned, newest first.
* RollingActivityCounter: streaming, turns account_activity rows into
  SuspiciousActivity snapshots carrying 5-minute rolling counts per user,
  source IP and country, ready for is_high_risk_activity.
"""

import heapq
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

import structlog

from telemetry.core.models.events import EventType
from telemetry.core.models.metrics import SuspiciousActivity, is_high_risk_activity
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.metrics import HIGH_RISK_SNAPSHOTS, ROLLING_KEYS
from telemetry.core.utils.time_range import TimeWindow
from telemetry.core.utils.windowing import KeyedSlidingWindows

logger = structlog.get_logger(__name__)

MIN_EVENT_COUNT = 10
MAX_UNIQUE_IPS = 3
MAX_UNIQUE_COUNTRIES = 2
MAX_RESULTS = 1000

ROLLING_WINDOW_MS = 5 * 60 * 1000


@dataclass
class UserActivityStats:
    user_id: str
    event_count: int = 0
    ips: Set[str] = field(default_factory=set)
    countries: Set[str] = field(default_factory=set)

    @property
    def unique_ips(self) -> int:
        return len(self.ips)

    @property
    def unique_countries(self) -> int:
        return len(self.countries)


class SuspiciousActivityDetector:
    """Two-stage per-user heuristic over account_activity rows."""

    def __init__(
        self,
        window: Optional[TimeWindow] = None,
        min_event_count: int = MIN_EVENT_COUNT,
        max_unique_ips: int = MAX_UNIQUE_IPS,
        max_unique_countries: int = MAX_UNIQUE_COUNTRIES,
        max_results: int = MAX_RESULTS,
    ):
        self.window = window
        self.min_event_count = min_event_count
        self.max_unique_ips = max_unique_ips
        self.max_unique_countries = max_unique_countries
        self.max_results = max_results
        self.stats: Dict[str, UserActivityStats] = {}

    def _in_window(self, row: AnalyticalRow) -> bool:
        if self.window is None:
            return True
        return self.window.contains(EventTimeExtractor.from_storage(row.timestamp))

    def observe(self, row: AnalyticalRow):
        """Stage 1 accumulation. Only account_activity rows with a user count."""
        if row.type != EventType.ACCOUNT_ACTIVITY.value or not row.user_id:
            return
        if not self._in_window(row):
            return

        stats = self.stats.get(row.user_id)
        if stats is None:
            stats = self.stats[row.user_id] = UserActivityStats(row.user_id)
        stats.event_count += 1
        if row.source_ip:
            stats.ips.add(row.source_ip)
        if row.geo_country:
            stats.countries.add(row.geo_country)

    def candidates(self) -> List[UserActivityStats]:
        return [s for s in self.stats.values() if s.event_count > self.min_event_count]

    def flagged_users(self) -> Set[str]:
        return {
            s.user_id
            for s in self.candidates()
            if s.unique_ips > self.max_unique_ips
            or s.unique_countries > self.max_unique_countries
        }

    def select(self, rows: Iterable[AnalyticalRow], flagged: Set[str]) -> List[AnalyticalRow]:
        """All rows of `flagged` users in the window, newest first, capped."""
        if not flagged:
            return []
        matching = (
            row for row in rows
            if row.user_id in flagged and self._in_window(row)
        )
        # Storage timestamps sort lexicographically in time order
        return heapq.nlargest(self.max_results, matching, key=lambda r: r.timestamp)

    def detect(self, rows: Callable[[], Iterable[AnalyticalRow]]) -> List[AnalyticalRow]:
        """
        Run both stages.

        Args:
            rows: Zero-argument callable returning a fresh row iterable. It is
                called twice, once to accumulate per-user stats and once to
                collect the rows of flagged users.
        """
        self.stats.clear()
        for row in rows():
            self.observe(row)

        flagged = self.flagged_users()
        logger.info("Suspicious activity pass",
                    users=len(self.stats),
                    candidates=len(self.candidates()),
                    flagged=len(flagged))
        return self.select(rows(), flagged)


def detect_suspicious_activity(
    rows: Callable[[], Iterable[AnalyticalRow]],
    window: Optional[TimeWindow] = None,
) -> List[AnalyticalRow]:
    return SuspiciousActivityDetector(window=window).detect(rows)


class RollingActivityCounter:
    """Rolling 5-minute activity counts keyed by user, source IP and country."""

    def __init__(self, window_size_ms: int = ROLLING_WINDOW_MS):
        self.window_size_ms = window_size_ms
        self.by_user = KeyedSlidingWindows(window_size_ms)
        self.by_ip = KeyedSlidingWindows(window_size_ms)
        self.by_country = KeyedSlidingWindows(window_size_ms)

    def update(self, row: AnalyticalRow) -> Optional[SuspiciousActivity]:
        """
        Count one row and return its snapshot.

        Returns None for rows that are not account_activity. Rows are
        expected in roughly ascending event time; a row older than the
        newest row of its key is still counted but never evicts.
        """
        if row.type != EventType.ACCOUNT_ACTIVITY.value:
            return None

        ts = EventTimeExtractor.to_epoch_ms(EventTimeExtractor.from_storage(row.timestamp))

        events_5m = self.by_user.add(row.user_id, ts) if row.user_id else 0
        events_ip_5m = self.by_ip.add(row.source_ip, ts) if row.source_ip else 0
        events_country_5m = self.by_country.add(row.geo_country, ts) if row.geo_country else 0

        snapshot = SuspiciousActivity(
            timestamp=row.timestamp,
            user_id=row.user_id or "",
            source_ip=row.source_ip or "",
            action=row.action,
            geo_country=row.geo_country,
            geo_city=row.geo_city,
            user_agent=row.user_agent,
            events_5m=events_5m,
            events_ip_5m=events_ip_5m,
            events_country_5m=events_country_5m,
        )

        if is_high_risk_activity(snapshot):
            HIGH_RISK_SNAPSHOTS.inc()
            logger.warning("High risk activity",
                           user_id=snapshot.user_id,
                           source_ip=snapshot.source_ip,
                           events_5m=events_5m,
                           events_ip_5m=events_ip_5m,
                           events_country_5m=events_country_5m)
        return snapshot

    def snapshots(self, rows: Iterable[AnalyticalRow]) -> List[SuspiciousActivity]:
        results = []
        for row in rows:
            snapshot = self.update(row)
            if snapshot is not None:
                results.append(snapshot)
        return results

    def evict_idle(self, current_timestamp_ms: int) -> int:
        """Forget keys with no activity in the last window. Returns keys dropped."""
        dropped = (
            self.by_user.evict_idle(current_timestamp_ms)
            + self.by_ip.evict_idle(current_timestamp_ms)
            + self.by_country.evict_idle(current_timestamp_ms)
        )
        ROLLING_KEYS.labels(dimension="user").set(len(self.by_user))
        ROLLING_KEYS.labels(dimension="ip").set(len(self.by_ip))
        ROLLING_KEYS.labels(dimension="country").set(len(self.by_country))
        return dropped
