"""
Analytical row store.

Append-only storage for AnalyticalRow records. Every insert is kept, so a
redelivered event produces a second row with the same id; the data quality
report is where duplicates become visible.
"""

import json
from abc import ABC, abstractmethod
from bisect import bisect_left, bisect_right, insort
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Tuple

import redis
import structlog

from telemetry.core.models.config import WorkerConfig
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.routing import EVENTS_TABLE
from telemetry.core.utils.event_time import EventTimeExtractor
from telemetry.core.utils.metrics import SINK_WRITES

logger = structlog.get_logger(__name__)


def _score(row: AnalyticalRow) -> int:
    return EventTimeExtractor.to_epoch_ms(EventTimeExtractor.from_storage(row.timestamp))


def _bounds(start: Optional[datetime], end: Optional[datetime]) -> Tuple[float, float]:
    low = EventTimeExtractor.to_epoch_ms(start) if start else float("-inf")
    high = EventTimeExtractor.to_epoch_ms(end) if end else float("inf")
    return low, high


class RowStore(ABC):
    """Contract for the `events` table."""

    table = EVENTS_TABLE

    @abstractmethod
    def insert(self, row: AnalyticalRow):
        pass

    def insert_many(self, rows: Iterable[AnalyticalRow]) -> int:
        count = 0
        for row in rows:
            self.insert(row)
            count += 1
        return count

    @abstractmethod
    def iter_rows(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Iterator[AnalyticalRow]:
        """Rows with `start <= timestamp <= end`, ascending by timestamp."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class InMemoryRowStore(RowStore):
    """Row store kept in a sorted list, for tests and local runs."""

    def __init__(self):
        self._rows: List[Tuple[int, int, AnalyticalRow]] = []
        self._seq = 0

    def insert(self, row: AnalyticalRow):
        self._seq += 1
        insort(self._rows, (_score(row), self._seq, row), key=lambda item: item[:2])
        SINK_WRITES.labels(sink="memory", status="success").inc()

    def iter_rows(self, start=None, end=None):
        low, high = _bounds(start, end)
        lo = bisect_left(self._rows, low, key=lambda item: item[0])
        hi = bisect_right(self._rows, high, key=lambda item: item[0])
        for index in range(lo, hi):
            yield self._rows[index][2]

    def count(self) -> int:
        return len(self._rows)


class RedisRowStore(RowStore):
    """
    Row store backed by a Redis sorted set.

    Members are `<sequence>|<json record>` scored by event time in epoch
    milliseconds. The sequence comes from INCR on a counter key so identical
    records stay distinct members.
    """

    def __init__(self, config: WorkerConfig, client: Optional[redis.Redis] = None, page_size: int = 500):
        self.config = config
        self.page_size = page_size
        self.redis_client = client or redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            decode_responses=True
        )
        self.rows_key = f"{config.row_store_prefix}:{self.table}"
        self.seq_key = f"{config.row_store_prefix}:{self.table}:seq"

    def _member(self, seq: int, row: AnalyticalRow) -> str:
        return f"{seq}|{json.dumps(row.to_record(), separators=(',', ':'))}"

    def insert(self, row: AnalyticalRow):
        try:
            seq = self.redis_client.incr(self.seq_key)
            self.redis_client.zadd(self.rows_key, {self._member(seq, row): _score(row)})
            SINK_WRITES.labels(sink="redis", status="success").inc()
            logger.debug("Wrote row to Redis", id=row.id, type=row.type, key=self.rows_key)
        except redis.RedisError as e:
            SINK_WRITES.labels(sink="redis", status="error").inc()
            logger.error("Failed to write row to Redis", id=row.id, error=str(e))
            raise

    def insert_many(self, rows: Iterable[AnalyticalRow]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        try:
            last = self.redis_client.incrby(self.seq_key, len(rows))
            first = last - len(rows) + 1
            mapping = {
                self._member(first + i, row): _score(row)
                for i, row in enumerate(rows)
            }
            pipe = self.redis_client.pipeline()
            pipe.zadd(self.rows_key, mapping)
            pipe.execute()
            SINK_WRITES.labels(sink="redis", status="success").inc(len(rows))
        except redis.RedisError as e:
            SINK_WRITES.labels(sink="redis", status="error").inc(len(rows))
            logger.error("Failed to write row batch to Redis", rows=len(rows), error=str(e))
            raise
        return len(rows)

    def iter_rows(self, start=None, end=None):
        low, high = _bounds(start, end)
        offset = 0
        while True:
            members = self.redis_client.zrangebyscore(
                self.rows_key,
                "-inf" if low == float("-inf") else low,
                "+inf" if high == float("inf") else high,
                start=offset,
                num=self.page_size,
            )
            for member in members:
                _, record = member.split("|", 1)
                yield AnalyticalRow.from_record(json.loads(record))
            if len(members) < self.page_size:
                return
            offset += self.page_size

    def count(self) -> int:
        return self.redis_client.zcard(self.rows_key)
