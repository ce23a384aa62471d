"""Tests for the analytical row stores."""

from datetime import datetime, timezone

import pytest
import redis

from telemetry.core.models.config import WorkerConfig
from telemetry.core.sinks.row_store import InMemoryRowStore, RedisRowStore, RowStore


class MockPipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    def zadd(self, key, mapping):
        self.commands.append((key, mapping))
        return self

    def execute(self):
        results = [self.client.zadd(key, mapping) for key, mapping in self.commands]
        self.commands = []
        return results


class MockRedisClient:
    """Just enough of redis.Redis for the row store."""

    def __init__(self, fail=False):
        self.counters = {}
        self.sorted_sets = {}
        self.fail = fail
        self.range_calls = 0

    def incr(self, key):
        return self.incrby(key, 1)

    def incrby(self, key, amount):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.counters[key] = self.counters.get(key, 0) + amount
        return self.counters[key]

    def zadd(self, key, mapping):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.sorted_sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def pipeline(self):
        return MockPipeline(self)

    def zrangebyscore(self, key, min, max, start=None, num=None):
        self.range_calls += 1
        low, high = float(min), float(max)
        members = sorted(
            (score, member)
            for member, score in self.sorted_sets.get(key, {}).items()
            if low <= score <= high
        )
        selected = [member for _, member in members]
        if start is not None:
            selected = selected[start:start + num]
        return selected

    def zcard(self, key):
        return len(self.sorted_sets.get(key, {}))


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def rows_at(make_row, *timestamps):
    return [make_row("account_activity", timestamp=ts) for ts in timestamps]


@pytest.fixture
def redis_store():
    return RedisRowStore(WorkerConfig(), client=MockRedisClient(), page_size=2)


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return InMemoryRowStore()
    return RedisRowStore(WorkerConfig(), client=MockRedisClient(), page_size=2)


def test_rows_come_back_in_time_order(store, make_row):
    rows = rows_at(
        make_row,
        "2023-10-20T12:00:03.000Z",
        "2023-10-20T12:00:01.000Z",
        "2023-10-20T12:00:02.000Z",
    )
    store.insert_many(rows)

    timestamps = [row.timestamp for row in store.iter_rows()]
    assert timestamps == [
        "2023-10-20 12:00:01.000",
        "2023-10-20 12:00:02.000",
        "2023-10-20 12:00:03.000",
    ]


def test_window_bounds_are_inclusive(store, make_row):
    store.insert_many(rows_at(
        make_row,
        "2023-10-20T11:59:59.999Z",
        "2023-10-20T12:00:00.000Z",
        "2023-10-20T12:30:00.000Z",
        "2023-10-20T13:00:00.000Z",
        "2023-10-20T13:00:00.001Z",
    ))

    inside = list(store.iter_rows(utc(2023, 10, 20, 12), utc(2023, 10, 20, 13)))
    assert len(inside) == 3


def test_duplicate_inserts_are_kept(store, make_row):
    row = make_row("api_request")
    store.insert(row)
    store.insert(row)

    assert store.count() == 2
    assert [r.id for r in store.iter_rows()] == [row.id, row.id]


def test_rows_survive_storage_unchanged(store, sample_events, make_row):
    rows = [make_row(kind) for kind in ("account_activity", "api_error", "bounced_email")]
    store.insert_many(rows)
    assert sorted(store.iter_rows(), key=lambda r: r.id) == sorted(rows, key=lambda r: r.id)


def test_empty_store(store):
    assert list(store.iter_rows()) == []
    assert store.count() == 0


class TestRedisRowStore:

    def test_keys_use_prefix(self):
        store = RedisRowStore(WorkerConfig(row_store_prefix="t1"), client=MockRedisClient())
        assert store.rows_key == "t1:events"
        assert store.seq_key == "t1:events:seq"

    def test_batch_reserves_a_sequence_range(self, redis_store, make_row):
        redis_store.insert(make_row("email_send"))
        assert redis_store.insert_many([make_row("email_send") for _ in range(3)]) == 3

        client = redis_store.redis_client
        assert client.counters[redis_store.seq_key] == 4
        prefixes = sorted(int(m.split("|", 1)[0]) for m in client.sorted_sets[redis_store.rows_key])
        assert prefixes == [1, 2, 3, 4]

    def test_scores_are_epoch_milliseconds(self, redis_store, make_row):
        redis_store.insert(make_row("api_request", timestamp="2023-10-20T12:00:00.250Z"))
        [score] = redis_store.redis_client.sorted_sets[redis_store.rows_key].values()
        assert score == 1697803200250

    def test_reads_page_through_results(self, redis_store, make_row):
        redis_store.insert_many([make_row("api_request") for _ in range(5)])
        assert len(list(redis_store.iter_rows())) == 5
        # pages of two: 2 + 2 + 1
        assert redis_store.redis_client.range_calls == 3

    def test_empty_batch_skips_redis(self, redis_store):
        assert redis_store.insert_many([]) == 0
        assert redis_store.redis_client.counters == {}

    def test_write_errors_propagate(self, make_row):
        store = RedisRowStore(WorkerConfig(), client=MockRedisClient(fail=True))
        with pytest.raises(redis.RedisError):
            store.insert(make_row("api_request"))
        with pytest.raises(redis.RedisError):
            store.insert_many([make_row("api_request")])


def test_store_contract_is_abstract():
    class InsertOnlyStore(RowStore):
        def insert(self, row):
            pass

    with pytest.raises(TypeError):
        InsertOnlyStore()


class TestInMemoryRowStore:

    def test_rows_sharing_a_boundary_timestamp_are_all_read(self, make_row):
        store = InMemoryRowStore()
        edge = "2023-10-20T12:00:00.000Z"
        store.insert_many(rows_at(make_row, edge, "2023-10-20T11:00:00.000Z", edge, edge))
        store.insert_many(rows_at(make_row, "2023-10-20T12:00:00.001Z"))

        start = end = utc(2023, 10, 20, 12)
        assert len(list(store.iter_rows(start, end))) == 3

    def test_reads_are_lazy(self, make_row):
        store = InMemoryRowStore()
        store.insert_many(rows_at(make_row, "2023-10-20T12:00:00.000Z", "2023-10-20T12:00:01.000Z"))

        rows = store.iter_rows()
        assert next(rows).timestamp == "2023-10-20 12:00:00.000"
        assert next(rows).timestamp == "2023-10-20 12:00:01.000"
