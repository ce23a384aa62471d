"""Tests for rollup aggregation."""

from datetime import datetime, timedelta, timezone

from telemetry.core.models.metrics import HourlyMetrics
from telemetry.core.processors.rollups import (
    RollupAggregator,
    compute_hourly_metrics,
    compute_rollups,
)
from telemetry.core.utils.time_range import TimeWindow


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_groups_by_minute_and_type(make_row):
    rows = [
        make_row("account_activity", timestamp="2023-10-20T12:00:05.000Z"),
        make_row("failed_login", timestamp="2023-10-20T12:00:40.000Z"),
        make_row("api_request", timestamp="2023-10-20T12:00:59.999Z"),
        make_row("account_activity", timestamp="2023-10-20T12:01:00.000Z"),
    ]
    results = compute_rollups(rows)

    keys = [(r.window_start, r.type.value) for r in results]
    assert keys == [
        (utc(2023, 10, 20, 12, 0), "account_activity"),
        (utc(2023, 10, 20, 12, 0), "api_request"),
        (utc(2023, 10, 20, 12, 1), "account_activity"),
    ]

    first = results[0]
    assert first.event_count == 2
    assert first.successful_logins == 1
    assert first.failed_logins == 1


def test_avg_response_time_is_null_without_api_rows(make_row):
    rows = [make_row("account_activity"), make_row("email_send")]
    for metrics in compute_rollups(rows):
        assert metrics.avg_response_time_ms is None


def test_api_metrics(make_row):
    rows = [
        make_row("api_request", responseTimeMs=100, statusCode=200),
        make_row("api_request", responseTimeMs=300, statusCode=404),
        make_row("api_error", responseTimeMs=500, statusCode=503),
        make_row("api_request", responseTimeMs=0, statusCode=429),
    ]
    [metrics] = compute_rollups(rows)

    assert metrics.event_count == 4
    assert metrics.avg_response_time_ms == 225.0
    assert metrics.error_count == 1
    assert metrics.warning_count == 2


def test_email_metrics(make_row):
    rows = [
        make_row("email_send"),
        make_row("email_send"),
        make_row("bounced_email"),
        make_row("bounced_email", bounceType="soft", failureReason="Bounce: soft"),
    ]
    [metrics] = compute_rollups(rows)

    assert metrics.emails_sent == 2
    assert metrics.hard_bounces == 1
    assert metrics.soft_bounces == 1
    assert metrics.successful_logins == 0


def test_window_excludes_rows(make_row):
    rows = [
        make_row("account_activity", timestamp="2023-10-20T11:59:59.999Z"),
        make_row("account_activity", timestamp="2023-10-20T12:00:00.000Z"),
        make_row("account_activity", timestamp="2023-10-20T12:15:00.000Z"),
        make_row("account_activity", timestamp="2023-10-20T12:15:00.001Z"),
    ]
    window = TimeWindow(start=utc(2023, 10, 20, 12, 0), end=utc(2023, 10, 20, 12, 15))

    aggregator = RollupAggregator(window=window).add_many(rows)
    results = aggregator.results()

    assert sum(r.event_count for r in results) == 2
    assert aggregator.rows_skipped == 2


def test_hourly_metrics_count_uniques(make_row):
    rows = [
        make_row("account_activity", timestamp="2023-10-20T12:05:00.000Z", sourceIp="10.0.0.1"),
        make_row("failed_login", timestamp="2023-10-20T12:55:00.000Z", sourceIp="10.0.0.2"),
        make_row("account_activity", timestamp="2023-10-20T12:30:00.000Z", sourceIp="10.0.0.1"),
        make_row("account_activity", timestamp="2023-10-20T13:00:00.000Z", sourceIp="10.0.0.3"),
    ]
    results = compute_hourly_metrics(rows)

    assert all(isinstance(r, HourlyMetrics) for r in results)
    assert [r.window_start for r in results] == [utc(2023, 10, 20, 12), utc(2023, 10, 20, 13)]
    assert results[0].event_count == 3
    assert results[0].unique_ips == 2
    assert results[0].unique_countries == 2  # US and GB
    assert results[1].unique_ips == 1


def test_incremental_matches_batch(make_row):
    base = datetime(2023, 10, 20, 12, tzinfo=timezone.utc)
    kinds = ["account_activity", "api_request", "email_send", "api_error", "bounced_email"]
    rows = [
        make_row(kinds[i % len(kinds)],
                 timestamp=(base + timedelta(seconds=17 * i)).strftime("%Y-%m-%dT%H:%M:%S.000Z"))
        for i in range(50)
    ]

    aggregator = RollupAggregator()
    for row in rows:
        aggregator.add(row)

    assert aggregator.results() == compute_rollups(rows)
    assert sum(r.event_count for r in aggregator.results()) == 50


def test_empty_input():
    assert compute_rollups([]) == []
