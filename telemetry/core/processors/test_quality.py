"""Tests for data quality aggregation."""

from datetime import datetime, timezone

from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.processors.quality import DataQualityAggregator


def test_counts_per_type_and_duplicates(make_row):
    api = make_row("api_request", timestamp="2023-10-20T12:00:10.000Z")
    rows = [
        make_row("account_activity", timestamp="2023-10-20T12:00:00.000Z"),
        api,
        api,  # redelivered
        make_row("email_send", timestamp="2023-10-20T12:00:30.000Z"),
    ]
    [metrics] = DataQualityAggregator().add_many(rows).results()

    assert metrics.window_start == datetime(2023, 10, 20, 12, 0, tzinfo=timezone.utc)
    assert metrics.total_events == 4
    assert metrics.account_events == 1
    assert metrics.api_events == 2
    assert metrics.email_events == 1
    assert metrics.unique_ids == 3
    assert metrics.duplicate_count == 1


def test_duplicates_are_counted_per_bucket(make_row):
    first = make_row("api_request", timestamp="2023-10-20T12:00:10.000Z")
    # Same id landing in the next minute is not a duplicate of that minute
    later = first.model_copy(update={"timestamp": "2023-10-20 12:01:10.000"})

    results = DataQualityAggregator().add_many([first, later]).results()
    assert [m.duplicate_count for m in results] == [0, 0]


def test_missing_fields(make_row):
    account = make_row("account_activity")
    rows = [
        account.model_copy(update={"user_agent": None}),
        account.model_copy(update={"id": "a", "source_ip": None, "user_id": None}),
        make_row("api_request").model_copy(update={"user_agent": None}),
        make_row("email_send").model_copy(update={"recipient_email": None}),
        # email rows own no userAgent column
        make_row("email_send"),
    ]
    [metrics] = DataQualityAggregator().add_many(rows).results()

    assert metrics.missing_user_agent == 2
    assert metrics.missing_ip == 1
    assert metrics.missing_user == 1
    assert metrics.missing_email == 1


def test_reports_attach_score_and_flag(make_row):
    row = make_row("api_request")
    rows = [row] * 3 + [make_row("api_request") for _ in range(7)]
    [report] = DataQualityAggregator().add_many(rows).reports()

    assert report.total_events == 10
    assert report.duplicate_count == 2
    assert report.quality_score == 80.0
    assert report.has_issues is True


def test_empty_input_has_no_buckets():
    assert DataQualityAggregator().results() == []


def test_rows_from_records_aggregate_the_same(make_row):
    rows = [make_row("account_activity"), make_row("bounced_email")]
    restored = [AnalyticalRow.from_record(r.to_record()) for r in rows]
    assert DataQualityAggregator().add_many(rows).results() == \
        DataQualityAggregator().add_many(restored).results()
