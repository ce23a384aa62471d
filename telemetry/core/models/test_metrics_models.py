"""Tests for the high-risk and data quality scoring functions."""

from datetime import datetime, timezone

import pytest

from telemetry.core.models.metrics import (
    DataQualityMetrics,
    SuspiciousActivity,
    build_quality_report,
    has_data_quality_issues,
    is_high_risk_activity,
    quality_score,
)

WINDOW = datetime(2023, 10, 20, 12, 0, tzinfo=timezone.utc)


def snapshot(**counts) -> SuspiciousActivity:
    return SuspiciousActivity(
        timestamp="2023-10-20 12:00:00.000",
        userId="123e4567-e89b-12d3-a456-426614174001",
        sourceIp="192.168.1.100",
        action="login",
        **counts
    )


def quality(**counts) -> DataQualityMetrics:
    return DataQualityMetrics(window_start=WINDOW, **counts)


@pytest.mark.parametrize("field,threshold", [
    ("events_5m", 20),
    ("events_ip_5m", 10),
    ("events_country_5m", 15),
])
def test_high_risk_thresholds_are_exclusive(field, threshold):
    assert not is_high_risk_activity(snapshot(**{field: threshold}))
    assert is_high_risk_activity(snapshot(**{field: threshold + 1}))


def test_quiet_snapshot_is_not_high_risk():
    assert not is_high_risk_activity(snapshot())


def test_zero_events_has_no_issues():
    metrics = quality(total_events=0)
    assert has_data_quality_issues(metrics) is False
    assert quality_score(metrics) == 100.0


def test_missing_rate_threshold_is_exclusive():
    # 5/100 missing is exactly at the 5% threshold
    assert not has_data_quality_issues(quality(total_events=100, missing_ip=5))
    assert has_data_quality_issues(quality(total_events=100, missing_ip=6))


def test_duplicate_rate_threshold_is_exclusive():
    assert not has_data_quality_issues(quality(total_events=100, duplicate_count=1))
    assert has_data_quality_issues(quality(total_events=100, duplicate_count=2))


def test_rates_are_judged_separately():
    # 4% missing plus 1% duplicates: neither rate crosses its own threshold
    metrics = quality(total_events=100, missing_user=2, missing_email=2, duplicate_count=1)
    assert not has_data_quality_issues(metrics)
    assert quality_score(metrics) == 95.0


def test_quality_score_example():
    metrics = quality(
        total_events=1000,
        missing_ip=10,
        missing_user=5,
        missing_user_agent=15,
        missing_email=8,
        duplicate_count=10,
    )
    assert quality_score(metrics) == 95.2
    assert has_data_quality_issues(metrics) is False


def test_quality_report_carries_score_and_flag():
    report = build_quality_report(quality(total_events=10, missing_user_agent=3))
    assert report.quality_score == 70.0
    assert report.has_issues is True
    assert report.total_events == 10
