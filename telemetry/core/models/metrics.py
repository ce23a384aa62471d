"""
Derived metric models: rollups, suspicious-activity snapshots, data quality.

None of these are canonical state. They are recomputed from stored rows on
every query.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from telemetry.core.models.events import AccountAction, EventType

HIGH_RISK_THRESHOLDS = {
    "events_5m": 20,
    "events_ip_5m": 10,
    "events_country_5m": 15,
}

QUALITY_THRESHOLDS = {
    "missing_data": 0.05,  # 5% of events can have missing data
    "duplicates": 0.01,    # 1% of events can be duplicates
}


class RollupMetrics(BaseModel):
    """Per-bucket, per-type aggregate."""
    window_start: datetime
    type: EventType
    event_count: int = Field(default=0, ge=0)

    # Account activity
    successful_logins: int = Field(default=0, ge=0)
    failed_logins: int = Field(default=0, ge=0)

    # API requests; None when the bucket has no api_request rows
    avg_response_time_ms: Optional[float] = None
    error_count: int = Field(default=0, ge=0)
    warning_count: int = Field(default=0, ge=0)

    # Email
    emails_sent: int = Field(default=0, ge=0)
    hard_bounces: int = Field(default=0, ge=0)
    soft_bounces: int = Field(default=0, ge=0)


class HourlyMetrics(RollupMetrics):
    unique_countries: int = Field(default=0, ge=0)
    unique_ips: int = Field(default=0, ge=0)


class SuspiciousActivity(BaseModel):
    """One account_activity event joined with its rolling 5-minute counts."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    user_id: str = Field(..., alias="userId")
    source_ip: str = Field(..., alias="sourceIp")
    type: EventType = EventType.ACCOUNT_ACTIVITY
    action: AccountAction
    geo_country: Optional[str] = Field(default=None, alias="geoCountry")
    geo_city: Optional[str] = Field(default=None, alias="geoCity")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    events_5m: int = Field(default=0, ge=0)
    events_ip_5m: int = Field(default=0, ge=0)
    events_country_5m: int = Field(default=0, ge=0)


class DataQualityMetrics(BaseModel):
    window_start: datetime
    total_events: int = Field(default=0, ge=0)
    account_events: int = Field(default=0, ge=0)
    api_events: int = Field(default=0, ge=0)
    email_events: int = Field(default=0, ge=0)

    # Missing data counts
    missing_ip: int = Field(default=0, ge=0)
    missing_user: int = Field(default=0, ge=0)
    missing_user_agent: int = Field(default=0, ge=0)
    missing_email: int = Field(default=0, ge=0)

    # Duplicate detection
    unique_ids: int = Field(default=0, ge=0)
    duplicate_count: int = Field(default=0, ge=0)

    @property
    def missing_total(self) -> int:
        return self.missing_ip + self.missing_user + self.missing_user_agent + self.missing_email


class DataQualityReport(DataQualityMetrics):
    """DataQualityMetrics as returned by the reporting surface."""
    quality_score: float
    has_issues: bool


def is_high_risk_activity(activity: SuspiciousActivity) -> bool:
    """Any rolling count strictly above its threshold flags the snapshot."""
    return (
        activity.events_5m > HIGH_RISK_THRESHOLDS["events_5m"]
        or activity.events_ip_5m > HIGH_RISK_THRESHOLDS["events_ip_5m"]
        or activity.events_country_5m > HIGH_RISK_THRESHOLDS["events_country_5m"]
    )


def has_data_quality_issues(metrics: DataQualityMetrics) -> bool:
    """
    Check missing-data and duplicate rates against their thresholds.

    The two rates are judged separately; either one strictly above its
    threshold is an issue. Zero events is "no issues".
    """
    total = metrics.total_events
    if total == 0:
        return False

    missing_data_rate = metrics.missing_total / total
    duplicate_rate = metrics.duplicate_count / total

    return (
        missing_data_rate > QUALITY_THRESHOLDS["missing_data"]
        or duplicate_rate > QUALITY_THRESHOLDS["duplicates"]
    )


def quality_score(metrics: DataQualityMetrics) -> float:
    """
    Percentage of events free of missing fields and duplicates, 2 decimals.

    Unlike has_data_quality_issues this folds duplicates into the same
    numerator as the missing-field counts.
    """
    total = metrics.total_events
    if total == 0:
        return 100.0

    problems = metrics.missing_total + metrics.duplicate_count
    return round((1 - problems / total) * 100, 2)


def build_quality_report(metrics: DataQualityMetrics) -> DataQualityReport:
    return DataQualityReport(
        **metrics.model_dump(),
        quality_score=quality_score(metrics),
        has_issues=has_data_quality_issues(metrics),
    )
