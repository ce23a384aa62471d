"""
Row normalization.

Projects a validated event into the two shapes the sinks accept:

- AnalyticalRow for the append-only `events` table (flat, null-padded,
  `YYYY-MM-DD HH:MM:SS.mmm` timestamp)
- a search document for the search index (event shape, timestamp as integer
  Unix epoch seconds for numeric range filters)

Both projections are deterministic, and `row_to_event` recovers the original
event from a row.
"""

from typing import Any, Dict

from telemetry.core.models.events import (
    EVENT_ADAPTER,
    AccountActivityEvent,
    ApiRequestEvent,
    EmailEvent,
    Event,
)
from telemetry.core.models.rows import AnalyticalRow
from telemetry.core.routing import UnknownEventTypeError
from telemetry.core.utils.event_time import EventTimeExtractor


def to_analytical_row(event: Event) -> AnalyticalRow:
    """Flatten any event variant into the wide row, nulling foreign columns."""
    values: Dict[str, Any] = {
        "id": event.id,
        "timestamp": EventTimeExtractor.to_storage(event.timestamp),
        "source_ip": event.source_ip,
        "user_id": event.user_id,
        "type": event.type,
    }

    if isinstance(event, AccountActivityEvent):
        values.update(
            action=event.action,
            success=event.success,
            failure_reason=event.failure_reason,
            user_agent=event.user_agent,
            geo_country=event.geo_location.country,
            geo_city=event.geo_location.city,
            geo_latitude=event.geo_location.latitude,
            geo_longitude=event.geo_location.longitude,
        )
    elif isinstance(event, ApiRequestEvent):
        values.update(
            method=event.method,
            path=event.path,
            status_code=event.status_code,
            response_time_ms=event.response_time_ms,
            request_size=event.request_size,
            response_size=event.response_size,
            user_agent=event.user_agent,
        )
    elif isinstance(event, EmailEvent):
        values.update(
            recipient_email=event.recipient_email,
            template_id=event.template_id,
            success=event.success,
            failure_reason=event.failure_reason,
            message_id=event.message_id,
            bounce_type=event.bounce_type,
        )
    else:
        raise UnknownEventTypeError(getattr(event, "type", None))

    return AnalyticalRow(**values)


def to_search_document(event: Event) -> Dict[str, Any]:
    """Event in wire shape with `timestamp` as integer epoch seconds."""
    document = event.to_wire()
    document["timestamp"] = EventTimeExtractor.to_epoch_seconds(event.timestamp)
    return document


def row_to_event(row: AnalyticalRow) -> Event:
    """
    Rebuild the typed event from a stored row.

    The storage timestamp keeps millisecond precision, so the recovered
    `timestamp` is the ISO form of that instant.
    """
    payload: Dict[str, Any] = {
        "id": row.id,
        "timestamp": EventTimeExtractor.to_iso(EventTimeExtractor.from_storage(row.timestamp)),
        "sourceIp": row.source_ip,
        "userId": row.user_id,
        "type": row.type,
    }

    if row.type == "account_activity":
        payload.update(
            action=row.action,
            success=row.success,
            failureReason=row.failure_reason,
            userAgent=row.user_agent,
            geoLocation={
                "country": row.geo_country,
                "city": row.geo_city,
                "latitude": row.geo_latitude,
                "longitude": row.geo_longitude,
            },
        )
    elif row.type == "api_request":
        payload.update(
            method=row.method,
            path=row.path,
            statusCode=row.status_code,
            responseTimeMs=row.response_time_ms,
            requestSize=row.request_size,
            responseSize=row.response_size,
            userAgent=row.user_agent,
        )
    elif row.type == "email_send":
        payload.update(
            recipientEmail=row.recipient_email,
            templateId=row.template_id,
            success=row.success,
            failureReason=row.failure_reason,
            messageId=row.message_id,
            bounceType=row.bounce_type,
        )
    else:
        raise UnknownEventTypeError(row.type)

    return EVENT_ADAPTER.validate_python(payload)
