"""Tests for the closed routing table."""

import pytest

from telemetry.core.models.events import EventType
from telemetry.core.routing import (
    EVENTS_TABLE,
    TOPICS,
    UnknownEventTypeError,
    event_type_for_topic,
    route_for,
    topic_for,
)


@pytest.mark.parametrize("event_type,topic", [
    ("account_activity", "account-activity"),
    ("api_request", "api-requests"),
    ("email_send", "email-events"),
])
def test_known_types_route(event_type, topic):
    route = route_for(event_type)
    assert route.topic == topic
    assert route.table == EVENTS_TABLE == "events"
    assert topic_for(EventType(event_type)) == topic
    assert event_type_for_topic(topic).value == event_type


@pytest.mark.parametrize("bad", ["page_view", "", None, "ACCOUNT_ACTIVITY"])
def test_unknown_types_fail_loudly(bad):
    with pytest.raises(UnknownEventTypeError) as exc_info:
        route_for(bad)
    assert exc_info.value.event_type == bad


def test_unknown_topic_fails():
    with pytest.raises(UnknownEventTypeError):
        event_type_for_topic("txn.events")


def test_topics_cover_every_type():
    assert set(TOPICS) == {"account-activity", "api-requests", "email-events"}
    assert len(TOPICS) == len(EventType)
