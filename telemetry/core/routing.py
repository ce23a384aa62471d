"""
Event routing.

Maps an event type to the Kafka topic it travels on and the analytical table
it lands in. The table is closed: an unknown type is an error, never a silent
default.
"""

from dataclasses import dataclass
from typing import Dict, Union

from telemetry.core.models.events import EventType

EVENTS_TABLE = "events"


class UnknownEventTypeError(ValueError):
    """Event type tag is not one of the three known variants."""

    def __init__(self, event_type):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


@dataclass(frozen=True)
class Route:
    topic: str
    table: str = EVENTS_TABLE


ROUTES: Dict[EventType, Route] = {
    EventType.ACCOUNT_ACTIVITY: Route(topic="account-activity"),
    EventType.API_REQUEST: Route(topic="api-requests"),
    EventType.EMAIL_SEND: Route(topic="email-events"),
}

TOPICS = tuple(route.topic for route in ROUTES.values())


def route_for(event_type: Union[EventType, str]) -> Route:
    """
    Look up the route for an event type.

    Raises:
        UnknownEventTypeError: For any tag outside the closed set
    """
    try:
        return ROUTES[EventType(event_type)]
    except (ValueError, KeyError):
        raise UnknownEventTypeError(event_type) from None


def topic_for(event_type: Union[EventType, str]) -> str:
    return route_for(event_type).topic


def event_type_for_topic(topic: str) -> EventType:
    """Reverse lookup used by consumers to check a message arrived where it belongs."""
    for event_type, route in ROUTES.items():
        if route.topic == topic:
            return event_type
    raise UnknownEventTypeError(topic)
