"""
Event data models for the trust-and-safety telemetry pipeline.

These models define the structure of events produced to and consumed from the
Kafka topics. Every event shares the base fields and carries a `type` tag that
selects exactly one of three variants. Wire field names are camelCase and are
kept as aliases so that a parsed event dumps back to its original shape.
"""

import ipaddress
from enum import Enum
from typing import Annotated, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator

from telemetry.core.utils.event_time import EventTimeExtractor

UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"


class EventType(str, Enum):
    """Closed set of event type tags."""
    ACCOUNT_ACTIVITY = "account_activity"
    API_REQUEST = "api_request"
    EMAIL_SEND = "email_send"


EVENT_TYPES = tuple(t.value for t in EventType)

AccountAction = Literal[
    "login",
    "logout",
    "password_change",
    "two_factor_enabled",
    "two_factor_disabled",
    "account_created",
    "account_deleted",
]
HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
BounceType = Literal["hard", "soft", "none"]

ACCOUNT_ACTIONS = get_args(AccountAction)
HTTP_METHODS = get_args(HttpMethod)
BOUNCE_TYPES = get_args(BounceType)


class BaseEvent(BaseModel):
    """Fields shared by every event variant."""

    # Fields of other variants are ignored rather than rejected
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(..., pattern=UUID_PATTERN, description="Globally unique event id")
    timestamp: str = Field(..., description="ISO-8601 UTC creation time")
    source_ip: str = Field(..., alias="sourceIp", description="IPv4 address of the actor")
    user_id: str = Field(..., alias="userId", pattern=UUID_PATTERN, description="Acting principal")

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        EventTimeExtractor.parse_iso(v)
        return v

    @field_validator("source_ip")
    @classmethod
    def validate_source_ip(cls, v: str) -> str:
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError("Invalid IPv4 address")
        return v

    def to_wire(self) -> dict:
        """Dump with camelCase field names, dropping absent optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class GeoLocation(BaseModel):
    """Geo location attached to account activity events."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2")
    city: str = Field(..., strict=True)
    latitude: float = Field(..., ge=-90, le=90, strict=True)
    longitude: float = Field(..., ge=-180, le=180, strict=True)


class AccountActivityEvent(BaseEvent):
    """Login, logout and account lifecycle actions."""
    type: Literal["account_activity"]
    action: AccountAction
    success: bool = Field(..., strict=True)
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    user_agent: str = Field(..., alias="userAgent", strict=True)
    geo_location: GeoLocation = Field(..., alias="geoLocation")


class ApiRequestEvent(BaseEvent):
    """A single API call with timing and size information."""
    type: Literal["api_request"]
    method: HttpMethod
    path: str = Field(..., strict=True)
    status_code: int = Field(..., alias="statusCode", ge=100, le=599, strict=True)
    response_time_ms: int = Field(..., alias="responseTimeMs", ge=0, strict=True)
    request_size: int = Field(..., alias="requestSize", ge=0, strict=True)
    response_size: int = Field(..., alias="responseSize", ge=0, strict=True)
    user_agent: str = Field(..., alias="userAgent", strict=True)


class EmailEvent(BaseEvent):
    """An outbound email delivery attempt."""
    type: Literal["email_send"]
    recipient_email: EmailStr = Field(..., alias="recipientEmail")
    template_id: str = Field(..., alias="templateId", strict=True)
    success: bool = Field(..., strict=True)
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    message_id: Optional[str] = Field(default=None, alias="messageId", pattern=UUID_PATTERN)
    bounce_type: BounceType = Field(..., alias="bounceType")


Event = Annotated[
    Union[AccountActivityEvent, ApiRequestEvent, EmailEvent],
    Field(discriminator="type"),
]

EVENT_ADAPTER: TypeAdapter = TypeAdapter(Event)


def is_account_activity_event(event: BaseEvent) -> bool:
    return isinstance(event, AccountActivityEvent)


def is_api_request_event(event: BaseEvent) -> bool:
    return isinstance(event, ApiRequestEvent)


def is_email_event(event: BaseEvent) -> bool:
    return isinstance(event, EmailEvent)
