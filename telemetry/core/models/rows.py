"""
Flat row models written to the analytical store.

An AnalyticalRow carries the columns of all three event variants. Columns a
variant does not own are None, never a zero value, so "not applicable" stays
distinguishable from "applicable but zero".
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Column order of the `events` table
ROW_COLUMNS = (
    "id",
    "timestamp",
    "sourceIp",
    "userId",
    "type",
    # Account activity
    "action",
    "success",
    "failureReason",
    "userAgent",
    "geoCountry",
    "geoCity",
    "geoLatitude",
    "geoLongitude",
    # API request
    "method",
    "path",
    "statusCode",
    "responseTimeMs",
    "requestSize",
    "responseSize",
    # Email
    "recipientEmail",
    "templateId",
    "messageId",
    "bounceType",
)


class AnalyticalRow(BaseModel):
    """Denormalized, append-only projection of one validated event."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    timestamp: str  # YYYY-MM-DD HH:MM:SS.mmm, UTC
    source_ip: Optional[str] = Field(default=None, alias="sourceIp")
    user_id: Optional[str] = Field(default=None, alias="userId")
    type: str

    action: Optional[str] = None
    success: Optional[bool] = None
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    geo_country: Optional[str] = Field(default=None, alias="geoCountry")
    geo_city: Optional[str] = Field(default=None, alias="geoCity")
    geo_latitude: Optional[float] = Field(default=None, alias="geoLatitude")
    geo_longitude: Optional[float] = Field(default=None, alias="geoLongitude")

    method: Optional[str] = None
    path: Optional[str] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    response_time_ms: Optional[int] = Field(default=None, alias="responseTimeMs")
    request_size: Optional[int] = Field(default=None, alias="requestSize")
    response_size: Optional[int] = Field(default=None, alias="responseSize")

    recipient_email: Optional[str] = Field(default=None, alias="recipientEmail")
    template_id: Optional[str] = Field(default=None, alias="templateId")
    message_id: Optional[str] = Field(default=None, alias="messageId")
    bounce_type: Optional[str] = Field(default=None, alias="bounceType")

    def to_record(self) -> Dict[str, Any]:
        """Column name -> value, nulls included (JSONEachRow shape)."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AnalyticalRow":
        return cls.model_validate(record)
