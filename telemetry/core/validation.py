"""
Event validation.

Turns an untyped payload (parsed JSON, raw bytes or a JSON string) into a
typed event, or reports every failing field at once. Validation is pure and
side-effect free, so it is safe to call from any number of ingestion workers.
"""

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import ValidationError

from telemetry.core.models.events import (
    EVENT_ADAPTER,
    EVENT_TYPES,
    AccountActivityEvent,
    ApiRequestEvent,
    EmailEvent,
    Event,
)


@dataclass(frozen=True)
class FieldError:
    """A single failing field. `field` is a dotted wire path, e.g. `geoLocation.latitude`."""
    field: str
    message: str
    code: str = "invalid"

    def __str__(self) -> str:
        return f"{self.field or '<root>'}: {self.message}"


class SchemaValidationError(ValueError):
    """Payload failed shape, type, range or pattern checks."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors) or "invalid event")

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.errors]


@dataclass
class ValidationResult:
    """Either a typed event or the complete list of field errors."""
    event: Optional[Event] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.event is not None and not self.errors


def _field_path(loc: tuple) -> str:
    parts = [str(p) for p in loc]
    # Tagged-union errors are prefixed with the tag that was matched
    if parts and parts[0] in EVENT_TYPES:
        parts = parts[1:]
    return ".".join(parts)


def _from_pydantic(exc: ValidationError) -> List[FieldError]:
    errors = []
    for err in exc.errors():
        code = err.get("type", "invalid")
        path = _field_path(err.get("loc", ()))
        if code in ("union_tag_not_found", "union_tag_invalid"):
            path = "type"
        errors.append(FieldError(field=path, message=err.get("msg", "invalid"), code=code))
    return errors


def _outcome_field_errors(event: Event) -> List[FieldError]:
    """Success must agree with the fields that only make sense on one outcome."""
    errors = []
    if isinstance(event, AccountActivityEvent):
        if event.success and event.failure_reason is not None:
            errors.append(FieldError("failureReason", "must be absent when success is true", "outcome_mismatch"))
        if not event.success and event.failure_reason is None:
            errors.append(FieldError("failureReason", "required when success is false", "outcome_mismatch"))
    elif isinstance(event, EmailEvent):
        if event.success != (event.message_id is not None):
            expected = "required" if event.success else "must be absent"
            errors.append(FieldError("messageId", f"{expected} when success is {str(event.success).lower()}", "outcome_mismatch"))
        if event.success != (event.bounce_type == "none"):
            expected = "'none'" if event.success else "'hard' or 'soft'"
            errors.append(FieldError("bounceType", f"must be {expected} when success is {str(event.success).lower()}", "outcome_mismatch"))
    elif not isinstance(event, ApiRequestEvent):
        raise TypeError(f"Unhandled event class: {type(event).__name__}")
    return errors


def check_event(payload: Any, enforce_outcome_fields: bool = True) -> ValidationResult:
    """
    Validate a payload without raising.

    Args:
        payload: Parsed JSON value (dict expected), JSON string or bytes
        enforce_outcome_fields: Reject events whose success flag disagrees
            with failureReason / messageId / bounceType

    Returns:
        ValidationResult with either the typed event or every field error
    """
    if isinstance(payload, (bytes, bytearray, str)):
        try:
            payload = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return ValidationResult(errors=[FieldError("", f"Malformed JSON: {e}", "json_invalid")])

    if not isinstance(payload, dict):
        kind = "null" if payload is None else type(payload).__name__
        return ValidationResult(errors=[FieldError("", f"Expected an object, got {kind}", "object_type")])

    try:
        event = EVENT_ADAPTER.validate_python(payload)
    except ValidationError as e:
        return ValidationResult(errors=_from_pydantic(e))

    if enforce_outcome_fields:
        errors = _outcome_field_errors(event)
        if errors:
            return ValidationResult(errors=errors)

    return ValidationResult(event=event)


def validate_event(payload: Any, enforce_outcome_fields: bool = True) -> Event:
    """
    Validate a payload and return the typed event.

    Raises:
        SchemaValidationError: With one entry per failing field
    """
    result = check_event(payload, enforce_outcome_fields=enforce_outcome_fields)
    if not result.ok:
        raise SchemaValidationError(result.errors)
    return result.event

