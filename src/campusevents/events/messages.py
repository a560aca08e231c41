"""Domain-change messages — the wire contract of the durable channel.

Learn: The channel carries loosely-typed JSON ({"type": ..., "eventId": "5"}).
We decode it once, at the boundary, into one pydantic model per message
type. Downstream code matches on the model class instead of poking at
optional dict keys.

Rules:
- `type` is the only required field. A payload without it is malformed.
- Identifiers may arrive as ints, floats or numeric strings; anything we
  cannot turn into an int becomes None instead of failing the message.
- An unknown `type` decodes to UnrecognizedMessage, never to an error,
  so new producers cannot crash an older relay.
"""

import json
import math
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from campusevents.events.types import (
    ANALYTICS_UPDATED,
    EVENT_CANCELLED,
    EVENT_CREATED,
    EVENT_DELETED,
    EVENT_UPDATED,
    ORGANIZATION_UPDATED,
    TICKET_PURCHASED,
)


class MalformedMessageError(ValueError):
    """Payload cannot be decoded into any message. Redelivery will not help."""


# ─── Lenient field coercion ──────────────────────────────


def coerce_int(value: Any) -> Optional[int]:
    """Best-effort int conversion; unparseable input becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def coerce_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


LenientInt = Annotated[Optional[int], BeforeValidator(coerce_int)]
LenientStr = Annotated[Optional[str], BeforeValidator(coerce_str)]


# ─── Message variants ────────────────────────────────────


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the channel's JSON shape (camelCase, None omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class EventCreated(_Message):
    type: Literal["EVENT_CREATED"] = EVENT_CREATED
    event_id: LenientInt = Field(None, alias="eventId")
    campus_id: LenientInt = Field(None, alias="campusId")
    organizer_id: LenientInt = Field(None, alias="organizerId")


class EventUpdated(_Message):
    type: Literal["EVENT_UPDATED"] = EVENT_UPDATED
    event_id: LenientInt = Field(None, alias="eventId")
    campus_id: LenientInt = Field(None, alias="campusId")
    organizer_id: LenientInt = Field(None, alias="organizerId")


class EventDeleted(_Message):
    type: Literal["EVENT_DELETED"] = EVENT_DELETED
    event_id: LenientInt = Field(None, alias="eventId")
    campus_id: LenientInt = Field(None, alias="campusId")
    organizer_id: LenientInt = Field(None, alias="organizerId")


class EventCancelled(_Message):
    type: Literal["EVENT_CANCELLED"] = EVENT_CANCELLED
    event_id: LenientInt = Field(None, alias="eventId")
    campus_id: LenientInt = Field(None, alias="campusId")
    organizer_id: LenientInt = Field(None, alias="organizerId")


class TicketPurchased(_Message):
    type: Literal["TICKET_PURCHASED"] = TICKET_PURCHASED
    event_id: LenientInt = Field(None, alias="eventId")
    user_id: LenientInt = Field(None, alias="userId")
    campus_id: LenientInt = Field(None, alias="campusId")
    ticket_type: LenientStr = Field(None, alias="ticketType")
    tickets_sold: LenientInt = Field(None, alias="ticketsSold")
    remaining_capacity: LenientInt = Field(None, alias="remainingCapacity")


class OrganizationUpdated(_Message):
    type: Literal["ORGANIZATION_UPDATED"] = ORGANIZATION_UPDATED
    organization_id: LenientInt = Field(None, alias="organizationId")


class AnalyticsUpdated(_Message):
    type: Literal["ANALYTICS_UPDATED"] = ANALYTICS_UPDATED
    event_id: LenientInt = Field(None, alias="eventId")
    organizer_id: LenientInt = Field(None, alias="organizerId")


class UnrecognizedMessage(_Message):
    """Structurally valid message whose `type` this relay does not know."""

    type: str
    raw: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {**self.raw, "type": self.type}


DomainChangeMessage = Union[
    EventCreated,
    EventUpdated,
    EventDeleted,
    EventCancelled,
    TicketPurchased,
    OrganizationUpdated,
    AnalyticsUpdated,
    UnrecognizedMessage,
]

_VARIANTS: dict[str, type[_Message]] = {
    EVENT_CREATED: EventCreated,
    EVENT_UPDATED: EventUpdated,
    EVENT_DELETED: EventDeleted,
    EVENT_CANCELLED: EventCancelled,
    TICKET_PURCHASED: TicketPurchased,
    ORGANIZATION_UPDATED: OrganizationUpdated,
    ANALYTICS_UPDATED: AnalyticsUpdated,
}


# ─── Boundary decoder ────────────────────────────────────


def parse_message(raw: Union[bytes, str, Mapping[str, Any]]) -> DomainChangeMessage:
    """Decode a channel payload into its message variant.

    Raises MalformedMessageError for undecodable bytes, invalid or
    pathological JSON (oversized int literals, runaway nesting),
    non-object payloads, and a missing or non-string `type`.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"payload is not UTF-8: {e}") from e

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            # ValueError covers JSONDecodeError and the int digit limit.
            raise MalformedMessageError(f"payload is not decodable JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise MalformedMessageError(
            f"payload must be a JSON object, got {type(data).__name__}"
        )

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type.strip():
        raise MalformedMessageError("payload has no message type")

    variant = _VARIANTS.get(message_type)
    try:
        if variant is None:
            return UnrecognizedMessage(type=message_type, raw=dict(data))
        return variant.model_validate(data)
    except ValidationError as e:
        raise MalformedMessageError(str(e)) from e
