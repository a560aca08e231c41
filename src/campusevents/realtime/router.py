"""Notification router — decides which live topics a change reaches.

Learn: The router turns one DomainChangeMessage into zero or more
OutboundPayloads. It never talks to sockets or to the stream; the relay
does that with whatever the router returns. That keeps the routing
policy a (nearly) pure function that is easy to test and safe to retry.

Routing table:

  EVENT_CREATED        all-events, campus:{c}?, organization:{o}?     + snapshot
  EVENT_UPDATED        all-events, event:{e}, campus:{c}, organization:{o}
                       (campus/organizer filled from the snapshot)     + snapshot
  EVENT_DELETED        all-events, event:{e}, campus:{c}, organization:{o}
  EVENT_CANCELLED      same as EVENT_DELETED
  TICKET_PURCHASED     user:{u}:tickets      (private confirmation)
                       event:{e}, all-events, campus:{c}  (CAPACITY_UPDATED)
  ORGANIZATION_UPDATED all-events, organization:{id}
  ANALYTICS_UPDATED    organization:{o}, organization:{o}:analytics,
                       event:{e}:analytics
  anything else        nothing (logged)

Privacy: the capacity update that goes to shared topics carries counts
only. The buyer's identity and ticket type go to the buyer's own queue.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from campusevents.events.messages import (
    AnalyticsUpdated,
    DomainChangeMessage,
    EventCancelled,
    EventCreated,
    EventDeleted,
    EventUpdated,
    OrganizationUpdated,
    TicketPurchased,
    UnrecognizedMessage,
)
from campusevents.events.types import (
    ALL_EVENTS,
    CAPACITY_UPDATED,
    TICKET_PURCHASED,
    campus_topic,
    event_analytics_topic,
    event_topic,
    organization_analytics_topic,
    organization_topic,
    user_tickets_topic,
)
from campusevents.realtime.read_model import EventReadModel, EventSnapshot, ReadModelError

logger = structlog.get_logger()


@dataclass(frozen=True)
class OutboundPayload:
    """A payload addressed to exactly one live topic."""

    destination_topic: str
    body: dict[str, Any]

    def to_envelope(self) -> dict[str, Any]:
        return {"topic": self.destination_topic, "body": self.body}


def _body(message_type: str, **fields: Any) -> dict[str, Any]:
    """Payload body with the type discriminator; None-valued fields dropped."""
    body = {"type": message_type}
    body.update({k: v for k, v in fields.items() if v is not None})
    return body


def _fan_out(topics: list[Optional[str]], body: dict[str, Any]) -> list[OutboundPayload]:
    """One payload per resolvable topic, each with its own copy of the body."""
    return [OutboundPayload(topic, dict(body)) for topic in topics if topic is not None]


def _maybe(topic_fn, value: Optional[int]) -> Optional[str]:
    return topic_fn(value) if value is not None else None


class NotificationRouter:
    """Maps domain-change messages to topic-addressed payloads."""

    def __init__(self, read_model: EventReadModel):
        self.read_model = read_model
        self._handlers = {
            EventCreated: self._event_created,
            EventUpdated: self._event_updated,
            EventDeleted: self._event_removed,
            EventCancelled: self._event_removed,
            TicketPurchased: self._ticket_purchased,
            OrganizationUpdated: self._organization_updated,
            AnalyticsUpdated: self._analytics_updated,
        }

    async def route(self, message: DomainChangeMessage) -> list[OutboundPayload]:
        """Resolve every outbound payload for a message.

        Unknown message types yield an empty list. Read-model failures
        degrade to unenriched payloads; anything else propagates so the
        relay can have the message redelivered.
        """
        handler = self._handlers.get(type(message))
        if handler is None:
            if isinstance(message, UnrecognizedMessage):
                logger.warning("router.unknown_type", message_type=message.type)
            else:
                logger.warning("router.unhandled_message", message_class=type(message).__name__)
            return []

        payloads = await handler(message)
        logger.debug(
            "router.routed",
            message_type=message.type,
            topics=[p.destination_topic for p in payloads],
        )
        return payloads

    # ─── Enrichment ───────────────────────────────────────

    async def _snapshot(self, event_id: Optional[int], message_type: str) -> Optional[EventSnapshot]:
        if event_id is None:
            return None
        try:
            snapshot = await self.read_model.get_event_by_id(event_id)
        except ReadModelError as e:
            logger.warning(
                "router.enrichment_failed",
                message_type=message_type,
                event_id=event_id,
                error=str(e),
            )
            return None
        if snapshot is None:
            logger.info("router.enrichment_miss", message_type=message_type, event_id=event_id)
        return snapshot

    # ─── Event lifecycle ──────────────────────────────────

    async def _event_created(self, message: EventCreated) -> list[OutboundPayload]:
        logger.info(
            "router.event_created",
            event_id=message.event_id,
            campus_id=message.campus_id,
            organizer_id=message.organizer_id,
        )
        snapshot = await self._snapshot(message.event_id, message.type)
        body = _body(
            message.type,
            eventId=message.event_id,
            campusId=message.campus_id,
            organizerId=message.organizer_id,
            event=snapshot.to_payload() if snapshot else None,
        )
        return _fan_out(
            [
                ALL_EVENTS,
                _maybe(campus_topic, message.campus_id),
                _maybe(organization_topic, message.organizer_id),
            ],
            body,
        )

    async def _event_updated(self, message: EventUpdated) -> list[OutboundPayload]:
        logger.info("router.event_updated", event_id=message.event_id)
        snapshot = await self._snapshot(message.event_id, message.type)

        campus_id = message.campus_id
        organizer_id = message.organizer_id
        if snapshot is not None:
            campus_id = campus_id if campus_id is not None else snapshot.campus_id
            organizer_id = organizer_id if organizer_id is not None else snapshot.organizer_id

        body = _body(
            message.type,
            eventId=message.event_id,
            campusId=campus_id,
            organizerId=organizer_id,
            event=snapshot.to_payload() if snapshot else None,
        )
        return _fan_out(
            [
                ALL_EVENTS,
                _maybe(event_topic, message.event_id),
                _maybe(campus_topic, campus_id),
                _maybe(organization_topic, organizer_id),
            ],
            body,
        )

    async def _event_removed(self, message: EventDeleted | EventCancelled) -> list[OutboundPayload]:
        # The event may no longer be readable, so no snapshot lookup.
        logger.info("router.event_removed", message_type=message.type, event_id=message.event_id)
        body = _body(
            message.type,
            eventId=message.event_id,
            campusId=message.campus_id,
            organizerId=message.organizer_id,
        )
        return _fan_out(
            [
                ALL_EVENTS,
                _maybe(event_topic, message.event_id),
                _maybe(campus_topic, message.campus_id),
                _maybe(organization_topic, message.organizer_id),
            ],
            body,
        )

    # ─── Tickets ──────────────────────────────────────────

    async def _ticket_purchased(self, message: TicketPurchased) -> list[OutboundPayload]:
        logger.info(
            "router.ticket_purchased",
            event_id=message.event_id,
            tickets_sold=message.tickets_sold,
            remaining_capacity=message.remaining_capacity,
        )
        payloads: list[OutboundPayload] = []

        if message.user_id is not None:
            confirmation = _body(
                TICKET_PURCHASED,
                eventId=message.event_id,
                ticketType=message.ticket_type,
                status="confirmed",
            )
            payloads.append(OutboundPayload(user_tickets_topic(message.user_id), confirmation))

        capacity_update = _body(
            CAPACITY_UPDATED,
            eventId=message.event_id,
            ticketsSold=message.tickets_sold,
            availableCapacity=message.remaining_capacity,
        )
        payloads.extend(
            _fan_out(
                [
                    _maybe(event_topic, message.event_id),
                    ALL_EVENTS,
                    _maybe(campus_topic, message.campus_id),
                ],
                capacity_update,
            )
        )
        return payloads

    # ─── Organizations + analytics ────────────────────────

    async def _organization_updated(self, message: OrganizationUpdated) -> list[OutboundPayload]:
        logger.info("router.organization_updated", organization_id=message.organization_id)
        body = _body(message.type, organizationId=message.organization_id)
        return _fan_out(
            [ALL_EVENTS, _maybe(organization_topic, message.organization_id)],
            body,
        )

    async def _analytics_updated(self, message: AnalyticsUpdated) -> list[OutboundPayload]:
        logger.info(
            "router.analytics_updated",
            event_id=message.event_id,
            organizer_id=message.organizer_id,
        )
        body = _body(message.type, eventId=message.event_id, organizerId=message.organizer_id)
        return _fan_out(
            [
                _maybe(organization_topic, message.organizer_id),
                _maybe(organization_analytics_topic, message.organizer_id),
                _maybe(event_analytics_topic, message.event_id),
            ],
            body,
        )
