"""Event publisher — CRUD services put domain changes on the durable stream.

Learn: Every write path (create event, buy ticket, ...) calls one of the
publish_* methods after its transaction commits. Publishing is
best-effort: a failed publish must never fail the write that triggered
it, so nothing here raises. Each call returns the stream entry ID, or
None when the channel is disabled or the XADD failed.

Messages are built from the same models the relay parses, so the two
sides cannot drift apart on field names.
"""

import json
from typing import Any, Mapping, Optional

import redis.asyncio as aioredis
import structlog

from campusevents.events.messages import (
    AnalyticsUpdated,
    EventCancelled,
    EventCreated,
    EventDeleted,
    EventUpdated,
    OrganizationUpdated,
    TicketPurchased,
)

logger = structlog.get_logger()

# Stream entries carry the JSON message in a single field.
STREAM_DATA_FIELD = "data"


class EventPublisher:
    """Writes domain-change messages to the Redis stream."""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        stream: str,
        maxlen: Optional[int] = None,
    ):
        self.redis = redis
        self.stream = stream
        self.maxlen = maxlen

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def publish_message(self, message: Mapping[str, Any]) -> Optional[str]:
        """Append a raw JSON-shaped message. Returns the entry ID or None."""
        if self.redis is None:
            logger.debug("publisher.disabled", message_type=message.get("type"))
            return None

        try:
            entry_id = await self.redis.xadd(
                self.stream,
                {STREAM_DATA_FIELD: json.dumps(dict(message))},
                maxlen=self.maxlen,
                approximate=True,
            )
        except Exception:
            logger.exception("publisher.failed", message_type=message.get("type"), stream=self.stream)
            return None

        logger.info("publisher.published", message_type=message.get("type"), entry_id=entry_id)
        return entry_id

    # ─── One call per message type ────────────────────────

    async def publish_event_created(
        self, event_id: int, organizer_id: Optional[int], campus_id: Optional[int]
    ) -> Optional[str]:
        return await self.publish_message(
            EventCreated(event_id=event_id, organizer_id=organizer_id, campus_id=campus_id).to_wire()
        )

    async def publish_event_updated(
        self, event_id: int, organizer_id: Optional[int] = None
    ) -> Optional[str]:
        return await self.publish_message(
            EventUpdated(event_id=event_id, organizer_id=organizer_id).to_wire()
        )

    async def publish_event_deleted(
        self, event_id: int, campus_id: Optional[int], organizer_id: Optional[int] = None
    ) -> Optional[str]:
        return await self.publish_message(
            EventDeleted(event_id=event_id, campus_id=campus_id, organizer_id=organizer_id).to_wire()
        )

    async def publish_event_cancelled(
        self, event_id: int, campus_id: Optional[int], organizer_id: Optional[int] = None
    ) -> Optional[str]:
        return await self.publish_message(
            EventCancelled(event_id=event_id, campus_id=campus_id, organizer_id=organizer_id).to_wire()
        )

    async def publish_ticket_purchased(
        self,
        event_id: int,
        user_id: int,
        ticket_type: str,
        tickets_sold: int,
        remaining_capacity: int,
        campus_id: Optional[int],
    ) -> Optional[str]:
        return await self.publish_message(
            TicketPurchased(
                event_id=event_id,
                user_id=user_id,
                ticket_type=ticket_type,
                tickets_sold=tickets_sold,
                remaining_capacity=remaining_capacity,
                campus_id=campus_id,
            ).to_wire()
        )

    async def publish_organization_updated(self, organization_id: int) -> Optional[str]:
        return await self.publish_message(
            OrganizationUpdated(organization_id=organization_id).to_wire()
        )

    async def publish_analytics_updated(
        self, event_id: int, organizer_id: Optional[int]
    ) -> Optional[str]:
        return await self.publish_message(
            AnalyticsUpdated(event_id=event_id, organizer_id=organizer_id).to_wire()
        )
