"""Read model — current event snapshots used to enrich notifications.

Learn: A change notification only says "event 5 was updated". Clients on
the dashboard need the whole card (names, times, prices, capacity) to
render the change, so the relay looks the event up once and embeds the
snapshot in every topic payload instead of making each browser re-query.

The relay only depends on the EventReadModel protocol. SqlEventReadModel
is the production implementation (raw SQL over the app's async engine);
tests pass in a fake.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger()


class ReadModelError(Exception):
    """Lookup failed (timeout, connection error). Callers treat it as absent."""


class EventCost(BaseModel):
    type: str
    cost: Decimal = Decimal("0")


class EventSnapshot(BaseModel):
    id: int
    organizer_id: int
    campus_id: int
    capacity: int = 0
    organizer_name: Optional[str] = None
    campus_name: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    tickets_sold: int = 0
    costs: list[EventCost] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @property
    def available_capacity(self) -> int:
        return max(self.capacity - self.tickets_sold, 0)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe shape embedded under "event" in outbound payloads."""
        return {
            "id": self.id,
            "organizerId": self.organizer_id,
            "organizerName": self.organizer_name or "",
            "campusId": self.campus_id,
            "campusName": self.campus_name or "",
            "capacity": self.capacity,
            "description": self.description or "",
            "startTime": self.start_time.isoformat() if self.start_time else "",
            "endTime": self.end_time.isoformat() if self.end_time else "",
            "ticketsSold": self.tickets_sold,
            "availableCapacity": self.available_capacity,
            "tags": list(self.tags),
            "costs": [{"type": c.type, "cost": float(c.cost)} for c in self.costs],
        }


class EventReadModel(Protocol):
    async def get_event_by_id(self, event_id: int) -> Optional[EventSnapshot]:
        """Return the current snapshot, or None if the event does not exist."""
        ...


# ─── SQL implementation ──────────────────────────────────

_EVENT_SQL = text("""
    SELECT e.id, e.organizer_id, e.campus_id, e.capacity, e.description,
           e.start_time, e.end_time,
           o.name AS organizer_name, c.name AS campus_name
    FROM event e
    JOIN organization o ON e.organizer_id = o.id
    JOIN campus c ON e.campus_id = c.id
    WHERE e.id = :event_id
""")

_COSTS_SQL = text("SELECT type, cost FROM cost WHERE event_id = :event_id ORDER BY type")

_TICKETS_SOLD_SQL = text("SELECT COUNT(*) FROM ticket WHERE event_id = :event_id")

_TAGS_SQL = text("""
    SELECT t.name
    FROM event_tag et
    JOIN tag t ON et.tag_id = t.id
    WHERE et.event_id = :event_id
    ORDER BY t.name
""")


class SqlEventReadModel:
    """Fetches event snapshots with raw SQL on a read-only connection."""

    def __init__(self, engine: AsyncEngine, timeout_seconds: float = 5.0):
        self.engine = engine
        self.timeout_seconds = timeout_seconds

    async def get_event_by_id(self, event_id: int) -> Optional[EventSnapshot]:
        try:
            return await asyncio.wait_for(self._fetch(event_id), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ReadModelError(f"event {event_id} lookup timed out") from e
        except ReadModelError:
            raise
        except Exception as e:
            raise ReadModelError(f"event {event_id} lookup failed: {e}") from e

    async def _fetch(self, event_id: int) -> Optional[EventSnapshot]:
        params = {"event_id": event_id}
        async with self.engine.connect() as conn:
            row = (await conn.execute(_EVENT_SQL, params)).mappings().first()
            if row is None:
                return None

            costs = (await conn.execute(_COSTS_SQL, params)).mappings().all()
            tickets_sold = (await conn.execute(_TICKETS_SOLD_SQL, params)).scalar_one()
            tags = (await conn.execute(_TAGS_SQL, params)).scalars().all()

        return EventSnapshot(
            id=row["id"],
            organizer_id=row["organizer_id"],
            campus_id=row["campus_id"],
            capacity=row["capacity"],
            organizer_name=row["organizer_name"],
            campus_name=row["campus_name"],
            description=row["description"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            tickets_sold=tickets_sold or 0,
            costs=[EventCost(type=c["type"], cost=c["cost"]) for c in costs],
            tags=list(tags),
        )
