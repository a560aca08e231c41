"""Message type and topic name constants.

Learn: Centralizing message types and topic names as constants prevents
typos between the publisher (which writes them) and the router (which
switches on them). Topic helpers are the only place a topic string is built.
"""

# ─── Domain-change message types (durable channel) ──────

EVENT_CREATED = "EVENT_CREATED"
EVENT_UPDATED = "EVENT_UPDATED"
EVENT_DELETED = "EVENT_DELETED"
EVENT_CANCELLED = "EVENT_CANCELLED"
TICKET_PURCHASED = "TICKET_PURCHASED"
ORGANIZATION_UPDATED = "ORGANIZATION_UPDATED"
ANALYTICS_UPDATED = "ANALYTICS_UPDATED"

MESSAGE_TYPES = frozenset({
    EVENT_CREATED,
    EVENT_UPDATED,
    EVENT_DELETED,
    EVENT_CANCELLED,
    TICKET_PURCHASED,
    ORGANIZATION_UPDATED,
    ANALYTICS_UPDATED,
})

# ─── Outbound-only payload types ─────────────────────────

CAPACITY_UPDATED = "CAPACITY_UPDATED"

# ─── Topics (live client destinations) ───────────────────

ALL_EVENTS = "all-events"


def event_topic(event_id: int) -> str:
    return f"event:{event_id}"


def event_analytics_topic(event_id: int) -> str:
    return f"event:{event_id}:analytics"


def campus_topic(campus_id: int) -> str:
    return f"campus:{campus_id}"


def organization_topic(organization_id: int) -> str:
    return f"organization:{organization_id}"


def organization_analytics_topic(organization_id: int) -> str:
    return f"organization:{organization_id}:analytics"


def user_tickets_topic(user_id: int) -> str:
    return f"user:{user_id}:tickets"
