"""Test fixtures — in-memory fakes for Redis, the read model and the emitter.

Learn: The realtime stack only touches the outside world through three
seams: the Redis client (stream + pub/sub), the EventReadModel and the
topic emitter. Each gets a small recording fake here so tests run
without Redis or Postgres and can assert on exactly what was sent.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import pytest
from redis.exceptions import ResponseError

from campusevents.realtime.consumer import NotificationRelay, RelayConfig
from campusevents.realtime.emitter import DeliveryError
from campusevents.realtime.read_model import EventCost, EventSnapshot
from campusevents.realtime.registry import SessionRegistry
from campusevents.realtime.router import NotificationRouter, OutboundPayload


# ─── Fakes ────────────────────────────────────────────────


class FakeRedis:
    """Records stream and pub/sub calls. Only the commands the app uses."""

    def __init__(self) -> None:
        self.streams: dict[str, list[tuple[str, dict]]] = defaultdict(list)
        self.groups: set[tuple[str, str]] = set()
        self.read_positions: dict[tuple[str, str], int] = defaultdict(int)
        self.acked: list[str] = []
        self.published: list[tuple[str, str]] = []
        self.reclaimable: list[tuple[str, Optional[dict]]] = []
        self.xadd_error: Optional[Exception] = None
        self.ack_error: Optional[Exception] = None
        self.publish_error: Optional[Exception] = None
        self.publish_delay: float = 0.0
        self.closed = False
        self._seq = 0

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        if self.xadd_error is not None:
            raise self.xadd_error
        self._seq += 1
        entry_id = f"{self._seq}-0"
        self.streams[name].append((entry_id, dict(fields)))
        return entry_id

    async def xgroup_create(self, name, groupname, id="0", mkstream=False):
        if (name, groupname) in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups.add((name, groupname))
        return True

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        name = next(iter(streams))
        position = self.read_positions[(name, groupname)]
        entries = self.streams[name][position:position + (count or 1000)]
        if not entries:
            await asyncio.sleep((block or 0) / 1000 or 0.001)
            return []
        self.read_positions[(name, groupname)] = position + len(entries)
        return [[name, entries]]

    async def xack(self, name, groupname, *ids):
        if self.ack_error is not None:
            raise self.ack_error
        self.acked.extend(ids)
        return len(ids)

    async def xautoclaim(self, name, groupname, consumername, min_idle_time, start_id="0-0", count=None):
        claimed, self.reclaimable = self.reclaimable, []
        return ["0-0", claimed, []]

    async def publish(self, channel, data):
        if self.publish_delay:
            await asyncio.sleep(self.publish_delay)
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((channel, data))
        return 1


class FakePubSub:
    """Records channel subscriptions made by a WebSocket connection."""

    def __init__(self) -> None:
        self.channels: set[str] = set()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.update(channels)

    async def unsubscribe(self, *channels):
        if channels:
            self.channels.difference_update(channels)
        else:
            self.channels.clear()

    async def aclose(self):
        self.closed = True


class FakeReadModel:
    def __init__(self, snapshots: Optional[dict[int, EventSnapshot]] = None):
        self.snapshots = snapshots or {}
        self.error: Optional[Exception] = None
        self.calls: list[int] = []

    async def get_event_by_id(self, event_id: int) -> Optional[EventSnapshot]:
        self.calls.append(event_id)
        if self.error is not None:
            raise self.error
        return self.snapshots.get(event_id)


class FakeEmitter:
    """Collects emitted payloads; can fail or stall on demand."""

    def __init__(self) -> None:
        self.emitted: list[OutboundPayload] = []
        self.fail_topics: set[str] = set()
        self.gate: Optional[asyncio.Event] = None

    async def emit(self, payload: OutboundPayload) -> int:
        if self.gate is not None:
            await self.gate.wait()
        if payload.destination_topic in self.fail_topics:
            raise DeliveryError(f"emit to {payload.destination_topic} failed")
        self.emitted.append(payload)
        return 1

    def topics(self) -> list[str]:
        return [p.destination_topic for p in self.emitted]


# ─── Fixtures ─────────────────────────────────────────────


def make_snapshot(**overrides: Any) -> EventSnapshot:
    fields = dict(
        id=5,
        organizer_id=7,
        campus_id=3,
        capacity=100,
        organizer_name="Chess Club",
        campus_name="North Campus",
        description="Spring open tournament",
        start_time=datetime(2026, 4, 1, 18, 0),
        end_time=datetime(2026, 4, 1, 22, 0),
        tickets_sold=10,
        costs=[EventCost(type="General", cost=Decimal("0.00")), EventCost(type="VIP", cost=Decimal("25.50"))],
        tags=["Games", "Social"],
    )
    fields.update(overrides)
    return EventSnapshot(**fields)


@pytest.fixture()
def snapshot() -> EventSnapshot:
    return make_snapshot()


@pytest.fixture()
def read_model(snapshot) -> FakeReadModel:
    return FakeReadModel({snapshot.id: snapshot})


@pytest.fixture()
def router(read_model) -> NotificationRouter:
    return NotificationRouter(read_model)


@pytest.fixture()
def emitter() -> FakeEmitter:
    return FakeEmitter()


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def pubsub() -> FakePubSub:
    return FakePubSub()


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def relay_config() -> RelayConfig:
    return RelayConfig(
        stream="test:updates",
        group="test-relay",
        consumer="test-consumer",
        max_concurrent=4,
        batch_size=8,
        block_ms=5,
        redelivery_idle_ms=60_000,
        shutdown_timeout=1.0,
    )


@pytest.fixture()
def relay(fake_redis, router, emitter, relay_config) -> NotificationRelay:
    return NotificationRelay(fake_redis, router, emitter, relay_config)
