"""Realtime component wiring.

Learn: Every realtime component is built exactly once here and stored on
app.state.realtime. WebSocket handlers, the relay and the health endpoint
all receive the same SessionRegistry instance through it — no module-level
singletons hold connection state.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from campusevents.config import Settings
from campusevents.db.engine import create_engine
from campusevents.realtime.channel import close_redis, connect_redis
from campusevents.realtime.consumer import NotificationRelay, RelayConfig
from campusevents.realtime.emitter import RedisTopicEmitter
from campusevents.realtime.publisher import EventPublisher
from campusevents.realtime.read_model import SqlEventReadModel
from campusevents.realtime.registry import SessionRegistry
from campusevents.realtime.router import NotificationRouter

logger = structlog.get_logger()


@dataclass
class Realtime:
    registry: SessionRegistry
    publisher: EventPublisher
    relay: NotificationRelay
    redis: Optional[aioredis.Redis] = None
    engine: Optional[AsyncEngine] = None

    async def start(self) -> None:
        await self.relay.start()

    async def shutdown(self) -> None:
        await self.relay.stop()
        await close_redis(self.redis)
        if self.engine is not None:
            await self.engine.dispose()

    def status(self) -> dict:
        return {
            "channel": "ok" if self.redis is not None else "disabled",
            "active_sessions": self.registry.get_active_session_count(),
            "active_users": self.registry.get_active_user_count(),
            "relay": self.relay.get_stats(),
        }


def relay_config(settings: Settings) -> RelayConfig:
    return RelayConfig(
        stream=settings.stream_name,
        group=settings.consumer_group,
        consumer=settings.consumer_name,
        max_concurrent=settings.max_concurrent_messages,
        batch_size=settings.read_batch_size,
        block_ms=settings.read_block_ms,
        redelivery_idle_ms=settings.redelivery_idle_ms,
        shutdown_timeout=settings.shutdown_timeout_seconds,
    )


async def build_realtime(settings: Settings) -> Realtime:
    """Connect to Redis (if configured) and assemble the realtime stack.

    Never raises on an unreachable channel: the relay and publisher come
    back disabled instead.
    """
    redis = await connect_redis(settings)
    engine = create_engine(settings)

    router = NotificationRouter(
        SqlEventReadModel(engine, timeout_seconds=settings.read_model_timeout_seconds)
    )
    emitter = (
        RedisTopicEmitter(redis, timeout_seconds=settings.emit_timeout_seconds)
        if redis is not None
        else None
    )

    return Realtime(
        registry=SessionRegistry(),
        publisher=EventPublisher(redis, settings.stream_name, maxlen=settings.stream_maxlen),
        relay=NotificationRelay(redis, router, emitter, relay_config(settings)),
        redis=redis,
        engine=engine,
    )
