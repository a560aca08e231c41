"""Topic emitter — writes resolved payloads to the live-connection transport.

Learn: Emitting is a Redis PUBLISH on the topic's channel. Redis pub/sub is
fire-and-forget: if no browser is watching "event:5" right now, the
payload is simply dropped, which is fine for live UI updates. What is NOT
fine is a failed write (Redis down, timeout) — that raises DeliveryError
so the relay leaves the source message unacknowledged for redelivery.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from campusevents.realtime.channel import topic_channel
from campusevents.realtime.router import OutboundPayload

logger = structlog.get_logger()


class DeliveryError(Exception):
    """A payload could not be written to the transport. Retryable."""


class RedisTopicEmitter:
    def __init__(self, redis: aioredis.Redis, timeout_seconds: float = 5.0):
        self.redis = redis
        self.timeout_seconds = timeout_seconds

    async def emit(self, payload: OutboundPayload) -> int:
        """Publish one payload. Returns the number of Redis subscribers reached."""
        channel = topic_channel(payload.destination_topic)
        data = json.dumps(payload.to_envelope())
        try:
            receivers = await asyncio.wait_for(
                self.redis.publish(channel, data),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"emit to {payload.destination_topic} timed out") from e
        except Exception as e:
            raise DeliveryError(f"emit to {payload.destination_topic} failed: {e}") from e

        logger.debug("emitter.published", topic=payload.destination_topic, receivers=receivers)
        return receivers
