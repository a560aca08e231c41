"""Redis connection for the durable stream and live topic fan-out.

Learn: Redis is optional. If it is unconfigured or unreachable at startup
we log it and hand back None; the relay and publisher then run disabled
and the rest of the app keeps serving requests.

Topic naming: campusevents:topic:{topic}
Each live topic ("all-events", "event:5", "user:42:tickets") maps to one
Redis pub/sub channel, so every app instance sees every emit.
"""

from typing import Optional

import redis.asyncio as aioredis
import structlog

from campusevents.config import Settings

logger = structlog.get_logger()

TOPIC_CHANNEL_PREFIX = "campusevents:topic:"


def topic_channel(topic: str) -> str:
    return f"{TOPIC_CHANNEL_PREFIX}{topic}"


def channel_topic(channel: str) -> str:
    """Inverse of topic_channel()."""
    return channel[len(TOPIC_CHANNEL_PREFIX):] if channel.startswith(TOPIC_CHANNEL_PREFIX) else channel


async def connect_redis(settings: Settings) -> Optional[aioredis.Redis]:
    """Open and verify a Redis connection pool, or return None if unavailable."""
    if not settings.channel_configured:
        logger.warning("channel.disabled", reason="not configured")
        return None

    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("channel.unavailable", url=settings.redis_url, error=str(e))
        await client.aclose()
        return None

    logger.info("channel.connected", url=settings.redis_url)
    return client


async def close_redis(client: Optional[aioredis.Redis]) -> None:
    if client is not None:
        await client.aclose()
