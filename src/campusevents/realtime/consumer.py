"""Notification relay — durable stream in, live topics out.

Learn: The relay is a long-running task in the app lifespan (like a
worker). It reads the Redis stream through a consumer group, so each
entry is owned by one relay instance and stays "pending" until that
instance XACKs it.

Per entry:

  received → parsed → routed → emitted → ACK
  received → parse failed            → ACK   (poison message; retrying can't fix it)
  received → routing/emit error      → NACK  (left pending, redelivered later)

A NACK is simply "don't XACK". Entries that stay pending longer than
redelivery_idle_ms are reclaimed with XAUTOCLAIM and processed again,
which is the redelivery path. Routing is idempotent, so a retry at worst
shows a client the same update twice.

Key design decisions:
- One asyncio task per entry, bounded by a semaphore (backpressure). A
  slow read-model lookup for one entry never stalls the others.
- No ordering between entries. Payloads carry absolute values (counts,
  full snapshots), never deltas, so reordering is harmless.
- Redis down at startup → relay stays disabled; the API still serves.
- stop() drains in-flight work for up to shutdown_timeout seconds.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ResponseError

from campusevents.events.messages import MalformedMessageError, UnrecognizedMessage, parse_message
from campusevents.realtime.publisher import STREAM_DATA_FIELD
from campusevents.realtime.router import NotificationRouter, OutboundPayload

logger = structlog.get_logger()


class AckResult(str, Enum):
    ACK = "ack"
    NACK = "nack"


class TopicEmitter(Protocol):
    async def emit(self, payload: OutboundPayload) -> int:
        ...


@dataclass
class RelayConfig:
    """Configuration for the notification relay."""
    stream: str = "campusevents:updates"
    group: str = "realtime-relay"
    consumer: str = "relay-1"
    max_concurrent: int = 32
    batch_size: int = 16
    block_ms: int = 1000
    redelivery_idle_ms: int = 30_000
    shutdown_timeout: float = 30.0


@dataclass
class RelayStats:
    """Runtime statistics for monitoring."""
    received: int = 0
    acked: int = 0
    nacked: int = 0
    malformed: int = 0
    unknown: int = 0
    emitted: int = 0
    errors: int = 0
    reclaimed: int = 0
    started_at: Optional[datetime] = None


class NotificationRelay:
    """Consumes domain-change messages and fans them out to topics."""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        router: NotificationRouter,
        emitter: Optional[TopicEmitter],
        config: RelayConfig,
    ):
        self.redis = redis
        self.router = router
        self.emitter = emitter
        self.config = config
        self.stats = RelayStats()
        self.enabled = redis is not None and emitter is not None
        self._semaphore = asyncio.Semaphore(config.max_concurrent)
        self._in_flight: set[asyncio.Task] = set()
        self._reader: Optional[asyncio.Task] = None
        self._running = False
        self._last_reclaim = 0.0

    @property
    def running(self) -> bool:
        return self._running

    # ─── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        """Create the consumer group and launch the reader. No-op if disabled."""
        if not self.enabled:
            logger.warning("relay.not_started", reason="channel disabled")
            return
        if self._running:
            return

        try:
            await self._ensure_group()
        except Exception as e:
            logger.warning("relay.not_started", reason="consumer group unavailable", error=str(e))
            self.enabled = False
            return

        self.stats.started_at = datetime.now(timezone.utc)
        self._running = True
        self._reader = asyncio.create_task(self._read_loop(), name="notification-relay")
        logger.info(
            "relay.started",
            stream=self.config.stream,
            group=self.config.group,
            consumer=self.config.consumer,
            max_concurrent=self.config.max_concurrent,
        )

    async def stop(self) -> None:
        """Stop reading, then wait (bounded) for in-flight messages."""
        if not self._running:
            return
        self._running = False
        logger.info("relay.stopping", in_flight=len(self._in_flight))

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

        if self._in_flight:
            done, pending = await asyncio.wait(
                set(self._in_flight), timeout=self.config.shutdown_timeout
            )
            if pending:
                # Unacked entries stay pending in the group and get reclaimed later.
                logger.warning("relay.drain_timeout", abandoned=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("relay.stopped", **self.get_stats())

    async def _ensure_group(self) -> None:
        try:
            await self.redis.xgroup_create(
                self.config.stream, self.config.group, id="0", mkstream=True
            )
            logger.info("relay.group_created", stream=self.config.stream, group=self.config.group)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    # ─── Reading ──────────────────────────────────────────

    async def _read_loop(self) -> None:
        while self._running:
            try:
                await self._maybe_reclaim()
                response = await self.redis.xreadgroup(
                    self.config.group,
                    self.config.consumer,
                    {self.config.stream: ">"},
                    count=self.config.batch_size,
                    block=self.config.block_ms,
                )
                for _stream, entries in response or []:
                    for entry_id, fields in entries:
                        await self._dispatch(entry_id, fields)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("relay.read_error")
                self.stats.errors += 1
                await asyncio.sleep(1)

    async def _maybe_reclaim(self) -> None:
        """Take over entries another delivery left pending for too long."""
        loop = asyncio.get_running_loop()
        interval = max(self.config.redelivery_idle_ms / 2000, 1.0)
        if loop.time() - self._last_reclaim < interval:
            return
        self._last_reclaim = loop.time()

        result = await self.redis.xautoclaim(
            self.config.stream,
            self.config.group,
            self.config.consumer,
            min_idle_time=self.config.redelivery_idle_ms,
            start_id="0-0",
            count=self.config.batch_size,
        )
        entries = result[1] if result and len(result) > 1 else []
        for entry_id, fields in entries:
            if fields is None:
                # Trimmed from the stream while pending; nothing left to deliver.
                await self.redis.xack(self.config.stream, self.config.group, entry_id)
                continue
            self.stats.reclaimed += 1
            logger.info("relay.reclaimed", entry_id=entry_id)
            await self._dispatch(entry_id, fields)

    async def _dispatch(self, entry_id: str, fields: Mapping[str, Any]) -> None:
        """Run one entry in its own task once a concurrency slot is free."""
        await self._semaphore.acquire()
        task = asyncio.create_task(self._process(entry_id, fields))
        self._in_flight.add(task)

        def _done(t: asyncio.Task) -> None:
            self._in_flight.discard(t)
            self._semaphore.release()

        task.add_done_callback(_done)

    async def _process(self, entry_id: str, fields: Mapping[str, Any]) -> AckResult:
        result = await self.handle_message(entry_id, fields)
        if result is AckResult.ACK:
            try:
                await self.redis.xack(self.config.stream, self.config.group, entry_id)
            except Exception:
                # Still pending, so the channel will redeliver it.
                logger.exception("relay.ack_failed", entry_id=entry_id)
                self.stats.errors += 1
                self.stats.nacked += 1
                return AckResult.NACK
            self.stats.acked += 1
            logger.debug("relay.message_acked", entry_id=entry_id)
        else:
            self.stats.nacked += 1
            logger.info("relay.message_nacked", entry_id=entry_id)
        return result

    # ─── Per-message policy ───────────────────────────────

    async def handle_message(self, entry_id: str, fields: Mapping[str, Any]) -> AckResult:
        """Parse, route and emit one entry; decide its acknowledgement.

        Never raises: every failure maps to ACK (non-retryable) or NACK
        (retryable), so one bad entry cannot take the worker down.
        """
        self.stats.received += 1
        log = logger.bind(entry_id=entry_id)

        try:
            raw = fields.get(STREAM_DATA_FIELD)
            if raw is None:
                raise MalformedMessageError(f"entry has no '{STREAM_DATA_FIELD}' field")
            message = parse_message(raw)
        except MalformedMessageError as e:
            log.warning("relay.malformed_message", error=str(e))
            self.stats.malformed += 1
            return AckResult.ACK

        if isinstance(message, UnrecognizedMessage):
            self.stats.unknown += 1

        try:
            payloads = await self.router.route(message)
            for payload in payloads:
                await self.emitter.emit(payload)
                self.stats.emitted += 1
        except Exception:
            log.exception("relay.routing_failed", message_type=message.type)
            self.stats.errors += 1
            return AckResult.NACK

        log.debug("relay.message_routed", message_type=message.type, payloads=len(payloads))
        return AckResult.ACK

    # ─── Stats ────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return relay statistics for monitoring."""
        return {
            "enabled": self.enabled,
            "running": self._running,
            "received": self.stats.received,
            "acked": self.stats.acked,
            "nacked": self.stats.nacked,
            "malformed": self.stats.malformed,
            "unknown": self.stats.unknown,
            "emitted": self.stats.emitted,
            "errors": self.stats.errors,
            "reclaimed": self.stats.reclaimed,
            "in_flight": len(self._in_flight),
            "max_concurrent": self.config.max_concurrent,
            "started_at": (
                self.stats.started_at.isoformat()
                if self.stats.started_at
                else None
            ),
        }
