"""WebSocket endpoint — live topic delivery to browser clients.

Learn: Each browser tab opens one connection to /ws. The handler:
1. Assigns a session ID and registers it in the SessionRegistry
2. Subscribes the connection to "all-events" (the dashboard feed)
3. Accepts JSON commands from the client (auth, subscribe, ping, ...)
4. Forwards every payload published on its topics to the client
5. On disconnect, removes the session from every registry index

Client commands ({"action": ...}):
  auth         {userId}                   → private user:{id}:tickets queue
  subscribe    {target, id, analytics?}   → event / campus / organization topic
  unsubscribe  {target, id}
  ping | status
  publish      {type, eventId?, campusId?, payload?} → durable stream
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from campusevents.events.messages import coerce_int
from campusevents.events.types import (
    ALL_EVENTS,
    campus_topic,
    event_analytics_topic,
    event_topic,
    organization_analytics_topic,
    organization_topic,
    user_tickets_topic,
)
from campusevents.realtime.channel import topic_channel
from campusevents.realtime.publisher import EventPublisher
from campusevents.realtime.registry import SessionRegistry

logger = structlog.get_logger()
router = APIRouter()

SUBSCRIPTION_TARGETS = ("event", "campus", "organization")


def notification(
    notification_type: str,
    *,
    message: Optional[str] = None,
    user_id: Optional[int] = None,
    data: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Server → client reply in the standard notification shape."""
    reply: dict[str, Any] = {
        "type": notification_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if message is not None:
        reply["message"] = message
    if user_id is not None:
        reply["userId"] = user_id
    if data is not None:
        reply["data"] = data
    return reply


def error(message: str) -> dict[str, Any]:
    return notification("ERROR", message=message)


class ClientConnection:
    """Command handling and topic bookkeeping for one live session.

    Learn: Registry updates happen here, synchronously, before any reply is
    sent. Topic membership is mirrored onto a Redis pub/sub connection when
    one is available; without Redis the connection still tracks its topics
    so commands and status keep working.
    """

    def __init__(
        self,
        session_id: str,
        registry: SessionRegistry,
        publisher: EventPublisher,
        pubsub: Optional[aioredis.client.PubSub] = None,
    ):
        self.session_id = session_id
        self.registry = registry
        self.publisher = publisher
        self.pubsub = pubsub
        self.topics: set[str] = set()

    async def open(self) -> None:
        self.registry.register_session(self.session_id)
        await self.subscribe_topics(ALL_EVENTS)

    async def close(self) -> None:
        self.registry.unregister_session(self.session_id)
        if self.pubsub is not None:
            try:
                await self.pubsub.unsubscribe()
                await self.pubsub.aclose()
            except Exception as e:
                logger.debug("ws.pubsub_close_failed", session_id=self.session_id, error=str(e))
        self.topics.clear()

    async def subscribe_topics(self, *topics: str) -> None:
        new = [t for t in topics if t not in self.topics]
        if not new:
            return
        self.topics.update(new)
        if self.pubsub is not None:
            await self.pubsub.subscribe(*(topic_channel(t) for t in new))

    async def unsubscribe_topics(self, *topics: str) -> None:
        gone = [t for t in topics if t in self.topics]
        if not gone:
            return
        self.topics.difference_update(gone)
        if self.pubsub is not None:
            await self.pubsub.unsubscribe(*(topic_channel(t) for t in gone))

    # ─── Commands ─────────────────────────────────────────

    async def handle_command(self, command: Any) -> dict[str, Any]:
        if not isinstance(command, dict):
            return error("Command must be a JSON object")

        action = command.get("action")
        handler = {
            "auth": self._auth,
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
            "ping": self._ping,
            "status": self._status,
            "publish": self._publish,
        }.get(action)
        if handler is None:
            return error(f"Unknown action: {action}")
        return await handler(command)

    async def _auth(self, command: dict) -> dict[str, Any]:
        user_id = coerce_int(command.get("userId"))
        if user_id is None:
            return error("userId is required")

        previous = self.registry.get_user_id_for_session(self.session_id)
        if previous is not None and previous != user_id:
            await self.unsubscribe_topics(user_tickets_topic(previous))

        self.registry.register_user_session(self.session_id, user_id)
        await self.subscribe_topics(user_tickets_topic(user_id))
        return notification(
            "AUTH_CONFIRMED",
            user_id=user_id,
            message=f"Session authenticated for user {user_id}",
        )

    def _target(self, command: dict) -> tuple[Optional[str], Optional[int], Optional[dict]]:
        target = command.get("target")
        target_id = coerce_int(command.get("id"))
        if target not in SUBSCRIPTION_TARGETS:
            return None, None, error(f"target must be one of {', '.join(SUBSCRIPTION_TARGETS)}")
        if target_id is None:
            return None, None, error("id is required")
        return target, target_id, None

    def _topics_for(self, target: str, target_id: int, analytics: bool) -> list[str]:
        if target == "event":
            topics = [event_topic(target_id)]
            if analytics:
                topics.append(event_analytics_topic(target_id))
        elif target == "campus":
            topics = [campus_topic(target_id)]
        else:
            topics = [organization_topic(target_id)]
            if analytics:
                topics.append(organization_analytics_topic(target_id))
        return topics

    async def _subscribe(self, command: dict) -> dict[str, Any]:
        target, target_id, problem = self._target(command)
        if problem:
            return problem

        if target == "event":
            self.registry.subscribe_to_event(self.session_id, target_id)
        elif target == "campus":
            self.registry.subscribe_to_campus(self.session_id, target_id)
        await self.subscribe_topics(
            *self._topics_for(target, target_id, bool(command.get("analytics")))
        )

        return notification(
            "SUBSCRIPTION_CONFIRMED",
            message=f"Successfully subscribed to {target}: {target_id}",
            data={"subscriptionType": target, "targetId": target_id},
        )

    async def _unsubscribe(self, command: dict) -> dict[str, Any]:
        target, target_id, problem = self._target(command)
        if problem:
            return problem

        if target == "event":
            self.registry.unsubscribe_from_event(self.session_id, target_id)
        elif target == "campus":
            self.registry.unsubscribe_from_campus(self.session_id, target_id)
        await self.unsubscribe_topics(*self._topics_for(target, target_id, analytics=True))

        return notification(
            "UNSUBSCRIBED",
            data={"subscriptionType": target, "targetId": target_id},
        )

    async def _ping(self, command: dict) -> dict[str, Any]:
        return notification(
            "PONG",
            data={
                "sessionId": self.session_id,
                "activeConnections": self.registry.get_active_session_count(),
            },
        )

    async def _status(self, command: dict) -> dict[str, Any]:
        user_id = self.registry.get_user_id_for_session(self.session_id)
        return notification(
            "STATUS",
            user_id=user_id,
            data={
                "sessionId": self.session_id,
                "authenticated": user_id is not None,
                "activeConnections": self.registry.get_active_session_count(),
                "activeUsers": self.registry.get_active_user_count(),
                "topics": sorted(self.topics),
            },
        )

    async def _publish(self, command: dict) -> dict[str, Any]:
        message_type = command.get("type")
        if not isinstance(message_type, str) or not message_type:
            return error("type is required")

        message: dict[str, Any] = {"type": message_type}
        for key in ("eventId", "campusId"):
            value = coerce_int(command.get(key))
            if value is not None:
                message[key] = value
        user_id = self.registry.get_user_id_for_session(self.session_id)
        if user_id is not None:
            message["userId"] = user_id
        if command.get("payload") is not None:
            message["payload"] = command["payload"]

        logger.info("ws.client_publish", session_id=self.session_id, message_type=message_type)
        message_id = await self.publisher.publish_message(message)
        return notification(
            "PUBLISH_CONFIRMED",
            message="Message published successfully",
            data={"messageId": message_id or "disabled"},
        )


@router.websocket("/ws")
async def realtime_websocket(websocket: WebSocket):
    """WebSocket endpoint for live campus-event updates.

    Learn: Two concurrent tasks run:
    1. Topic listener — reads from Redis pub/sub, sends to the browser
    2. Client listener — reads commands from the browser, replies

    When either side finishes (usually the client disconnecting), the
    other is cancelled and the session is removed from the registry.
    """
    realtime = websocket.app.state.realtime
    await websocket.accept()

    pubsub = realtime.redis.pubsub() if realtime.redis is not None else None
    connection = ClientConnection(
        session_id=uuid.uuid4().hex,
        registry=realtime.registry,
        publisher=realtime.publisher,
        pubsub=pubsub,
    )
    await connection.open()
    logger.info("ws.connected", session_id=connection.session_id)

    async def topic_listener():
        """Forward topic payloads to the WebSocket client."""
        if pubsub is None:
            await asyncio.Event().wait()  # no transport; idle until cancelled
            return
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message.get("type") == "message":
                await websocket.send_text(message["data"])

    async def client_listener():
        """Handle commands from the WebSocket client."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    command = json.loads(data)
                except (ValueError, RecursionError):
                    await websocket.send_json(error("Invalid JSON"))
                    continue
                await websocket.send_json(await connection.handle_command(command))
        except WebSocketDisconnect:
            pass

    topic_task = asyncio.create_task(topic_listener())
    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [topic_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    "ws.listener_failed",
                    session_id=connection.session_id,
                    error=str(task.exception()),
                )
    finally:
        await connection.close()
        logger.info("ws.disconnected", session_id=connection.session_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
