"""WebSocket command handling tests.

Learn: ClientConnection holds all command logic, so most tests drive it
directly with a FakePubSub standing in for the Redis subscription. One
test goes through the real /ws route with Starlette's TestClient to check
the wiring end to end.
"""

import pytest
from starlette.testclient import TestClient

from campusevents.main import create_app
from campusevents.realtime.container import Realtime
from campusevents.realtime.consumer import NotificationRelay
from campusevents.realtime.publisher import STREAM_DATA_FIELD, EventPublisher
from campusevents.realtime.websocket import ClientConnection


@pytest.fixture()
def connection(registry, fake_redis, pubsub) -> ClientConnection:
    return ClientConnection(
        session_id="s1",
        registry=registry,
        publisher=EventPublisher(fake_redis, "test:updates"),
        pubsub=pubsub,
    )


@pytest.mark.asyncio
async def test_open_registers_session_and_joins_all_events(connection, registry, pubsub):
    await connection.open()

    assert registry.is_session_active("s1")
    assert pubsub.channels == {"campusevents:topic:all-events"}


@pytest.mark.asyncio
async def test_auth_links_user_and_joins_private_queue(connection, registry, pubsub):
    await connection.open()

    reply = await connection.handle_command({"action": "auth", "userId": "42"})

    assert reply["type"] == "AUTH_CONFIRMED"
    assert reply["userId"] == 42
    assert registry.get_sessions_for_user(42) == {"s1"}
    assert "campusevents:topic:user:42:tickets" in pubsub.channels


@pytest.mark.asyncio
async def test_reauth_as_other_user_leaves_old_queue(connection, registry, pubsub):
    await connection.open()
    await connection.handle_command({"action": "auth", "userId": 1})

    await connection.handle_command({"action": "auth", "userId": 2})

    assert "campusevents:topic:user:1:tickets" not in pubsub.channels
    assert "campusevents:topic:user:2:tickets" in pubsub.channels
    assert registry.get_sessions_for_user(1) == set()


@pytest.mark.asyncio
async def test_subscribe_event_with_analytics(connection, registry, pubsub):
    await connection.open()

    reply = await connection.handle_command(
        {"action": "subscribe", "target": "event", "id": 5, "analytics": True}
    )

    assert reply["type"] == "SUBSCRIPTION_CONFIRMED"
    assert reply["data"] == {"subscriptionType": "event", "targetId": 5}
    assert registry.get_sessions_subscribed_to_event(5) == {"s1"}
    assert {"campusevents:topic:event:5", "campusevents:topic:event:5:analytics"} <= pubsub.channels


@pytest.mark.asyncio
async def test_subscribe_then_unsubscribe_campus(connection, registry, pubsub):
    await connection.open()
    await connection.handle_command({"action": "subscribe", "target": "campus", "id": 3})

    reply = await connection.handle_command({"action": "unsubscribe", "target": "campus", "id": 3})

    assert reply["type"] == "UNSUBSCRIBED"
    assert registry.get_sessions_subscribed_to_campus(3) == set()
    assert "campusevents:topic:campus:3" not in pubsub.channels


@pytest.mark.asyncio
async def test_organization_subscription_is_topic_only(connection, pubsub):
    await connection.open()

    await connection.handle_command(
        {"action": "subscribe", "target": "organization", "id": 7, "analytics": True}
    )

    assert {
        "campusevents:topic:organization:7",
        "campusevents:topic:organization:7:analytics",
    } <= pubsub.channels


@pytest.mark.asyncio
@pytest.mark.parametrize("command,message", [
    ({"action": "auth"}, "userId is required"),
    ({"action": "subscribe", "target": "event"}, "id is required"),
    ({"action": "dance"}, "Unknown action: dance"),
    ({"action": "publish"}, "type is required"),
])
async def test_invalid_commands_return_errors(connection, command, message):
    await connection.open()

    reply = await connection.handle_command(command)

    assert reply["type"] == "ERROR"
    assert reply["message"] == message


@pytest.mark.asyncio
async def test_non_object_command(connection):
    reply = await connection.handle_command(["ping"])

    assert reply == {**reply, "type": "ERROR", "message": "Command must be a JSON object"}


@pytest.mark.asyncio
async def test_ping_and_status(connection):
    await connection.open()
    await connection.handle_command({"action": "auth", "userId": 42})

    pong = await connection.handle_command({"action": "ping"})
    status = await connection.handle_command({"action": "status"})

    assert pong["type"] == "PONG"
    assert pong["data"]["sessionId"] == "s1"
    assert status["data"]["authenticated"] is True
    assert status["data"]["activeUsers"] == 1
    assert status["data"]["topics"] == ["all-events", "user:42:tickets"]


@pytest.mark.asyncio
async def test_publish_puts_message_on_stream(connection, fake_redis):
    await connection.open()
    await connection.handle_command({"action": "auth", "userId": 42})

    reply = await connection.handle_command(
        {"action": "publish", "type": "EVENT_UPDATED", "eventId": "5"}
    )

    assert reply["type"] == "PUBLISH_CONFIRMED"
    assert reply["data"]["messageId"] == "1-0"
    [(_, fields)] = fake_redis.streams["test:updates"]
    assert '"userId": 42' in fields[STREAM_DATA_FIELD]


@pytest.mark.asyncio
async def test_close_unregisters_everything(connection, registry, pubsub):
    await connection.open()
    await connection.handle_command({"action": "auth", "userId": 42})
    await connection.handle_command({"action": "subscribe", "target": "event", "id": 5})

    await connection.close()

    assert not registry.is_session_active("s1")
    assert registry.get_sessions_for_user(42) == set()
    assert registry.get_sessions_subscribed_to_event(5) == set()
    assert pubsub.channels == set()
    assert pubsub.closed


@pytest.mark.asyncio
async def test_connection_without_transport_still_tracks_topics(registry):
    connection = ClientConnection("s2", registry, EventPublisher(None, "test:updates"))
    await connection.open()

    reply = await connection.handle_command({"action": "publish", "type": "EVENT_UPDATED"})
    status = await connection.handle_command({"action": "status"})

    assert reply["data"]["messageId"] == "disabled"
    assert status["data"]["topics"] == ["all-events"]


# ─── Through the route ────────────────────────────────────


def test_websocket_route(registry, router, relay_config):
    app = create_app()
    app.state.realtime = Realtime(
        registry=registry,
        publisher=EventPublisher(None, relay_config.stream),
        relay=NotificationRelay(None, router, None, relay_config),
    )

    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"action": "auth", "userId": 9})
        auth = ws.receive_json()
        ws.send_text("not json")
        invalid = ws.receive_json()
        ws.send_text("[" * 50_000 + "]" * 50_000)
        too_deep = ws.receive_json()
        ws.send_json({"action": "status"})
        status = ws.receive_json()

    assert auth["type"] == "AUTH_CONFIRMED"
    assert invalid == {**invalid, "type": "ERROR", "message": "Invalid JSON"}
    assert too_deep["message"] == "Invalid JSON"
    assert status["data"]["authenticated"] is True
    assert status["data"]["topics"] == ["all-events", "user:9:tickets"]
