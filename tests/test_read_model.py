"""Read model tests — snapshot payload shape and failure wrapping."""

import asyncio
from contextlib import asynccontextmanager

import pytest

from campusevents.realtime.read_model import ReadModelError, SqlEventReadModel


def test_payload_shape(snapshot):
    assert snapshot.to_payload() == {
        "id": 5,
        "organizerId": 7,
        "organizerName": "Chess Club",
        "campusId": 3,
        "campusName": "North Campus",
        "capacity": 100,
        "description": "Spring open tournament",
        "startTime": "2026-04-01T18:00:00",
        "endTime": "2026-04-01T22:00:00",
        "ticketsSold": 10,
        "availableCapacity": 90,
        "tags": ["Games", "Social"],
        "costs": [{"type": "General", "cost": 0.0}, {"type": "VIP", "cost": 25.5}],
    }


def test_payload_defaults_for_missing_text_fields(snapshot):
    bare = snapshot.model_copy(update=dict(
        organizer_name=None, campus_name=None, description=None,
        start_time=None, end_time=None, costs=[], tags=[],
    ))
    payload = bare.to_payload()

    assert payload["organizerName"] == ""
    assert payload["description"] == ""
    assert payload["startTime"] == ""
    assert payload["costs"] == []


def test_available_capacity_never_negative(snapshot):
    assert snapshot.model_copy(update={"capacity": 10, "tickets_sold": 12}).available_capacity == 0


class _BrokenEngine:
    def connect(self):
        raise ConnectionError("connection refused")


class _StalledEngine:
    @asynccontextmanager
    async def connect(self):
        await asyncio.sleep(1)
        yield None


@pytest.mark.asyncio
async def test_connection_error_becomes_read_model_error():
    model = SqlEventReadModel(_BrokenEngine())

    with pytest.raises(ReadModelError):
        await model.get_event_by_id(5)


@pytest.mark.asyncio
async def test_slow_lookup_times_out_as_read_model_error():
    model = SqlEventReadModel(_StalledEngine(), timeout_seconds=0.01)

    with pytest.raises(ReadModelError):
        await model.get_event_by_id(5)
