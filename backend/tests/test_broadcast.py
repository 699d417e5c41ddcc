"""
Tests for the Redis change relay, against an in-process pub/sub double.
"""

import asyncio
import json

import pytest

from seatlock.services.broadcast_service import SeatChangeRelay
from seatlock.services.interfaces.memory_seat_store import InMemorySeatStore

CHANNEL = "seats:changed"


class FakePubSub:
    def __init__(self):
        self.channels = set()
        self.closed = False

    async def subscribe(self, channel):
        self.channels.add(channel)

    async def unsubscribe(self, channel):
        self.channels.discard(channel)

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        await asyncio.sleep(0.01)
        return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.published = []
        self.pubsub_instance = FakePubSub()

    def pubsub(self):
        return self.pubsub_instance

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


class Recorder:
    def __init__(self):
        self.snapshots = []

    async def __call__(self, snapshot):
        self.snapshots.append(snapshot)


@pytest.mark.asyncio
async def test_commits_are_published_while_running():
    store = InMemorySeatStore()
    client = FakeRedis()
    relay = SeatChangeRelay(store, client, CHANNEL, origin="worker-a")

    await relay.start()
    assert CHANNEL in client.pubsub_instance.channels
    await store.upsert_one("t1-s1", {"status": "CHECKOUT", "locked_by": "abc12345", "locked_at": 1})
    await relay.stop()

    assert len(client.published) == 1
    channel, notice = client.published[0]
    assert channel == CHANNEL
    assert notice["origin"] == "worker-a"
    assert set(notice) == {"origin", "at"}
    assert client.pubsub_instance.closed

    # stopped relays stay quiet
    await store.delete_one("t1-s1")
    assert len(client.published) == 1


@pytest.mark.asyncio
async def test_foreign_notice_refreshes_listeners():
    store = InMemorySeatStore()
    relay = SeatChangeRelay(store, FakeRedis(), CHANNEL, origin="worker-a")
    recorder = Recorder()
    await store.subscribe(recorder)

    refreshed = await relay.handle_message(json.dumps({"origin": "worker-b", "at": 1}))
    assert refreshed is True
    assert len(recorder.snapshots) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [
    json.dumps({"origin": "worker-a", "at": 1}),
    "not json",
    json.dumps(["origin"]),
    None,
])
async def test_ignored_notices(data):
    store = InMemorySeatStore()
    relay = SeatChangeRelay(store, FakeRedis(), CHANNEL, origin="worker-a")
    recorder = Recorder()
    await store.subscribe(recorder)

    assert await relay.handle_message(data) is False
    assert len(recorder.snapshots) == 1
