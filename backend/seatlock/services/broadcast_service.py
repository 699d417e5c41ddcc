"""
Cross-worker seat change relay over Redis pub/sub.

WHY
===

The seat store notifies its own listeners after every committed write, but
with the SQL backend several worker processes write to the same table. A
worker only learns about another worker's write if someone tells it.

How:
  - After each committed write this worker publishes a tiny notice
    {"origin": <worker id>, "at": <epoch ms>} on REDIS_CHANNEL
  - Every worker listens on the channel; a notice from a different origin
    triggers store.refresh(), which re-reads the table and pushes the fresh
    snapshot to local subscribers (WebSocket clients)

The notice carries no seat data. The database stays authoritative and a lost
notice only delays an update until the next one arrives.

Redis is optional: when it is disabled or unreachable the relay is simply not
started and each worker only sees its own writes live.
"""

import asyncio
import json
import time
import uuid
from typing import Optional

import redis.asyncio as redis

from seatlock.core.config import get_settings
from seatlock.core.errors import StorageUnavailable
from seatlock.core.logging import get_logger
from seatlock.core.metrics import relay_errors
from seatlock.services.interfaces.seat_store import SeatStore

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except (redis.RedisError, OSError) as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class SeatChangeRelay:
    """Publishes local commits and refreshes the store on foreign ones."""

    def __init__(self, store: SeatStore, client: redis.Redis, channel: str, origin: Optional[str] = None):
        self.store = store
        self.client = client
        self.channel = channel
        self.origin = origin or uuid.uuid4().hex
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        self._pubsub = self.client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self.store.add_commit_hook(self.publish)
        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("seat_relay_started", channel=self.channel, origin=self.origin)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except (redis.RedisError, OSError) as e:
                logger.warning("seat_relay_close_error", error=str(e))
            self._pubsub = None
        logger.info("seat_relay_stopped", channel=self.channel)

    async def publish(self) -> None:
        if not self._running:
            return
        notice = json.dumps({"origin": self.origin, "at": int(time.time() * 1000)})
        try:
            await self.client.publish(self.channel, notice)
        except (redis.RedisError, OSError) as e:
            relay_errors.inc()
            logger.error("seat_relay_publish_error", error=str(e))

    async def handle_message(self, data) -> bool:
        """Refresh on a foreign notice. Returns True when a refresh ran."""
        try:
            notice = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("seat_relay_bad_notice", data=str(data)[:100])
            return False

        if not isinstance(notice, dict) or notice.get("origin") == self.origin:
            return False

        try:
            await self.store.refresh()
        except StorageUnavailable:
            relay_errors.inc()
            logger.warning("seat_relay_refresh_failed", origin=notice.get("origin"))
            return False
        return True

    async def _listen(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (redis.RedisError, OSError) as e:
                relay_errors.inc()
                logger.error("seat_relay_listen_error", error=str(e))
                await asyncio.sleep(1.0)
                continue

            if message is not None and message.get("type") == "message":
                await self.handle_message(message["data"])
