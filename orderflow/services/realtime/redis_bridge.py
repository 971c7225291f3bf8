"""
Redis Broadcast Hub

Cross-process fan-out for deployments running several API workers (and the
Celery worker, which publishes from recovery). Each event is published to
``<prefix><location_id>``; every API process pattern-subscribes to the
prefix and relays what it receives to its own sockets. A dropped Redis
connection is retried with exponential backoff; the listener only stops
when the hub is stopped.
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from orderflow.services.realtime.events import RealtimeEvent, encode_event
from orderflow.services.realtime.hub import BaseBroadcastHub

logger = logging.getLogger(__name__)


class RedisBroadcastHub(BaseBroadcastHub):

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "orderflow:outlet:",
        send_timeout: float = 2.0,
        reconnect_delay: float = 0.5,
        max_reconnect_delay: float = 30.0,
    ):
        super().__init__(send_timeout=send_timeout)
        self.channel_prefix = channel_prefix
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._listener: Optional[asyncio.Task] = None

    @property
    def backend_name(self) -> str:
        return "redis"

    def channel_for(self, location_id: str) -> str:
        return f"{self.channel_prefix}{location_id}"

    @property
    def pattern(self) -> str:
        return f"{self.channel_prefix}*"

    async def publish(self, location_id: str, event: RealtimeEvent) -> None:
        await self._redis.publish(self.channel_for(location_id), json.dumps(encode_event(event)))

    async def start(self) -> None:
        if self._listener is not None and not self._listener.done():
            return
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(self.pattern)
        self._listener = asyncio.create_task(self._relay(pubsub))
        logger.info(f"📡 Redis broadcast bridge listening on {self.pattern}")

    async def _relay(self, pubsub) -> None:
        delay = self.reconnect_delay
        resubscribe = False
        try:
            while True:
                try:
                    if resubscribe:
                        await pubsub.psubscribe(self.pattern)
                        logger.info(f"📡 Redis broadcast bridge resubscribed to {self.pattern}")
                    async for message in pubsub.listen():
                        delay = self.reconnect_delay
                        await self._forward(message)
                    return
                except (RedisError, OSError) as e:
                    logger.error(f"❌ Redis broadcast bridge lost its subscription: {e} (retry in {delay:.1f}s)")

                resubscribe = True
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
        finally:
            await pubsub.aclose()

    async def _forward(self, message: dict) -> None:
        if message.get("type") != "pmessage":
            return
        location_id = message["channel"][len(self.channel_prefix):]
        try:
            payload = json.loads(message["data"])
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed broadcast on {message['channel']}: {e}")
            return
        await self.deliver_local(location_id, payload)

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._redis.aclose()

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False
