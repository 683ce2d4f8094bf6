"""Redis transport for cross-process task queues."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple, Type

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import QueueMessage
from .base import BaseTransport, MessageT

logger = logging.getLogger(__name__)

# (channel, JSON body)
RedisDelivery = Tuple[str, str]


class RedisTransport(BaseTransport[RedisDelivery]):
    """Redis-based transport.

    Each channel is a list; a delivery is atomically moved to a companion
    processing list and only removed from it on ``ack``. Deliveries left
    there by a crashed worker are put back with ``requeue_unacked``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "duraflow",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    def _queue_name(self, channel: str) -> str:
        return f"{self.prefix}:{channel}"

    def _processing_name(self, channel: str) -> str:
        return f"{self.prefix}:{channel}:processing"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, channel: str, message: QueueMessage) -> None:
        """Publish message to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self._queue_name(channel), message.to_json())

    async def subscribe(
        self,
        channel: str,
        message_type: Type[MessageT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[RedisDelivery, MessageT]]:
        """Subscribe to messages from Redis queue."""
        if not self._redis:
            await self.connect()

        queue_name = self._queue_name(channel)
        processing_name = self._processing_name(channel)
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            body = await self._redis.blmove(
                queue_name, processing_name, timeout=1, src="RIGHT", dest="LEFT"
            )
            if body is None:
                continue

            try:
                message = message_type.from_json(body)
            except ValueError as e:
                logger.error(f"Dropping unparseable message on {channel}: {e}")
                await self._redis.lrem(processing_name, 1, body)
                continue
            yield (channel, body), message

    async def ack(self, raw_message: RedisDelivery) -> None:
        """Remove the delivery from the processing list."""
        channel, body = raw_message
        await self._redis.lrem(self._processing_name(channel), 1, body)

    async def nack(self, raw_message: RedisDelivery, requeue: bool = True) -> None:
        channel, body = raw_message
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing_name(channel), 1, body)
            if requeue:
                pipe.rpush(self._queue_name(channel), body)
            await pipe.execute()

    async def requeue_unacked(self, channel: str) -> int:
        """Move deliveries abandoned by crashed workers back onto the queue."""
        if not self._redis:
            await self.connect()
        moved = 0
        while await self._redis.lmove(
            self._processing_name(channel), self._queue_name(channel), "RIGHT", "RIGHT"
        ):
            moved += 1
        if moved:
            logger.info(f"Requeued {moved} unacknowledged message(s) on {channel}")
        return moved
