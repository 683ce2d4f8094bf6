"""In-memory transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple, Type

from ..contracts import QueueMessage
from .base import BaseTransport, MessageT

# (channel, delivery id, JSON body)
InMemoryDelivery = Tuple[str, int, str]


class InMemoryTransport(BaseTransport[InMemoryDelivery]):
    """Simple in-process queue.

    Bodies are stored as JSON so every message crosses the same serialization
    boundary as with a real broker. Deliveries stay in flight until acked;
    ``nack`` puts them back at the head of the queue.
    """

    def __init__(self, poll_interval: float = 0.05) -> None:
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)
        self._in_flight: Dict[int, InMemoryDelivery] = {}
        self._delivery_ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self.poll_interval = poll_interval

    async def publish(self, channel: str, message: QueueMessage) -> None:
        """Publish message to in-memory queue."""
        async with self._lock:
            self._queues[channel].append(message.to_json())

    async def get(self, channel: str) -> Optional[InMemoryDelivery]:
        """Take the next message from ``channel`` without waiting."""
        async with self._lock:
            if not self._queues[channel]:
                return None
            body = self._queues[channel].popleft()
            delivery = (channel, next(self._delivery_ids), body)
            self._in_flight[delivery[1]] = delivery
            return delivery

    async def subscribe(
        self,
        channel: str,
        message_type: Type[MessageT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[InMemoryDelivery, MessageT]]:
        """Subscribe to messages from channel.

        Args:
            channel: The channel to consume
            message_type: Model used to parse message bodies
            lifespan: Maximum time in seconds to keep consuming. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break

            delivery = await self.get(channel)
            if delivery is None:
                await asyncio.sleep(self.poll_interval)
                continue
            yield delivery, message_type.from_json(delivery[2])

    async def ack(self, raw_message: InMemoryDelivery) -> None:
        async with self._lock:
            self._in_flight.pop(raw_message[1], None)

    async def nack(self, raw_message: InMemoryDelivery, requeue: bool = True) -> None:
        async with self._lock:
            delivery = self._in_flight.pop(raw_message[1], None)
            if delivery is not None and requeue:
                self._queues[delivery[0]].appendleft(delivery[2])

    def pending(self, channel: str) -> int:
        """Number of undelivered messages on ``channel``."""
        return len(self._queues[channel])

    def in_flight(self) -> int:
        return len(self._in_flight)
