"""Base transport interface for duraflow task queues."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, Type, TypeVar

from ..contracts import QueueMessage

RawMessageT = TypeVar("RawMessageT")
MessageT = TypeVar("MessageT", bound=QueueMessage)


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract base transport for durable, at-least-once queues.

    ``publish`` enqueues, iterating ``subscribe`` dequeues and ``ack``
    confirms that a delivery was fully processed. Unacknowledged deliveries may
    be delivered again.
    """

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, channel: str, message: QueueMessage) -> None:
        """Send a message to a channel."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self,
        channel: str,
        message_type: Type[MessageT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[RawMessageT, MessageT]]:
        """Yield raw transport message and parsed message pairs.

        Args:
            channel: The channel to consume
            message_type: Model used to parse message bodies
            lifespan: Maximum time in seconds to keep consuming. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Negatively acknowledge (default to ack if unsupported)."""
        await self.ack(raw_message)
