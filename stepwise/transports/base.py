"""Transport interface used to hand job updates to resume workers."""

from __future__ import annotations

import abc
import asyncio
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import JobUpdateMessage

RawMessageT = TypeVar("RawMessageT")


class Deadline:
    """End of an optional subscription lifespan, measured on the event loop clock."""

    def __init__(self, lifespan: Optional[float]) -> None:
        self._loop = asyncio.get_running_loop()
        self._ends_at = self._loop.time() + lifespan if lifespan else None

    @property
    def expired(self) -> bool:
        return self._ends_at is not None and self._loop.time() >= self._ends_at


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """One queue of :class:`JobUpdateMessage` per topic.

    Delivery is at least once: a worker acks a message after it was handled,
    so a crash in between redelivers it. Can be used as an async context
    manager to scope the broker connection.
    """

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: JobUpdateMessage) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, JobUpdateMessage]]:
        """Yield ``(raw, message)`` pairs from ``topic``.

        Stops after ``lifespan`` seconds, or never when it is ``None``.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Reject a message; transports that cannot requeue just ack it."""
        await self.ack(raw_message)
