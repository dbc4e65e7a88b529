"""In-process transport for tests and single process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import JobUpdateMessage
from .base import BaseTransport, Deadline

# (topic, serialized message)
RawMessage = Tuple[str, str]

POLL_INTERVAL = 0.05


class InMemoryTransport(BaseTransport[RawMessage]):
    """Per-topic FIFO queues held in memory.

    Messages are stored serialized, so consumers never share an object with
    the producer.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: JobUpdateMessage) -> None:
        async with self._lock:
            self._queues[topic].append(message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, JobUpdateMessage]]:
        deadline = Deadline(lifespan)
        queue = self._queues[topic]
        while not deadline.expired:
            async with self._lock:
                data = queue.popleft() if queue else None
            if data is None:
                await asyncio.sleep(POLL_INTERVAL)
                continue
            # yield outside the lock: handlers publish retries
            yield (topic, data), JobUpdateMessage.from_json(data)

    async def ack(self, raw_message: RawMessage) -> None:
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        if requeue:
            topic, data = raw_message
            async with self._lock:
                self._queues[topic].appendleft(data)

    def pending(self, topic: str) -> int:
        """Number of messages waiting on ``topic``."""
        return len(self._queues[topic])
