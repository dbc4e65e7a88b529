"""Redis transport: one list per topic, LPUSH to publish and BRPOP to consume."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from pydantic import ValidationError

from ..contracts import JobUpdateMessage
from .base import BaseTransport, Deadline

logger = logging.getLogger(__name__)

# (queue name, serialized message)
RawMessage = Tuple[str, str]

# seconds BRPOP blocks before the lifespan is checked again
POLL_TIMEOUT = 1


class RedisTransport(BaseTransport[RawMessage]):
    """Job update queues kept in Redis lists named ``<prefix>:<topic>``.

    A popped message is gone from Redis, so ``ack`` has nothing left to do.
    ``nack`` with ``requeue`` pushes it back to the consuming end of its list.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "stepwise",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    def _queue_name(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def _client(self) -> Any:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def connect(self) -> None:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await client.ping()
        self._redis = client
        logger.debug(f"Connected to Redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: JobUpdateMessage) -> None:
        client = await self._client()
        await client.lpush(self._queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, JobUpdateMessage]]:
        client = await self._client()
        queue_name = self._queue_name(topic)
        deadline = Deadline(lifespan)
        while not deadline.expired:
            popped = await client.brpop(queue_name, timeout=POLL_TIMEOUT)
            if not popped:
                continue
            _, data = popped
            try:
                message = JobUpdateMessage.from_json(data)
            except ValidationError as e:
                logger.error(f"Dropping malformed message on {queue_name}: {e}")
                continue
            yield (queue_name, data), message

    async def ack(self, raw_message: RawMessage) -> None:
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        if requeue:
            queue_name, data = raw_message
            client = await self._client()
            await client.rpush(queue_name, data)
