"""Worker resuming executions from job update messages."""

from __future__ import annotations

import logging
from typing import Optional

from .config import WorkerConfig
from .contracts import JobUpdateMessage
from .dispatch import ExecutionDispatcher
from .errors import StepwiseError
from .transports import BaseTransport
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class ResumeExecutor:
    """Consumes job updates from a transport and resumes their executions.

    Engine errors are fatal for a message and it is dropped. Any other error
    (storage or network trouble) is retried with exponential backoff by
    republishing the message until ``max_attempts`` is reached.
    """

    def __init__(
        self,
        transport: BaseTransport,
        dispatcher: ExecutionDispatcher,
        topic: Optional[str] = None,
        config: Optional[WorkerConfig] = None,
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._topic = topic or dispatcher.topic
        self._config = config or WorkerConfig()
        self.processed: list[str] = []
        self.dropped: list[str] = []

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Listen for job updates until ``lifespan`` seconds elapsed (forever if None)."""
        logger.info(f"Resume worker listening on {self._topic}")
        async with self._transport:
            async for raw_message, message in self._transport.subscribe(
                self._topic, lifespan=lifespan
            ):
                await self.handle_message(message)
                await self._transport.ack(raw_message)

    async def handle_message(self, message: JobUpdateMessage) -> bool:
        """Apply one update; return ``True`` when the execution was resumed."""
        try:
            execution = await self._dispatcher.complete_job(
                message.execution_id, message.job_id, message.status, message.result
            )
        except StepwiseError as e:
            logger.error(
                f"Dropping update {message.message_id} for job {message.job_id}: {e}"
            )
            self.dropped.append(message.message_id)
            return False
        except Exception as e:
            if message.attempt >= self._config.max_attempts:
                logger.error(
                    f"Giving up on update {message.message_id} for job {message.job_id} "
                    f"after {message.attempt} attempts: {e}"
                )
                self.dropped.append(message.message_id)
                return False
            delay = await schedule_retry(
                message.attempt,
                base=self._config.backoff_base,
                jitter=self._config.backoff_jitter,
                max_delay=self._config.backoff_max,
            )
            logger.warning(
                f"Update {message.message_id} for job {message.job_id} failed ({e}), "
                f"retrying after {delay:.2f}s"
            )
            await self._transport.publish(self._topic, message.bump_attempt())
            return False

        self.processed.append(message.message_id)
        if execution is not None:
            logger.info(
                f"Execution {execution.id} resumed from job {message.job_id} "
                f"({execution.status.name})"
            )
        return execution is not None
