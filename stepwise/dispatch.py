"""Entry points used by triggers and job producers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .constants import DEFAULT_JOB_TOPIC, JobStatus
from .contracts import JobUpdateMessage
from .engine import ExecutionEngine
from .errors import ExecutionStateError, NotFoundError
from .persistence.models import Execution, Job
from .persistence.repository import Transaction
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Service responsible for creating executions and delivering job updates."""

    def __init__(
        self,
        engine: ExecutionEngine,
        transport: Optional[BaseTransport] = None,
        topic: str = DEFAULT_JOB_TOPIC,
    ) -> None:
        self.engine = engine
        self.transport = transport
        self.topic = topic

    @property
    def repository(self):
        return self.engine.repository

    async def trigger(
        self,
        workflow_id: int,
        context: Any = None,
        transaction: Optional[Transaction] = None,
    ) -> Execution:
        """Create an execution of ``workflow_id`` and start it atomically.

        Args:
            workflow_id: Template to run.
            context: Initial input handed to the head node.
            transaction: Optional caller transaction; when given, committing
                is left to the caller.

        Returns:
            The execution, with its status after the first traversal.
        """
        tx = transaction or await self.repository.begin()
        try:
            workflow = await self.repository.load_workflow(workflow_id, transaction=tx)
            if workflow is None:
                raise NotFoundError("workflow", workflow_id)
            if not workflow.enabled:
                raise ExecutionStateError(f"workflow {workflow_id} is disabled")
            execution = await self.repository.create_execution(
                workflow_id, context, transaction=tx
            )
            await self.engine.start(execution, transaction=tx)
        except BaseException:
            if transaction is None:
                await tx.rollback()
            raise
        if transaction is None:
            await tx.commit()
        logger.info(
            f"Triggered execution {execution.id} of workflow {workflow_id} "
            f"({execution.status.name})"
        )
        return execution

    async def complete_job(
        self,
        execution_id: int,
        job_id: int,
        status: JobStatus = JobStatus.RESOLVED,
        result: Any = None,
        transaction: Optional[Transaction] = None,
    ) -> Optional[Execution]:
        """Apply an outside update to a suspended job and resume from it.

        Updates for jobs that are no longer PENDING are duplicates of an
        earlier delivery; they are skipped and ``None`` is returned.
        """
        execution = await self.repository.get_execution(execution_id, transaction=transaction)
        if execution is None:
            raise NotFoundError("execution", execution_id)
        job = await self.repository.get_job(job_id, transaction=transaction)
        if job is None or job.execution_id != execution_id:
            raise NotFoundError("job", job_id)
        if job.status != JobStatus.PENDING:
            logger.warning(
                f"Job {job_id} of execution {execution_id} is already "
                f"{job.status.name}, ignoring update"
            )
            return None

        updated: Job = job.model_copy(update={"status": JobStatus(status), "result": result})
        await self.engine.resume(execution, updated, transaction=transaction)
        return execution

    async def submit_job_update(
        self,
        execution_id: int,
        job_id: int,
        status: JobStatus = JobStatus.RESOLVED,
        result: Any = None,
    ) -> JobUpdateMessage:
        """Publish a job update for a resume worker to apply."""
        if self.transport is None:
            raise RuntimeError("a transport is required to submit job updates")
        message = JobUpdateMessage(
            execution_id=execution_id, job_id=job_id, status=status, result=result
        )
        await self.transport.publish(self.topic, message)
        logger.debug(f"Published update for job {job_id} to {self.topic}")
        return message
