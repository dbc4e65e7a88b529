"""Workflow execution engine.

``ExecutionEngine.start`` and ``ExecutionEngine.resume`` are the only entry
points allowed to mutate jobs and executions. Each call builds a
:class:`Processor` holding the node graph and the jobs of one execution,
walks the graph from the active node and persists every job through a single
transaction.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Union

from .config import EngineConfig
from .constants import EXECUTION_STATUS_BY_JOB, ExecutionStatus, JobStatus
from .errors import (
    ExecutionEndedError,
    ExecutionStateError,
    MissingResumeInstructionError,
    StepwiseError,
)
from .graph import NodeGraph
from .instructions import REGISTRY, Handler, InstructionRegistry
from .persistence.models import Execution, Job, Node
from .persistence.repository import ExecutionRepository, Transaction

logger = logging.getLogger(__name__)


def describe_error(exc: BaseException) -> str:
    """Text stored as the result of a job rejected by an uncaught error."""
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


class Processor:
    """Traversal state of one ``start``/``resume`` call.

    Instructions receive the processor as their third argument. Through it
    they can read the execution context and the graph, persist jobs, and
    descend into branches with :meth:`exec`.
    """

    def __init__(
        self,
        engine: "ExecutionEngine",
        execution: Execution,
        graph: NodeGraph,
        jobs: list[Job],
        transaction: Transaction,
    ) -> None:
        self.execution = execution
        self.graph = graph
        self.transaction = transaction
        self.registry = engine.registry
        self.repository = engine.repository
        self.config = engine.config
        self.jobs: dict[int, Job] = {job.id: job for job in jobs}
        self._jobs_by_node: dict[int, Job] = {job.node_id: job for job in jobs}
        # set once a write fails; the transaction cannot be committed after it
        self._write_error: Optional[BaseException] = None

    @property
    def context(self) -> Any:
        return self.execution.context

    def job_for(self, node: Node) -> Optional[Job]:
        """The job already recorded for ``node`` in this execution, if any."""
        return self._jobs_by_node.get(node.id)

    # ------------------------------------------------------------------
    # Job persistence
    async def save_job(
        self,
        values: Union[Job, Mapping[str, Any]],
        node: Optional[Node] = None,
        previous: Optional[Job] = None,
    ) -> Job:
        """Insert or update the job of a node.

        ``values`` is a :class:`Job` or a mapping with ``status`` and
        ``result``. The job is recorded for ``node`` (or ``values.node_id``).
        A node that already has a job gets it updated in place, keeping its
        id and upstream; otherwise the new job points at ``previous``.
        """
        if isinstance(values, Job):
            node_id = node.id if node is not None else values.node_id
            status, result = values.status, values.result
        else:
            node_id = node.id if node is not None else values.get("node_id")
            status = values.get("status", JobStatus.PENDING)
            result = values.get("result")
        if node_id is None:
            raise ValueError("cannot save a job without a node")
        status = JobStatus[status.upper()] if isinstance(status, str) else JobStatus(status)

        existing = self._jobs_by_node.get(node_id)
        if existing is not None:
            payload = existing.model_copy(update={"status": status, "result": result})
        else:
            payload = Job(
                execution_id=self.execution.id,
                node_id=node_id,
                upstream_id=previous.id if previous is not None else None,
                status=status,
                result=result,
            )
        async with self._writing():
            saved = await self.repository.upsert_job(payload, transaction=self.transaction)

        if existing is not None:
            # handlers may hold a reference to the job, keep it current
            for field in ("id", "upstream_id", "status", "result", "created_at", "updated_at"):
                setattr(existing, field, getattr(saved, field))
            saved = existing
        self.jobs[saved.id] = saved
        self._jobs_by_node[node_id] = saved
        logger.debug(
            f"Saved job {saved.id} for node {node_id} with status {saved.status.name} "
            f"(execution_id={self.execution.id})"
        )
        return saved

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[None]:
        try:
            yield
        except Exception as exc:
            self._write_error = exc
            raise

    def find_branch_parent_job(self, job: Job, node: Node) -> Optional[Job]:
        """Walk the job chain upward from ``job`` to the job of ``node``."""
        current: Optional[Job] = job
        for _ in range(len(self.jobs) + 1):
            if current is None:
                return None
            if current.node_id == node.id:
                return self._jobs_by_node.get(node.id, current)
            current = self.jobs.get(current.upstream_id) if current.upstream_id else None
        return None

    # ------------------------------------------------------------------
    # Traversal
    async def exec(self, node: Node, input_job: Optional[Job] = None) -> Optional[Job]:
        """Enter ``node`` through its ``run`` handler and keep walking."""
        return await self._run(self.registry.lookup(node.type).run, node, input_job)

    async def recall(self, node: Node, job: Job) -> Optional[Job]:
        """Hand ``job`` to the ``resume`` handler of ``node`` and keep walking."""
        return await self._run(self._resume_handler(node), node, job)

    async def end(self, node: Node, job: Job) -> Optional[Job]:
        """Leave the scope of ``node``: return control to the parent or exit."""
        parent = self.graph.branch_parent(node)
        if parent is not None:
            return await self.recall(parent, job)
        await self.exit(job)
        return job

    async def exit(self, job: Optional[Job]) -> None:
        """Finish the execution with the status derived from the last job."""
        if job is None:
            status = ExecutionStatus.RESOLVED
        elif job.status == JobStatus.PENDING:
            if self.config.pending_root_status == "started":
                logger.info(
                    f"Execution {self.execution.id} suspended at node {job.node_id}"
                )
                return
            status = ExecutionStatus.RESOLVED
        else:
            status = EXECUTION_STATUS_BY_JOB[job.status]

        async with self._writing():
            await self.repository.update_execution_status(
                self.execution.id, status, transaction=self.transaction
            )
        self.execution.status = status
        logger.info(f"Execution {self.execution.id} finished with status {status.name}")

    def _resume_handler(self, node: Node) -> Handler:
        instruction = self.registry.lookup(node.type)
        if instruction.resume is None:
            raise MissingResumeInstructionError(node.type, node.id)
        return instruction.resume

    async def _call(
        self, handler: Handler, node: Node, previous: Optional[Job]
    ) -> Optional[Job]:
        try:
            outcome = handler(node, previous, self)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except StepwiseError:
            raise
        except Exception as exc:
            if self._write_error is not None:
                # a branch job could not be stored, not a failure of the handler
                raise
            logger.warning(
                f"Node {node.id} ({node.type}) raised {describe_error(exc)!r} "
                f"in execution {self.execution.id}"
            )
            outcome = {"status": JobStatus.REJECTED, "result": describe_error(exc)}

        if outcome is None:
            logger.debug(f"Node {node.id} ({node.type}) produced no job")
            return None
        return await self.save_job(outcome, node=node, previous=previous)

    async def _run(
        self, handler: Handler, node: Node, previous: Optional[Job]
    ) -> Optional[Job]:
        while True:
            job = await self._call(handler, node, previous)
            if job is None:
                return None

            if job.status == JobStatus.RESOLVED and node.downstream_id is not None:
                node, previous = self.graph.get(node.downstream_id), job
                handler = self.registry.lookup(node.type).run
                continue

            # all nodes in the scope have run, the parent takes over
            parent = self.graph.branch_parent(node)
            if parent is None:
                await self.exit(job)
                return job
            node, previous = parent, job
            handler = self._resume_handler(parent)


class ExecutionEngine:
    """Public entry points for starting and resuming executions."""

    def __init__(
        self,
        repository: ExecutionRepository,
        registry: Optional[InstructionRegistry] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry or REGISTRY
        self.config = config or EngineConfig()
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, execution_id: int) -> asyncio.Lock:
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[execution_id] = lock
        return lock

    @staticmethod
    def _ensure_started(execution: Execution) -> None:
        if execution.status != ExecutionStatus.STARTED:
            raise ExecutionEndedError(execution.id, ExecutionStatus(execution.status).name)

    @asynccontextmanager
    async def _transaction(
        self, transaction: Optional[Transaction]
    ) -> AsyncIterator[Transaction]:
        if transaction is not None:
            yield transaction
            return
        tx = await self.repository.begin()
        try:
            yield tx
        except BaseException:
            await tx.rollback()
            raise
        await tx.commit()

    async def _prepare(self, execution: Execution, transaction: Transaction) -> Processor:
        graph = await NodeGraph.load(
            self.repository, execution.workflow_id, transaction=transaction
        )
        # fail on unknown node types before any job is written
        for node in graph:
            self.registry.lookup(node.type)
        jobs = await self.repository.load_jobs(execution.id, transaction=transaction)
        return Processor(self, execution, graph, jobs, transaction)

    async def start(
        self, execution: Execution, transaction: Optional[Transaction] = None
    ) -> None:
        """Run a fresh execution from the head node of its workflow."""
        self._ensure_started(execution)
        async with self._lock(execution.id):
            self._ensure_started(execution)
            try:
                async with self._transaction(transaction) as tx:
                    processor = await self._prepare(execution, tx)
                    if processor.jobs:
                        raise ExecutionStateError(
                            f"execution {execution.id} already has jobs, use resume"
                        )
                    logger.info(
                        f"Starting execution {execution.id} of workflow {execution.workflow_id}"
                    )
                    head = processor.graph.head
                    if head is None:
                        await processor.exit(None)
                    else:
                        seed = Job(
                            execution_id=execution.id,
                            status=JobStatus.RESOLVED,
                            result=execution.context,
                        )
                        await processor.exec(head, seed)
            except BaseException:
                execution.status = ExecutionStatus.STARTED
                raise

    async def resume(
        self,
        execution: Execution,
        job: Job,
        transaction: Optional[Transaction] = None,
    ) -> None:
        """Continue an execution from ``job``, typically a completed suspension.

        A job already stored with a final status can only be replayed with that
        same status.
        """
        self._ensure_started(execution)
        if job.execution_id != execution.id:
            raise ExecutionStateError(
                f"job {job.id} belongs to execution {job.execution_id}, not {execution.id}"
            )
        async with self._lock(execution.id):
            self._ensure_started(execution)
            try:
                async with self._transaction(transaction) as tx:
                    processor = await self._prepare(execution, tx)
                    node = processor.graph.get(job.node_id)
                    stored = processor.job_for(node)
                    if (
                        stored is not None
                        and stored.status != JobStatus.PENDING
                        and job.status != stored.status
                    ):
                        raise ExecutionStateError(
                            f"job {stored.id} of node {node.id} is already "
                            f"{stored.status.name}, cannot resume it as "
                            f"{JobStatus(job.status).name}"
                        )
                    logger.info(
                        f"Resuming execution {execution.id} at node {node.id} "
                        f"with job {job.id} ({JobStatus(job.status).name})"
                    )
                    await processor.recall(node, job)
            except BaseException:
                execution.status = ExecutionStatus.STARTED
                raise
