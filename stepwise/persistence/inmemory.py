"""In-memory implementation of the execution repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from ..constants import ExecutionStatus
from ..errors import TransactionError
from .models import Execution, Job, Node, Workflow
from .repository import ExecutionRepository


class InMemoryTransaction:
    """Changes staged on top of the committed state of the repository."""

    def __init__(self, repository: "InMemoryExecutionRepository") -> None:
        self._repository = repository
        self._active = True
        self.workflows: Dict[int, Workflow] = {}
        self.nodes: Dict[int, list[Node]] = {}
        self.executions: Dict[int, Execution] = {}
        self.jobs: Dict[int, Job] = {}

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if not self._active:
            raise TransactionError("transaction already finished")

    async def commit(self) -> None:
        self.ensure_active()
        self._repository._apply(self)
        self._active = False

    async def rollback(self) -> None:
        self.ensure_active()
        self._active = False


class InMemoryExecutionRepository(ExecutionRepository):
    """Store templates and execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, Workflow] = {}
        self._nodes: Dict[int, list[Node]] = {}
        self._executions: Dict[int, Execution] = {}
        self._jobs: Dict[int, Job] = {}
        self._execution_id = 0
        self._job_id = 0

    # ------------------------------------------------------------------
    # Transaction plumbing
    def _stage(self, transaction: Any) -> InMemoryTransaction | None:
        if transaction is None:
            return None
        if not isinstance(transaction, InMemoryTransaction):
            raise TransactionError(
                f"unsupported transaction handle {type(transaction).__name__}"
            )
        transaction.ensure_active()
        return transaction

    def _apply(self, tx: InMemoryTransaction) -> None:
        self._workflows.update(tx.workflows)
        self._nodes.update(tx.nodes)
        self._executions.update(tx.executions)
        self._jobs.update(tx.jobs)

    def _jobs_view(self, tx: InMemoryTransaction | None) -> Dict[int, Job]:
        if tx is None:
            return self._jobs
        return {**self._jobs, **tx.jobs}

    def _execution(self, execution_id: int, tx: InMemoryTransaction | None) -> Execution | None:
        if tx is not None and execution_id in tx.executions:
            return tx.executions[execution_id]
        return self._executions.get(execution_id)

    # ------------------------------------------------------------------
    # Repository API
    async def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    async def save_workflow(
        self, workflow: Workflow, nodes: list[Node], transaction: Any = None
    ) -> None:
        tx = self._stage(transaction)
        workflows = tx.workflows if tx else self._workflows
        stored_nodes = tx.nodes if tx else self._nodes
        workflows[workflow.id] = workflow.model_copy()
        stored_nodes[workflow.id] = [n.model_copy() for n in nodes]

    async def load_workflow(self, workflow_id: int, transaction: Any = None) -> Workflow | None:
        tx = self._stage(transaction)
        if tx is not None and workflow_id in tx.workflows:
            return tx.workflows[workflow_id].model_copy()
        wf = self._workflows.get(workflow_id)
        return wf.model_copy() if wf else None

    async def load_nodes(self, workflow_id: int, transaction: Any = None) -> list[Node]:
        tx = self._stage(transaction)
        if tx is not None and workflow_id in tx.nodes:
            return list(tx.nodes[workflow_id])
        return list(self._nodes.get(workflow_id, []))

    async def create_execution(
        self, workflow_id: int, context: Any = None, transaction: Any = None
    ) -> Execution:
        tx = self._stage(transaction)
        self._execution_id += 1
        execution = Execution(
            id=self._execution_id,
            workflow_id=workflow_id,
            context=context,
            status=ExecutionStatus.STARTED,
            created_at=datetime.utcnow(),
        )
        (tx.executions if tx else self._executions)[execution.id] = execution
        return execution.model_copy(deep=True)

    async def get_execution(self, execution_id: int, transaction: Any = None) -> Execution | None:
        execution = self._execution(execution_id, self._stage(transaction))
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self) -> list[Execution]:
        return [e.model_copy(deep=True) for e in self._executions.values()]

    async def load_jobs(self, execution_id: int, transaction: Any = None) -> list[Job]:
        jobs = self._jobs_view(self._stage(transaction))
        return [
            job.model_copy(deep=True)
            for _, job in sorted(jobs.items())
            if job.execution_id == execution_id
        ]

    async def get_job(self, job_id: int, transaction: Any = None) -> Job | None:
        job = self._jobs_view(self._stage(transaction)).get(job_id)
        return job.model_copy(deep=True) if job else None

    async def upsert_job(self, job: Job, transaction: Any = None) -> Job:
        tx = self._stage(transaction)
        existing = next(
            (
                j
                for j in self._jobs_view(tx).values()
                if j.execution_id == job.execution_id and j.node_id == job.node_id
            ),
            None,
        )
        now = datetime.utcnow()
        if existing is not None:
            stored = existing.model_copy(
                update={
                    "status": job.status,
                    "result": job.result,
                    "updated_at": now,
                },
                deep=True,
            )
        else:
            self._job_id += 1
            stored = job.model_copy(
                update={"id": self._job_id, "created_at": now, "updated_at": now},
                deep=True,
            )
        (tx.jobs if tx else self._jobs)[stored.id] = stored
        return stored.model_copy(deep=True)

    async def update_execution_status(
        self, execution_id: int, status: ExecutionStatus, transaction: Any = None
    ) -> None:
        tx = self._stage(transaction)
        execution = self._execution(execution_id, tx)
        if execution is None or execution.status != ExecutionStatus.STARTED:
            return
        updated = execution.model_copy(update={"status": status})
        (tx.executions if tx else self._executions)[execution_id] = updated
