"""Repository abstraction for workflow templates and execution state."""

from __future__ import annotations

from typing import Any, Protocol

from ..constants import ExecutionStatus
from .models import Execution, Job, Node, Workflow


class Transaction(Protocol):
    """Handle of one atomic unit of work.

    Every repository operation accepts an optional transaction. Operations
    called without one are applied immediately.
    """

    @property
    def active(self) -> bool:
        """``False`` once the transaction was committed or rolled back."""

    async def commit(self) -> None:
        """Make all changes done through this handle durable."""

    async def rollback(self) -> None:
        """Discard all changes done through this handle."""


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends."""

    async def begin(self) -> Transaction:
        """Open a new transaction."""

    async def save_workflow(
        self, workflow: Workflow, nodes: list[Node], transaction: Transaction | None = None
    ) -> None:
        """Persist a workflow template, replacing its previous nodes."""

    async def load_workflow(
        self, workflow_id: int, transaction: Transaction | None = None
    ) -> Workflow | None:
        """Retrieve a workflow header by id."""

    async def load_nodes(
        self, workflow_id: int, transaction: Transaction | None = None
    ) -> list[Node]:
        """Return all nodes of a workflow."""

    async def create_execution(
        self, workflow_id: int, context: Any = None, transaction: Transaction | None = None
    ) -> Execution:
        """Persist a new STARTED execution."""

    async def get_execution(
        self, execution_id: int, transaction: Transaction | None = None
    ) -> Execution | None:
        """Retrieve an execution by id."""

    async def list_executions(self) -> list[Execution]:
        """Return all persisted executions."""

    async def load_jobs(
        self, execution_id: int, transaction: Transaction | None = None
    ) -> list[Job]:
        """Return the jobs of an execution ordered by id."""

    async def get_job(self, job_id: int, transaction: Transaction | None = None) -> Job | None:
        """Retrieve a job by id."""

    async def upsert_job(self, job: Job, transaction: Transaction | None = None) -> Job:
        """Insert or update the job keyed by ``(execution_id, node_id)``."""

    async def update_execution_status(
        self,
        execution_id: int,
        status: ExecutionStatus,
        transaction: Transaction | None = None,
    ) -> None:
        """Set the status of an execution that is still STARTED."""
