"""Data models for workflow templates and persisted execution state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import ExecutionStatus, JobStatus


class Workflow(BaseModel):
    """Header of a workflow template."""

    id: int
    title: Optional[str] = None
    enabled: bool = True


class Node(BaseModel):
    """One step of a workflow template.

    Nodes form singly linked sequences through ``upstream_id`` and
    ``downstream_id``. A node with a ``branch_index`` is the first node of a
    nested scope whose parent is its upstream node.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    workflow_id: int
    type: str
    title: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)
    upstream_id: Optional[int] = None
    downstream_id: Optional[int] = None
    branch_index: Optional[int] = None


class Job(BaseModel):
    """Outcome of running one node once for one execution."""

    id: Optional[int] = None
    execution_id: int
    node_id: Optional[int] = None
    upstream_id: Optional[int] = None
    status: JobStatus = JobStatus.PENDING
    result: Any = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Execution(BaseModel):
    """One run of a workflow template against an initial context."""

    id: int
    workflow_id: int
    context: Any = None
    status: ExecutionStatus = ExecutionStatus.STARTED
    created_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status != ExecutionStatus.STARTED
