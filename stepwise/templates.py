"""Load workflow templates from YAML files.

A template file looks like::

    id: 1
    title: Review
    nodes:
      - {id: 1, type: echo, downstream_id: 2}
      - {id: 2, type: parallel, upstream_id: 1, config: {mode: all}}
      - {id: 3, type: prompt, upstream_id: 2, branch_index: 0}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from .graph import NodeGraph
from .persistence.models import Node, Workflow
from .persistence.repository import ExecutionRepository, Transaction


class NodeTemplate(BaseModel):
    """Node as written in a template file."""

    id: int
    type: str
    title: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)
    upstream_id: Optional[int] = None
    downstream_id: Optional[int] = None
    branch_index: Optional[int] = None


class WorkflowTemplate(BaseModel):
    """Whole template file."""

    id: int
    title: Optional[str] = None
    enabled: bool = True
    nodes: list[NodeTemplate] = Field(default_factory=list)

    def build(self) -> tuple[Workflow, list[Node]]:
        """Return the workflow and its nodes, checking the graph structure."""
        workflow = Workflow(id=self.id, title=self.title, enabled=self.enabled)
        nodes = [Node(workflow_id=self.id, **n.model_dump()) for n in self.nodes]
        graph = NodeGraph(nodes, workflow_id=self.id)
        for node in graph:
            # raises on dangling references and cycles
            list(graph.scope(node))
            graph.branch_start(node)
        return workflow, nodes


def parse_template(data: dict[str, Any]) -> tuple[Workflow, list[Node]]:
    return WorkflowTemplate.model_validate(data).build()


def load_template(path: str | Path) -> tuple[Workflow, list[Node]]:
    """Read and validate the template stored in ``path``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return parse_template(data)


async def import_template(
    repository: ExecutionRepository,
    path: str | Path,
    transaction: Transaction | None = None,
) -> Workflow:
    """Load ``path`` and store it in ``repository``, replacing older nodes."""
    workflow, nodes = load_template(path)
    await repository.save_workflow(workflow, nodes, transaction=transaction)
    return workflow
