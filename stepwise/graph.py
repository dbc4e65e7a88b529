"""Read model of a workflow template.

Nodes are kept in an arena keyed by id; ``upstream_id``/``downstream_id`` are
resolved through lookups, never through object references. Every walk is a
plain loop bounded by the number of nodes, so a malformed template with a
cycle raises :class:`InvalidGraphError` instead of looping forever.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from .errors import InvalidGraphError, NotFoundError
from .persistence.models import Node

if TYPE_CHECKING:
    from .persistence.repository import ExecutionRepository, Transaction


class NodeGraph:
    """Immutable, id-indexed view of the nodes of one workflow."""

    def __init__(self, nodes: Iterable[Node], workflow_id: Optional[int] = None) -> None:
        self.workflow_id = workflow_id
        self.nodes: tuple[Node, ...] = tuple(nodes)
        self._by_id: dict[int, Node] = {}
        for node in self.nodes:
            if node.id in self._by_id:
                raise InvalidGraphError(f"duplicate node id {node.id}")
            self._by_id[node.id] = node
        self._head = self._find_head()

    @classmethod
    async def load(
        cls,
        repository: "ExecutionRepository",
        workflow_id: int,
        transaction: "Transaction | None" = None,
    ) -> "NodeGraph":
        """Load the template ``workflow_id`` from ``repository``."""
        workflow = await repository.load_workflow(workflow_id, transaction=transaction)
        if workflow is None:
            raise NotFoundError("workflow", workflow_id)
        nodes = await repository.load_nodes(workflow_id, transaction=transaction)
        return cls(nodes, workflow_id=workflow_id)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    # ------------------------------------------------------------------
    def _find_head(self) -> Optional[Node]:
        if not self.nodes:
            return None
        heads = [n for n in self.nodes if n.upstream_id is None]
        if len(heads) != 1:
            raise InvalidGraphError(
                f"workflow {self.workflow_id} must have exactly one head node, "
                f"found {len(heads)}"
            )
        head = heads[0]
        if head.branch_index is not None:
            raise InvalidGraphError(f"head node {head.id} cannot start a branch")
        return head

    def _walk(self, start: Optional[Node], attr: str) -> Iterator[Node]:
        node = start
        for _ in range(len(self.nodes) + 1):
            if node is None:
                return
            yield node
            next_id = getattr(node, attr)
            node = self.get(next_id) if next_id is not None else None
        raise InvalidGraphError(f"cycle detected while following {attr} from node {start.id}")

    # ------------------------------------------------------------------
    @property
    def head(self) -> Optional[Node]:
        """The only trunk node without upstream, ``None`` for an empty graph."""
        return self._head

    def get(self, node_id: int) -> Node:
        try:
            return self._by_id[node_id]
        except KeyError:
            raise NotFoundError("node", node_id) from None

    def upstream(self, node: Node) -> Optional[Node]:
        return self.get(node.upstream_id) if node.upstream_id is not None else None

    def downstream(self, node: Node) -> Optional[Node]:
        return self.get(node.downstream_id) if node.downstream_id is not None else None

    def scope(self, node: Node) -> Iterator[Node]:
        """Nodes of the scope starting at ``node``, in downstream order."""
        return self._walk(node, "downstream_id")

    def branch_start(self, node: Node) -> Optional[Node]:
        """First node of the branch containing ``node``; ``None`` on the trunk."""
        for n in self._walk(node, "upstream_id"):
            if n.branch_index is not None:
                return n
        return None

    def branch_parent(self, node: Node) -> Optional[Node]:
        """The node that spawned the branch containing ``node``."""
        start = self.branch_start(node)
        if start is None:
            return None
        return self.upstream(start)

    def branches(self, node: Node) -> list[Node]:
        """Branch entry nodes spawned by ``node``, ordered by branch index."""
        return sorted(
            (
                n
                for n in self.nodes
                if n.upstream_id == node.id and n.branch_index is not None
            ),
            key=lambda n: n.branch_index,
        )

    def branch(self, node: Node, branch_index: int) -> Optional[Node]:
        return next((n for n in self.branches(node) if n.branch_index == branch_index), None)
