"""Engine level errors.

Every exception defined here is fatal for the call that raised it: retrying
the same ``start``/``resume`` will fail the same way. Failures raised by
instruction handlers are not represented here; they become rejected jobs.
"""

from __future__ import annotations

from typing import Any


class StepwiseError(Exception):
    """Base class for all engine errors."""


class NotFoundError(StepwiseError):
    """A workflow, node, execution or job does not exist."""

    def __init__(self, kind: str, key: Any) -> None:
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class UnknownInstructionError(StepwiseError):
    """No instruction is registered for a node type."""

    def __init__(self, node_type: str) -> None:
        super().__init__(f"no instruction registered for node type {node_type!r}")
        self.node_type = node_type


class MissingResumeInstructionError(StepwiseError):
    """A node owning a branch (or a suspended job) has no ``resume`` handler."""

    def __init__(self, node_type: str, node_id: int | None = None) -> None:
        super().__init__(
            f"instruction {node_type!r} (node {node_id}) must implement `resume` "
            "because the node made a branch or was suspended"
        )
        self.node_type = node_type
        self.node_id = node_id


class ExecutionEndedError(StepwiseError):
    """``start``/``resume`` was called on an execution that already ended."""

    def __init__(self, execution_id: int | None, status: Any) -> None:
        super().__init__(f"execution {execution_id} was ended with status {status!r}")
        self.execution_id = execution_id
        self.status = status


class ExecutionStateError(StepwiseError):
    """The persisted state of an execution does not allow the requested call."""


class InvalidGraphError(StepwiseError):
    """The node graph of a workflow violates its structural invariants."""


class TransactionError(StepwiseError):
    """A transaction handle was used after it was committed or rolled back."""


__all__ = [
    "StepwiseError",
    "NotFoundError",
    "UnknownInstructionError",
    "MissingResumeInstructionError",
    "ExecutionEndedError",
    "ExecutionStateError",
    "InvalidGraphError",
    "TransactionError",
]
