"""Instruction registry.

An instruction is the behaviour attached to a node type: a mandatory ``run``
handler called when the node is entered, and an optional ``resume`` handler
called when a branch spawned by the node exits or when a suspended job of the
node is completed from outside.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional, Union

from ..errors import UnknownInstructionError

if TYPE_CHECKING:
    from ..engine import Processor
    from ..persistence.models import Job, Node

HandlerResult = Union["Job", Mapping[str, Any], None]
Handler = Callable[
    ["Node", Optional["Job"], "Processor"],
    Union[HandlerResult, Awaitable[HandlerResult]],
]


@dataclass(frozen=True)
class Instruction:
    """Pair of handlers implementing one node type."""

    run: Handler
    resume: Optional[Handler] = None

    @classmethod
    def coerce(cls, value: Any) -> "Instruction":
        """Build an ``Instruction`` from a mapping, a handler object or a ``run`` function."""
        if isinstance(value, Instruction):
            return value
        if isinstance(value, Mapping):
            run, resume = value.get("run"), value.get("resume")
        elif hasattr(value, "run"):
            run, resume = value.run, getattr(value, "resume", None)
        else:
            run, resume = value, None
        if not callable(run):
            raise ValueError("an instruction must provide a callable `run`")
        if resume is not None and not callable(resume):
            raise ValueError("`resume` must be callable when provided")
        return cls(run=run, resume=resume)


class InstructionRegistry:
    """Mapping of node type to :class:`Instruction`.

    Built once at startup and only read while executions are traversed.
    """

    def __init__(self) -> None:
        self._instructions: dict[str, Instruction] = {}

    def register(self, node_type: str, instruction: Any) -> Instruction:
        """Register ``instruction`` for ``node_type``, replacing any previous one."""
        if not node_type:
            raise ValueError("node type must be a non-empty string")
        coerced = Instruction.coerce(instruction)
        self._instructions[node_type] = coerced
        return coerced

    def lookup(self, node_type: str) -> Instruction:
        try:
            return self._instructions[node_type]
        except KeyError:
            raise UnknownInstructionError(node_type) from None

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._instructions

    def types(self) -> list[str]:
        return sorted(self._instructions)


def _register_builtins(registry: InstructionRegistry) -> InstructionRegistry:
    from . import condition, echo, parallel, prompt

    registry.register("echo", echo)
    registry.register("condition", condition)
    registry.register("parallel", parallel)
    registry.register("prompt", prompt)
    return registry


def create_registry(builtins: bool = True) -> InstructionRegistry:
    """Return a new registry, optionally preloaded with the built-in instructions."""
    registry = InstructionRegistry()
    return _register_builtins(registry) if builtins else registry


# Process wide registry used when an engine is not given its own.
REGISTRY = create_registry()


def register_instruction(node_type: str, instruction: Any) -> Instruction:
    """Add ``instruction`` to ``REGISTRY`` under ``node_type``."""
    return REGISTRY.register(node_type, instruction)


def get_instruction(node_type: str) -> Instruction:
    return REGISTRY.lookup(node_type)


__all__ = [
    "Handler",
    "Instruction",
    "InstructionRegistry",
    "REGISTRY",
    "create_registry",
    "register_instruction",
    "get_instruction",
]
