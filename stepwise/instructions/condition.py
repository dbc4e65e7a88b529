"""Branch on a calculated boolean.

Node config::

    calculation:       a calculation or a group (see ``evaluate``)
    reject_on_false:   reject the job instead of continuing when false

When a branch exists for the outcome (branch index 1 for true, 0 for false)
the condition job is saved PENDING and the branch runs. When the branch
exits, ``resume`` gives the condition job the branch's status and result so
the trunk continues (or stops) accordingly.
"""

from __future__ import annotations

import logging
import operator
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from ..constants import BRANCH_ON_FALSE, BRANCH_ON_TRUE, JobStatus

if TYPE_CHECKING:
    from ..engine import Processor
    from ..persistence.models import Job, Node

logger = logging.getLogger(__name__)


def _includes(a: Any, b: Any) -> bool:
    return a is not None and b in a


def _empty(a: Any, *_: Any) -> bool:
    return a is None or a == "" or (hasattr(a, "__len__") and len(a) == 0)


CALCULATORS: dict[str, Callable[..., bool]] = {
    "equal": operator.eq,
    "notEqual": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "includes": _includes,
    "notIncludes": lambda a, b: not _includes(a, b),
    "startsWith": lambda a, b: isinstance(a, str) and a.startswith(b),
    "endsWith": lambda a, b: isinstance(a, str) and a.endswith(b),
    "empty": _empty,
    "notEmpty": lambda a, *_: not _empty(a),
}


def get_path(data: Any, path: Optional[str]) -> Any:
    """Resolve a dotted path through mappings and sequences."""
    if not path:
        return data
    for key in path.split("."):
        if isinstance(data, Mapping):
            data = data.get(key)
        elif isinstance(data, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            data = data[index] if -len(data) <= index < len(data) else None
        else:
            return None
    return data


def resolve_operand(operand: Any, scope: Mapping[str, Any]) -> Any:
    """Operands are literals or single-key references like ``{"$context": "a.b"}``."""
    if isinstance(operand, Mapping) and len(operand) == 1:
        (key, path), = operand.items()
        if key in scope:
            return get_path(scope[key], path)
    return operand


def evaluate(calculation: Mapping[str, Any], scope: Mapping[str, Any]) -> bool:
    """Evaluate a calculation.

    A calculation is either ``{"calculator": name, "operands": [...]}`` or a
    group ``{"group": {"type": "and" | "or", "calculations": [...]}}``.
    """
    group = calculation.get("group")
    if group is not None:
        results = (evaluate(c, scope) for c in group.get("calculations", []))
        return any(results) if group.get("type", "and") == "or" else all(results)

    name = calculation.get("calculator", "equal")
    try:
        calculator = CALCULATORS[name]
    except KeyError:
        raise ValueError(f"unknown calculator {name!r}") from None
    operands = [resolve_operand(o, scope) for o in calculation.get("operands", [])]
    return bool(calculator(*operands))


async def run(
    node: "Node", prev_job: Optional["Job"], processor: "Processor"
) -> Optional[dict[str, Any]]:
    calculation = node.config.get("calculation")
    scope = {
        "$context": processor.context,
        "$input": prev_job.result if prev_job is not None else None,
    }
    result = evaluate(calculation, scope) if calculation else True

    if not result and node.config.get("reject_on_false"):
        return {"status": JobStatus.REJECTED, "result": result}

    branch = processor.graph.branch(node, BRANCH_ON_TRUE if result else BRANCH_ON_FALSE)
    if branch is None:
        return {"status": JobStatus.RESOLVED, "result": result}

    logger.debug(f"Condition node {node.id} evaluated {result}, entering branch {branch.id}")
    job = await processor.save_job(
        {"status": JobStatus.PENDING, "result": result}, node=node, previous=prev_job
    )
    # the branch hands control back through resume
    await processor.exec(branch, job)
    return None


def resume(node: "Node", branch_job: "Job", processor: "Processor") -> dict[str, Any]:
    return {"status": branch_job.status, "result": branch_job.result}
