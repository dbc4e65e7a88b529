"""Pass a value through: ``config["value"]`` or the previous job's result."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ..constants import JobStatus

if TYPE_CHECKING:
    from ..engine import Processor
    from ..persistence.models import Job, Node


def run(node: "Node", prev_job: Optional["Job"], processor: "Processor") -> dict[str, Any]:
    if "value" in node.config:
        result = node.config["value"]
    else:
        result = prev_job.result if prev_job is not None else None
    return {"status": JobStatus.RESOLVED, "result": result}
