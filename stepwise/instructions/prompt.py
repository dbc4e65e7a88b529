"""Manual step: suspend until the job is completed from outside.

``run`` leaves a PENDING job carrying ``config["form"]``. Whoever completes
the job sets its status and result and calls ``ExecutionEngine.resume``;
``resume`` then records the job as delivered. A job delivered as CANCELLED
stops the scope like any other non-resolved job.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ..constants import JobStatus

if TYPE_CHECKING:
    from ..engine import Processor
    from ..persistence.models import Job, Node


def run(node: "Node", prev_job: Optional["Job"], processor: "Processor") -> dict[str, Any]:
    return {"status": JobStatus.PENDING, "result": node.config.get("form")}


def resume(node: "Node", job: "Job", processor: "Processor") -> "Job":
    return job
