"""Run every branch of a node and join their outcomes.

Branches run one after another in branch index order. The parallel job keeps
one ``{"status", "result"}`` entry per branch and is decided by
``config["mode"]``:

* ``all`` (default): resolved once every branch resolved, failed as soon as
  one branch is rejected or cancelled.
* ``any``: resolved as soon as one branch resolved, rejected once every
  branch failed.
* ``race``: takes the status of the first branch that finishes.

Once decided, later branch exits are ignored and branches not yet started
are skipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from ..constants import JobStatus

if TYPE_CHECKING:
    from ..engine import Processor
    from ..persistence.models import Job, Node

logger = logging.getLogger(__name__)

Entry = Optional[dict[str, Any]]

_FAILED = (JobStatus.REJECTED, JobStatus.CANCELLED)


def _statuses(entries: Sequence[Entry]) -> list[Optional[JobStatus]]:
    return [JobStatus(e["status"]) if e else None for e in entries]


def _all(entries: Sequence[Entry]) -> JobStatus:
    statuses = _statuses(entries)
    failed = next((s for s in statuses if s in _FAILED), None)
    if failed is not None:
        return failed
    if all(s == JobStatus.RESOLVED for s in statuses):
        return JobStatus.RESOLVED
    return JobStatus.PENDING


def _any(entries: Sequence[Entry]) -> JobStatus:
    statuses = _statuses(entries)
    if any(s == JobStatus.RESOLVED for s in statuses):
        return JobStatus.RESOLVED
    if all(s in _FAILED for s in statuses):
        return JobStatus.REJECTED
    return JobStatus.PENDING


def _race(entries: Sequence[Entry]) -> JobStatus:
    finished = [s for s in _statuses(entries) if s not in (None, JobStatus.PENDING)]
    return finished[0] if finished else JobStatus.PENDING


MODES: dict[str, Callable[[Sequence[Entry]], JobStatus]] = {
    "all": _all,
    "any": _any,
    "race": _race,
}


def _mode(node: "Node") -> Callable[[Sequence[Entry]], JobStatus]:
    mode = node.config.get("mode", "all")
    try:
        return MODES[mode]
    except KeyError:
        raise ValueError(f"unknown parallel mode {mode!r}") from None


async def run(
    node: "Node", prev_job: Optional["Job"], processor: "Processor"
) -> Optional[dict[str, Any]]:
    _mode(node)  # reject an unknown mode before any branch runs
    branches = processor.graph.branches(node)
    if not branches:
        return {"status": JobStatus.RESOLVED, "result": []}

    job = await processor.save_job(
        {"status": JobStatus.PENDING, "result": [None] * len(branches)},
        node=node,
        previous=prev_job,
    )
    for branch in branches:
        if job.status != JobStatus.PENDING:
            logger.debug(f"Parallel node {node.id} decided, skipping branch {branch.id}")
            break
        await processor.exec(branch, job)
    return None


async def resume(
    node: "Node", branch_job: "Job", processor: "Processor"
) -> Optional[dict[str, Any]]:
    job = processor.find_branch_parent_job(branch_job, node)
    if job is None or job.status != JobStatus.PENDING:
        # already decided, later branches do not change the outcome
        return None

    start = processor.graph.branch_start(processor.graph.get(branch_job.node_id))
    index = [b.id for b in processor.graph.branches(node)].index(start.id)

    entries = list(job.result or [])
    entries[index] = {"status": int(branch_job.status), "result": branch_job.result}
    status = _mode(node)(entries)

    if status == JobStatus.PENDING:
        await processor.save_job({"status": status, "result": entries}, node=node)
        return None
    return {"status": status, "result": entries}
