"""Status codes shared by executions and jobs."""

from __future__ import annotations

from enum import IntEnum


class ExecutionStatus(IntEnum):
    """Lifecycle of one workflow execution.

    Every status other than ``STARTED`` is terminal.
    """

    STARTED = 0
    RESOLVED = 1
    REJECTED = -1
    CANCELLED = -2


class JobStatus(IntEnum):
    """Outcome of running one node once."""

    PENDING = 0
    RESOLVED = 1
    REJECTED = -1
    CANCELLED = -2


# Final job status -> execution status when no parent scope takes over.
EXECUTION_STATUS_BY_JOB = {
    JobStatus.RESOLVED: ExecutionStatus.RESOLVED,
    JobStatus.REJECTED: ExecutionStatus.REJECTED,
    JobStatus.CANCELLED: ExecutionStatus.CANCELLED,
}

# Branch indexes used by the ``condition`` instruction.
BRANCH_ON_TRUE = 1
BRANCH_ON_FALSE = 0

DEFAULT_JOB_TOPIC = "stepwise.jobs"
