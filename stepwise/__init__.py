"""stepwise: resumable workflow execution engine."""

from .constants import ExecutionStatus, JobStatus
from .contracts import JobUpdateMessage
from .dispatch import ExecutionDispatcher
from .engine import ExecutionEngine, Processor
from .execute import ResumeExecutor
from .graph import NodeGraph
from .instructions import REGISTRY, Instruction, InstructionRegistry, register_instruction
from .persistence import Execution, Job, Node, Workflow, get_repository
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ExecutionStatus",
    "JobStatus",
    "JobUpdateMessage",
    "ExecutionDispatcher",
    "ExecutionEngine",
    "Processor",
    "ResumeExecutor",
    "NodeGraph",
    "Instruction",
    "InstructionRegistry",
    "REGISTRY",
    "register_instruction",
    "Workflow",
    "Node",
    "Job",
    "Execution",
    "get_repository",
    "get_transport",
]
