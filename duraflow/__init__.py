"""duraflow: durable workflows with replayed histories and retried activities."""

from .activities import Activity, BinaryPayload, ComputeHashActivity, HashResult
from .api import HashUploadService
from .contracts import ActivityOutcome, ActivityTask, WorkflowStatus, WorkflowTask
from .dispatch import WorkflowHandle
from .execute import ActivityExecutor
from .persistence import get_repository
from .registry import REGISTRY, Registry, register_activity, register_workflow
from .stubs import ActivityStub, stub
from .transports import get_transport
from .workflow import Workflow, WorkflowContext, decide
from .workflow_engine import WorkflowEngine, get_engine
from .workflows import ImageHashWorkflow, register_defaults

__version__ = "0.1.0"
__all__ = [
    "Activity",
    "ActivityExecutor",
    "ActivityOutcome",
    "ActivityStub",
    "ActivityTask",
    "BinaryPayload",
    "ComputeHashActivity",
    "HashResult",
    "HashUploadService",
    "ImageHashWorkflow",
    "REGISTRY",
    "Registry",
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowHandle",
    "WorkflowStatus",
    "WorkflowTask",
    "decide",
    "get_engine",
    "get_repository",
    "get_transport",
    "register_activity",
    "register_defaults",
    "register_workflow",
    "stub",
]
