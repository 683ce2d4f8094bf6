"""Client-side handle for starting and inspecting workflow instances."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from .contracts import ErrorInfo, WorkflowStatus
from .errors import WorkflowNotFound
from .registry import definition_name

if TYPE_CHECKING:
    from .workflow_engine import WorkflowEngine


class WorkflowHandle:
    """Service-side reference to one workflow instance."""

    def __init__(
        self,
        workflow: Any,
        engine: Optional["WorkflowEngine"] = None,
        instance_id: Optional[str] = None,
    ) -> None:
        if engine is None:
            from .workflow_engine import get_engine

            engine = get_engine()
        self.workflow_name = definition_name(workflow)
        self._engine = engine
        self._instance_id = instance_id

    @classmethod
    def make(
        cls, workflow: Any, engine: Optional["WorkflowEngine"] = None
    ) -> "WorkflowHandle":
        """Create an unstarted handle for ``workflow``."""
        return cls(workflow, engine=engine)

    @classmethod
    async def load(
        cls,
        instance_id: str,
        workflow: Any,
        engine: Optional["WorkflowEngine"] = None,
    ) -> "WorkflowHandle":
        """Rebind to an existing instance.

        Raises:
            WorkflowNotFound: If no such instance exists, or it belongs to a
                different workflow.
        """
        handle = cls(workflow, engine=engine, instance_id=instance_id)
        instance = await handle._engine.get_instance(instance_id)
        if instance.workflow_name != handle.workflow_name:
            raise WorkflowNotFound(
                f"Instance {instance_id} runs {instance.workflow_name}, "
                f"not {handle.workflow_name}"
            )
        return handle

    @property
    def id(self) -> str:
        if self._instance_id is None:
            raise RuntimeError("Workflow handle has not been started")
        return self._instance_id

    async def start(self, *args: Any) -> str:
        """Start a new instance with ``args`` and bind this handle to it."""
        if self._instance_id is not None:
            raise RuntimeError(f"Workflow handle already bound to {self._instance_id}")
        self._instance_id = await self._engine.start_workflow(self.workflow_name, *args)
        return self._instance_id

    async def status(self) -> WorkflowStatus:
        return await self._engine.status(self.id)

    async def output(self) -> Any:
        return await self._engine.output(self.id)

    async def error(self) -> Optional[ErrorInfo]:
        return await self._engine.error(self.id)

    def __repr__(self) -> str:
        return f"WorkflowHandle({self.workflow_name!r}, id={self._instance_id!r})"
