"""Activity and workflow registries."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..errors import UnknownActivity, UnknownWorkflow
from .models import ActivityDefinition, WorkflowDefinition


def definition_name(obj: Any) -> str:
    if isinstance(obj, str):
        return obj
    lookup = getattr(obj, "activity_name", None) or getattr(obj, "workflow_name", None)
    if callable(lookup):
        return lookup()
    return getattr(obj, "name", None) or obj.__name__


class Registry:
    """Name lookup for activities and workflows.

    Registration happens at process start. Once ``freeze`` has been called
    (workers do this when they start) the tables are read-only.
    """

    def __init__(
        self,
        activities: Iterable[Any] = (),
        workflows: Iterable[Any] = (),
    ) -> None:
        self._activities: dict[str, ActivityDefinition] = {}
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._frozen = False
        for activity in activities:
            self.register_activity(activity)
        for workflow in workflows:
            self.register_workflow(workflow)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("Registry is frozen; register definitions at startup")

    def register_activity(
        self,
        activity_class: type,
        name: Optional[str] = None,
        tries: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> ActivityDefinition:
        """Add ``activity_class`` under ``name`` (defaults to the class name)."""
        self._check_mutable()
        definition = ActivityDefinition(
            name=name or definition_name(activity_class),
            tries=tries if tries is not None else getattr(activity_class, "tries", 1),
            timeout_seconds=(
                timeout_seconds
                if timeout_seconds is not None
                else getattr(activity_class, "timeout", 60.0)
            ),
            activity_class=activity_class,
        )
        if definition.name in self._activities:
            raise ValueError(f"Activity {definition.name!r} is already registered")
        self._activities[definition.name] = definition
        return definition

    def register_workflow(
        self, workflow_class: type, name: Optional[str] = None
    ) -> WorkflowDefinition:
        """Add ``workflow_class`` under ``name`` (defaults to the class name)."""
        self._check_mutable()
        definition = WorkflowDefinition(
            name=name or definition_name(workflow_class), workflow_class=workflow_class
        )
        if definition.name in self._workflows:
            raise ValueError(f"Workflow {definition.name!r} is already registered")
        self._workflows[definition.name] = definition
        return definition

    def freeze(self) -> "Registry":
        if not self._frozen:
            self._activities = MappingProxyType(dict(self._activities))  # type: ignore[assignment]
            self._workflows = MappingProxyType(dict(self._workflows))  # type: ignore[assignment]
            self._frozen = True
        return self

    def activity(self, name: Any) -> ActivityDefinition:
        key = definition_name(name)
        try:
            return self._activities[key]
        except KeyError:
            raise UnknownActivity(f"Activity {key!r} is not registered") from None

    def workflow(self, name: Any) -> WorkflowDefinition:
        key = definition_name(name)
        try:
            return self._workflows[key]
        except KeyError:
            raise UnknownWorkflow(f"Workflow {key!r} is not registered") from None

    @property
    def activities(self) -> Mapping[str, ActivityDefinition]:
        return MappingProxyType(self._activities)

    @property
    def workflows(self) -> Mapping[str, WorkflowDefinition]:
        return MappingProxyType(self._workflows)


# Process-wide registry used by the CLI workers and the default engine.
REGISTRY = Registry()


def register_activity(activity_class: type, **kwargs: Any) -> ActivityDefinition:
    """Add ``activity_class`` to ``REGISTRY``."""
    return REGISTRY.register_activity(activity_class, **kwargs)


def register_workflow(workflow_class: type, **kwargs: Any) -> WorkflowDefinition:
    """Add ``workflow_class`` to ``REGISTRY``."""
    return REGISTRY.register_workflow(workflow_class, **kwargs)


__all__ = [
    "ActivityDefinition",
    "WorkflowDefinition",
    "Registry",
    "REGISTRY",
    "register_activity",
    "register_workflow",
    "definition_name",
]
