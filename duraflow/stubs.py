"""Unresolved references to activity invocations."""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, Field

from .codec import SerializedValue, ValueSerializer
from .registry import definition_name


class ActivityStub(BaseModel):
    """Describes "run this activity with these args"; carries no result."""

    activity_name: str
    args: List[SerializedValue] = Field(default_factory=list)

    @classmethod
    def make(cls, activity: Any, *args: Any) -> "ActivityStub":
        """Create a stub for ``activity`` (a class or a registered name)."""
        return cls(
            activity_name=definition_name(activity),
            args=ValueSerializer.serialize_all(args),
        )

    def signature(self) -> tuple[str, list[dict]]:
        return self.activity_name, [a.model_dump(mode="json") for a in self.args]


def stub(activity: Any, *args: Any) -> ActivityStub:
    return ActivityStub.make(activity, *args)
