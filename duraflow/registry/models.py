"""Pydantic models describing registry entries."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActivityDefinition(BaseModel):
    """Static retry and timeout policy for a registered activity."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    tries: int = Field(default=1, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)
    activity_class: Any

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v:
            raise ValueError("activity name must be a non-empty string")
        return v

    def create(self) -> Any:
        return self.activity_class()


class WorkflowDefinition(BaseModel):
    """A registered deterministic workflow definition."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    workflow_class: Any

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v:
            raise ValueError("workflow name must be a non-empty string")
        return v

    def create(self) -> Any:
        return self.workflow_class()
