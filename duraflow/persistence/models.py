"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..codec import SerializedValue
from ..contracts import ErrorInfo, WorkflowStatus, utcnow


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data."""

    instance_id: str
    workflow_name: str
    args: List[SerializedValue] = Field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    output: Optional[SerializedValue] = None
    error: Optional[ErrorInfo] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
