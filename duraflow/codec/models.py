from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class SerializedValue(BaseModel):
    data: Any = Field(default=None, description="JSON compatible value")
    type: Optional[str] = Field(default=None, description="Class name")
    module: Optional[str] = Field(default=None, description="Module path")
