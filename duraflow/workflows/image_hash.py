"""Parallel digest computation for an uploaded image."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..activities import BinaryPayload, ComputeHashActivity, HashAlgorithm, HashResult
from ..stubs import stub
from ..workflow import Workflow, WorkflowContext


class ImageHashInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_buffer: BinaryPayload = Field(default_factory=BinaryPayload)
    algorithms: List[HashAlgorithm] = Field(default_factory=list)


class ImageHashOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str
    file_size: int
    hashes: List[HashResult] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime


class ImageHashWorkflow(Workflow):
    """Hash one image with every requested algorithm at once.

    ``hashes`` follows the order of ``algorithms`` regardless of which
    activity finished first.
    """

    name = "ImageHashWorkflow"

    def execute(
        self, ctx: WorkflowContext, input: ImageHashInput, file_name: str
    ) -> ImageHashOutput:
        if not isinstance(input, ImageHashInput):
            input = ImageHashInput.model_validate(input)
        stubs = [
            stub(ComputeHashActivity, input.image_buffer, algorithm)
            for algorithm in input.algorithms
        ]
        hashes = ctx.await_all(stubs)
        return ImageHashOutput(
            file_name=file_name,
            file_size=len(input.image_buffer),
            hashes=[HashResult.model_validate(h) for h in hashes],
            started_at=ctx.started_at,
            completed_at=ctx.now(),
        )
