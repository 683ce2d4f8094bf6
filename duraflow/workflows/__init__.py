"""Built-in workflow definitions."""

from __future__ import annotations

from typing import Optional

from ..activities import ComputeHashActivity
from ..registry import REGISTRY, Registry
from .image_hash import ImageHashInput, ImageHashOutput, ImageHashWorkflow


def register_defaults(registry: Optional[Registry] = None) -> Registry:
    """Register the image hash workflow and its activity if not yet present."""
    registry = registry or REGISTRY
    if ComputeHashActivity.activity_name() not in registry.activities:
        registry.register_activity(ComputeHashActivity)
    if ImageHashWorkflow.workflow_name() not in registry.workflows:
        registry.register_workflow(ImageHashWorkflow)
    return registry


__all__ = [
    "ImageHashInput",
    "ImageHashOutput",
    "ImageHashWorkflow",
    "register_defaults",
]
