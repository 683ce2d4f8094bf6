"""Upload and status boundary for the image hash workflow.

Transport-agnostic: an HTTP layer maps ``submit``/``poll``/``health`` onto
routes and returns the status codes and bodies produced here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from .activities import SUPPORTED_ALGORITHMS, BinaryPayload
from .constants import MAX_UPLOAD_BYTES
from .contracts import WorkflowStatus, utcnow
from .dispatch import WorkflowHandle
from .errors import InvalidUpload, WorkflowNotFound
from .workflow_engine import WorkflowEngine, get_engine
from .workflows import ImageHashInput, ImageHashOutput, ImageHashWorkflow

logger = logging.getLogger(__name__)


class HashUploadService:
    def __init__(
        self, engine: Optional[WorkflowEngine] = None, max_bytes: int = MAX_UPLOAD_BYTES
    ) -> None:
        self._engine = engine or get_engine()
        self.max_bytes = max_bytes

    async def submit(self, data: bytes, file_name: str, mime_type: str) -> Dict[str, Any]:
        """Validate an upload and start hashing it with every supported algorithm.

        Raises:
            InvalidUpload: Missing file name, non-image content or oversize file.
        """
        if not file_name:
            raise InvalidUpload("No file uploaded")
        if not mime_type or not mime_type.startswith("image/"):
            raise InvalidUpload("File must be an image")
        if len(data) > self.max_bytes:
            raise InvalidUpload(f"File exceeds {self.max_bytes} bytes")

        handle = WorkflowHandle.make(ImageHashWorkflow, engine=self._engine)
        workflow_id = await handle.start(
            ImageHashInput(
                image_buffer=BinaryPayload.from_bytes(data),
                algorithms=list(SUPPORTED_ALGORITHMS),
            ),
            file_name,
        )
        logger.info(f"Accepted upload {file_name} ({len(data)} bytes) as {workflow_id}")
        return {
            "workflowId": workflow_id,
            "fileName": file_name,
            "message": "Image uploaded and hash computation started",
        }

    async def poll(self, workflow_id: str) -> Tuple[int, Dict[str, Any]]:
        """Return ``(http_status, body)`` describing the instance."""
        try:
            handle = await WorkflowHandle.load(
                workflow_id, ImageHashWorkflow, engine=self._engine
            )
        except WorkflowNotFound:
            return 404, {"error": f"Workflow {workflow_id} not found"}

        status = await handle.status()
        if status is WorkflowStatus.COMPLETED:
            output = await handle.output()
            result = ImageHashOutput.model_validate(output)
            return 200, {
                "status": status.value,
                "result": result.model_dump(mode="json", by_alias=True),
            }
        if status is WorkflowStatus.FAILED:
            error = await handle.error()
            if error is not None:
                logger.info(f"Workflow {workflow_id} failed: {error.message}")
            return 500, {"status": status.value, "error": "Workflow execution failed"}
        return 200, {"status": status.value, "message": "Workflow is still running"}

    def health(self) -> Dict[str, Any]:
        return {"status": "ok", "timestamp": utcnow().isoformat()}
