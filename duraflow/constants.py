"""Shared constants for duraflow."""

DEFAULT_WORKFLOW_QUEUE = "duraflow-workflow"
DEFAULT_ACTIVITY_QUEUE = "duraflow-activity"

DEFAULT_ACTIVITY_TRIES = 1
DEFAULT_ACTIVITY_TIMEOUT = 60.0

DEFAULT_ACTIVITY_CONCURRENCY = 8
DEFAULT_WORKFLOW_CONCURRENCY = 4

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
