"""Persistence layer for duraflow workflows.

The backend is chosen by the scheme of a database URL: ``sqlite://<path>``,
``postgres://`` / ``postgresql://``, or nothing at all for in-memory state.
``load_config`` already folds ``DURAFLOW_DATABASE_URL`` and ``DATABASE_URL``
into ``DuraflowConfig.database_url``.
"""

from __future__ import annotations

from typing import Optional

from ..config import DuraflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import WorkflowInstance
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None


def open_repository(database_url: Optional[str]) -> WorkflowRepository:
    """Build a new repository for ``database_url``.

    Raises:
        ValueError: If the URL scheme names no known backend.
        RuntimeError: If a Postgres URL is given but asyncpg is not installed.
    """
    if not database_url:
        return InMemoryWorkflowRepository()

    scheme, sep, location = database_url.partition("://")
    scheme = scheme.lower() if sep else ""
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(location)
    elif scheme in ("postgres", "postgresql"):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        return PostgresWorkflowRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[DuraflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository.

    A new one is opened when ``database_url`` or ``config`` is passed, or on
    first use. ``database_url`` takes precedence over ``config.database_url``.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    _repository_instance = open_repository(database_url or config.database_url)
    return _repository_instance


__all__ = [
    "WorkflowInstance",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
    "open_repository",
]
