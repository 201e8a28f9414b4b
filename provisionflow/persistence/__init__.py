"""Operation registry backends for run records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProvisionflowConfig, load_config
from .inmemory import InMemoryOperationRegistry
from .repository import OperationRegistry
from .sqlite import SQLiteOperationRegistry


def get_registry(
    database_url: Optional[str] = None, config: Optional[ProvisionflowConfig] = None
) -> OperationRegistry:
    """Factory function to build an operation registry.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``PROVISIONFLOW_DATABASE_URL``, or
    from loaded configuration. When no database is configured, an in-memory
    registry is returned. Every call builds a new registry; callers inject
    it into the engine.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("PROVISIONFLOW_DATABASE_URL")
        or config.registry.database_url
    )

    if not database_url:
        return InMemoryOperationRegistry(max_entries=config.registry.max_entries)

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteOperationRegistry(path)

    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "OperationRegistry",
    "InMemoryOperationRegistry",
    "SQLiteOperationRegistry",
    "get_registry",
]
