"""In-memory implementation of the operation registry."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from ..contracts import WorkflowExecution
from .repository import OperationRegistry

logger = logging.getLogger(__name__)


class InMemoryOperationRegistry(OperationRegistry):
    """Store run records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. With ``max_entries`` set, the oldest
    finished runs are evicted once the capacity is exceeded; active runs are
    never evicted.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = asyncio.Lock()
        self._max_entries = max_entries

    # ------------------------------------------------------------------
    async def get(self, execution_id: str) -> WorkflowExecution | None:
        async with self._lock:
            execution = self._executions.get(execution_id)
            return execution.model_copy(deep=True) if execution else None

    async def put(self, execution: WorkflowExecution) -> None:
        snapshot = execution.model_copy(deep=True)
        async with self._lock:
            self._executions[snapshot.execution_id] = snapshot
            self._evict()

    async def delete(self, execution_id: str) -> bool:
        async with self._lock:
            return self._executions.pop(execution_id, None) is not None

    async def list(self) -> list[WorkflowExecution]:
        async with self._lock:
            return [e.model_copy(deep=True) for e in self._executions.values()]

    # ------------------------------------------------------------------
    def _evict(self) -> None:
        if self._max_entries is None:
            return
        overflow = len(self._executions) - self._max_entries
        if overflow <= 0:
            return
        finished = sorted(
            (e for e in self._executions.values() if e.is_terminal),
            key=lambda e: e.completed_at or e.started_at,
        )
        for execution in finished[:overflow]:
            del self._executions[execution.execution_id]
            logger.debug(f"Evicted execution {execution.execution_id}")
