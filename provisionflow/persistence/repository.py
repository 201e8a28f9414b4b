"""Operation registry abstraction for run records."""

from __future__ import annotations

from typing import Protocol

from ..contracts import WorkflowExecution


class OperationRegistry(Protocol):
    """Key-value store of execution id to :class:`WorkflowExecution`.

    Written only by the engine task that owns a run; read by any number of
    status-polling callers. Implementations hand out copies, never the stored
    object.
    """

    async def get(self, execution_id: str) -> WorkflowExecution | None:
        """Return a snapshot of the run or ``None`` when unknown."""

    async def put(self, execution: WorkflowExecution) -> None:
        """Store a snapshot of ``execution`` under its execution id."""

    async def delete(self, execution_id: str) -> bool:
        """Remove a run; returns ``True`` when something was removed."""

    async def list(self) -> list[WorkflowExecution]:
        """Return snapshots of all stored runs."""
