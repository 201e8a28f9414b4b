"""Workflow definition model and run-time execution records."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Definition model (immutable once loaded)
# ============================================================================


class RollbackCondition(str, Enum):
    ON_FAILURE = "on-failure"


class WorkflowStep(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    type: str = Field(..., description="Tag selecting the action implementation")
    phase: str
    dependencies: Tuple[str, ...] = ()
    parallel: bool = False
    required: bool = True
    timeout_ms: int = Field(default=30_000, gt=0)
    retry_attempts: int = Field(default=1, ge=1, description="Total attempts")
    configuration: Dict[str, Any] = Field(default_factory=dict)


class ParallelGroup(BaseModel):
    """Steps allowed to run concurrently under a concurrency ceiling."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    step_ids: Tuple[str, ...]
    max_concurrency: int = 1
    fail_fast: bool = False


class RollbackStep(BaseModel):
    """Compensating actions undoing a completed step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    rollback_actions: Tuple[str, ...]
    condition: RollbackCondition = RollbackCondition.ON_FAILURE


class WorkflowDefinition(BaseModel):
    """Named graph of steps grouped into ordered phases."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    template_type: Optional[str] = None
    phases: Tuple[str, ...]
    steps: Tuple[WorkflowStep, ...]
    parallel_groups: Tuple[ParallelGroup, ...] = ()
    rollback_steps: Tuple[RollbackStep, ...] = ()

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def steps_in_phase(self, phase: str) -> List[WorkflowStep]:
        return [s for s in self.steps if s.phase == phase]

    def group_for(self, step_id: str) -> Optional[ParallelGroup]:
        """Return the first parallel group listing ``step_id``."""
        return next((g for g in self.parallel_groups if step_id in g.step_ids), None)

    def rollback_for(self, step_id: str) -> Optional[RollbackStep]:
        return next((r for r in self.rollback_steps if r.step_id == step_id), None)


# ============================================================================
# Execution records (owned by the engine for the lifetime of a run)
# ============================================================================


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    ROLLING_BACK = "rolling_back"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


class WorkflowStepExecution(BaseModel):
    """Progress of a single step within a run."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempt: int = 0
    output: Any = None
    error: Optional[str] = None


class WorkflowError(BaseModel):
    """Error recorded against a run.

    ``recoverable`` is true for failures that were followed by a retry.
    """

    step_id: Optional[str] = None
    phase: Optional[str] = None
    error: str
    timestamp: datetime = Field(default_factory=utcnow)
    recoverable: bool = False


class RollbackInvocation(BaseModel):
    """One compensating action run during rollback."""

    step_id: str
    action: str
    status: StepStatus
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class WorkflowExecution(BaseModel):
    """One run of a workflow definition."""

    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_phase: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    steps: List[WorkflowStepExecution] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    errors: List[WorkflowError] = Field(default_factory=list)
    failed_step_id: Optional[str] = None
    status_history: List[ExecutionStatus] = Field(
        default_factory=lambda: [ExecutionStatus.PENDING]
    )
    rollbacks: List[RollbackInvocation] = Field(default_factory=list)
    dry_run: bool = False

    @classmethod
    def for_definition(
        cls,
        definition: WorkflowDefinition,
        variables: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> "WorkflowExecution":
        """Create a pending run with one pending record per step."""
        return cls(
            workflow_id=definition.id,
            current_phase=definition.phases[0] if definition.phases else None,
            steps=[WorkflowStepExecution(step_id=s.id) for s in definition.steps],
            variables=dict(variables or {}),
            dry_run=dry_run,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def get_step(self, step_id: str) -> Optional[WorkflowStepExecution]:
        return next((s for s in self.steps if s.step_id == step_id), None)

    def transition(self, status: ExecutionStatus) -> None:
        """Move the run to ``status`` and append it to the history."""
        if status == self.status:
            return
        logger.debug(
            f"Execution {self.execution_id}: {self.status.value} -> {status.value}"
        )
        self.status = status
        self.status_history.append(status)

    def last_error(self) -> Optional[WorkflowError]:
        """Most recent terminal error, falling back to the most recent error."""
        for error in reversed(self.errors):
            if not error.recoverable:
                return error
        return self.errors[-1] if self.errors else None

    def progress(self) -> Dict[str, Any]:
        completed = sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
        running = [
            s.step_id
            for s in self.steps
            if s.status in (StepStatus.RUNNING, StepStatus.RETRYING)
        ]
        return {
            "total_steps": len(self.steps),
            "completed_steps": completed,
            "current_steps": running,
            "current_phase": self.current_phase,
        }

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowExecution":
        return cls.model_validate_json(data)
