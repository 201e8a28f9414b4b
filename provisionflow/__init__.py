"""provisionflow: phased, retrying, compensating provisioning workflows."""

from .actions import ActionContext, ActionRegistry, StepAction, default_actions
from .config import EngineConfig, HttpClientConfig, ProvisionflowConfig, load_config
from .contracts import (
    ExecutionStatus,
    ParallelGroup,
    RollbackStep,
    StepStatus,
    WorkflowDefinition,
    WorkflowError,
    WorkflowExecution,
    WorkflowStep,
    WorkflowStepExecution,
)
from .definitions import DefinitionRegistry
from .engine import WorkflowEngine
from .http import CallOptions, CallRequest, CallResult, ResilientClient
from .persistence import OperationRegistry, get_registry
from .validation import validate

__version__ = "0.1.0"
__all__ = [
    "ActionContext",
    "ActionRegistry",
    "StepAction",
    "default_actions",
    "EngineConfig",
    "HttpClientConfig",
    "ProvisionflowConfig",
    "load_config",
    "ExecutionStatus",
    "ParallelGroup",
    "RollbackStep",
    "StepStatus",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowExecution",
    "WorkflowStep",
    "WorkflowStepExecution",
    "DefinitionRegistry",
    "WorkflowEngine",
    "CallOptions",
    "CallRequest",
    "CallResult",
    "ResilientClient",
    "OperationRegistry",
    "get_registry",
    "validate",
]
