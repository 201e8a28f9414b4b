"""Exception hierarchy for provisionflow."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional


class ProvisionflowError(Exception):
    """Base class for all provisionflow errors."""


class ValidationError(ProvisionflowError):
    """A workflow definition was rejected at registration time."""

    def __init__(self, workflow_id: str, violations: List[str]) -> None:
        self.workflow_id = workflow_id
        self.violations = list(violations)
        super().__init__(
            f"Workflow {workflow_id} failed validation: {'; '.join(self.violations)}"
        )


class StepTimeoutError(ProvisionflowError):
    """A remote call or a step action exceeded its deadline."""

    def __init__(self, timeout_ms: int, step_id: Optional[str] = None) -> None:
        self.timeout_ms = timeout_ms
        self.step_id = step_id
        target = f"Step {step_id}" if step_id else "Request"
        super().__init__(f"{target} timed out after {timeout_ms}ms")


class StepRetryExhaustedError(ProvisionflowError):
    """A step failed on every configured attempt."""

    def __init__(self, step_id: str, attempts: int, last_error: BaseException) -> None:
        self.step_id = step_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Step {step_id} failed after {attempts} attempt(s): {last_error}"
        )


class RollbackActionError(ProvisionflowError):
    """A compensating action failed."""

    def __init__(self, step_id: str, action: str, cause: BaseException) -> None:
        self.step_id = step_id
        self.action = action
        self.cause = cause
        super().__init__(
            f"Rollback action {action} for step {step_id} failed: {cause}"
        )


class UnregisteredActionError(ProvisionflowError):
    """No action implementation is bound to a step type tag."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"No action registered for type '{tag}'")


class UnknownOperationError(ProvisionflowError):
    """Status query for an execution id that is not in the registry."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Operation {execution_id} not found")


class UnknownWorkflowError(ProvisionflowError):
    """Run requested for a workflow id or template type that is not registered."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No workflow registered for '{key}'")


class FailureKind(str, Enum):
    """Classification of a failed remote call."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CONNECTIVITY = "connectivity"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        FailureKind.TIMEOUT,
        FailureKind.RATE_LIMITED,
        FailureKind.SERVER_ERROR,
        FailureKind.CONNECTIVITY,
    }
)


class CallError(ProvisionflowError):
    """A remote call failed; carries its classification and attempt count."""

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.UNKNOWN,
        status_code: Optional[int] = None,
        body: Any = None,
        request_id: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.body = body
        self.request_id = request_id
        self.attempts = attempts
        # explicit base call: CallTimeoutError also inherits StepTimeoutError
        ProvisionflowError.__init__(self, message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class CallTimeoutError(CallError, StepTimeoutError):
    """A single call attempt exceeded its deadline."""

    def __init__(self, timeout_ms: int, attempts: int = 1) -> None:
        self.timeout_ms = timeout_ms
        self.step_id = None
        CallError.__init__(
            self,
            f"Request timed out after {timeout_ms}ms",
            kind=FailureKind.TIMEOUT,
            attempts=attempts,
        )


class RetryExhaustedError(CallError):
    """Every attempt of a call failed with a retryable error."""

    def __init__(self, attempts: int, last_error: CallError) -> None:
        self.last_error = last_error
        super().__init__(
            f"Request failed after {attempts} attempts: {last_error}",
            kind=last_error.kind,
            status_code=last_error.status_code,
            body=last_error.body,
            request_id=last_error.request_id,
            attempts=attempts,
        )

    @property
    def retryable(self) -> bool:
        return False


__all__ = [
    "ProvisionflowError",
    "ValidationError",
    "StepTimeoutError",
    "StepRetryExhaustedError",
    "RollbackActionError",
    "UnregisteredActionError",
    "UnknownOperationError",
    "UnknownWorkflowError",
    "FailureKind",
    "RETRYABLE_KINDS",
    "CallError",
    "CallTimeoutError",
    "RetryExhaustedError",
]
