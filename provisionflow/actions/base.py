"""Action interface bound to step type tags."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

if TYPE_CHECKING:
    from ..http import ResilientClient


@dataclass
class ActionContext:
    """Run state visible to an action invocation."""

    execution_id: str
    workflow_id: str
    step_id: str
    attempt: int = 1
    variables: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    client: Optional["ResilientClient"] = None
    rollback: bool = False


class StepAction(metaclass=abc.ABCMeta):
    """Implementation of one step type (or one compensating action)."""

    @abc.abstractmethod
    async def execute(self, config: Dict[str, Any], context: ActionContext) -> Any:
        """Perform the action and return its output."""
        raise NotImplementedError


ActionFunc = Callable[[Dict[str, Any], ActionContext], Awaitable[Any]]


class FunctionAction(StepAction):
    """Adapts a plain async function to :class:`StepAction`."""

    def __init__(self, func: ActionFunc) -> None:
        self._func = func

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> Any:
        return await self._func(config, context)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"FunctionAction({getattr(self._func, '__name__', self._func)!r})"
