"""Mapping of step type tags to action implementations."""

from __future__ import annotations

import inspect
import logging
from typing import Callable, Dict, List, Union

from ..errors import UnregisteredActionError
from .base import ActionFunc, FunctionAction, StepAction

logger = logging.getLogger(__name__)


class ActionRegistry:
    """Keeps the action bound to each step type and compensation tag."""

    def __init__(self) -> None:
        self._actions: Dict[str, StepAction] = {}

    def register(self, tag: str, action: Union[StepAction, ActionFunc]) -> StepAction:
        """Bind ``action`` to ``tag``, replacing any previous binding.

        ``action`` may be a :class:`StepAction` or an ``async def`` taking
        ``(config, context)``.
        """
        if not tag:
            raise ValueError("action tag must be a non-empty string")
        if not isinstance(action, StepAction):
            if not inspect.iscoroutinefunction(action):
                raise TypeError(
                    f"Action for '{tag}' must be a StepAction or an async function"
                )
            action = FunctionAction(action)
        if tag in self._actions:
            logger.debug(f"Replacing action registered for '{tag}'")
        self._actions[tag] = action
        return action

    def action(self, tag: str) -> Callable[[ActionFunc], ActionFunc]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ActionFunc) -> ActionFunc:
            self.register(tag, func)
            return func

        return decorator

    def get(self, tag: str) -> StepAction:
        """Return the action for ``tag``.

        Raises:
            UnregisteredActionError: If nothing is bound to ``tag``.
        """
        try:
            return self._actions[tag]
        except KeyError:
            raise UnregisteredActionError(tag) from None

    def is_registered(self, tag: str) -> bool:
        return tag in self._actions

    @property
    def tags(self) -> List[str]:
        return list(self._actions)
