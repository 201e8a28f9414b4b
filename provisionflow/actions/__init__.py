"""Step action interface, registry and built-in actions."""

from __future__ import annotations

from .base import ActionContext, FunctionAction, StepAction
from .http import HttpRequestAction
from .registry import ActionRegistry


def default_actions() -> ActionRegistry:
    """Registry with the built-in actions bound to their tags."""
    registry = ActionRegistry()
    registry.register(HttpRequestAction.tag, HttpRequestAction())
    return registry


__all__ = [
    "ActionContext",
    "ActionRegistry",
    "FunctionAction",
    "HttpRequestAction",
    "StepAction",
    "default_actions",
]
