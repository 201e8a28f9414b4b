"""Shared fixtures for provisionflow tests."""

from typing import Callable

import pytest

from provisionflow import (
    ActionRegistry,
    DefinitionRegistry,
    EngineConfig,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowStep,
)
from provisionflow.persistence import InMemoryOperationRegistry


def make_step(step_id: str, **overrides) -> WorkflowStep:
    data = {
        "id": step_id,
        "name": f"Step {step_id}",
        "type": "ok",
        "phase": "main",
        "timeout_ms": 2_000,
        "retry_attempts": 1,
    }
    data.update(overrides)
    return WorkflowStep(**data)


def make_definition(steps, **overrides) -> WorkflowDefinition:
    data = {
        "id": "wf",
        "name": "Test workflow",
        "phases": ("main",),
        "steps": tuple(steps),
    }
    data.update(overrides)
    return WorkflowDefinition(**data)


@pytest.fixture
def step() -> Callable[..., WorkflowStep]:
    return make_step


@pytest.fixture
def definition() -> Callable[..., WorkflowDefinition]:
    return make_definition


@pytest.fixture
def actions() -> ActionRegistry:
    registry = ActionRegistry()

    @registry.action("ok")
    async def ok(config, context):
        return {"step": context.step_id}

    @registry.action("fail")
    async def fail(config, context):
        raise RuntimeError(f"{context.step_id} exploded")

    return registry


@pytest.fixture
def definitions() -> DefinitionRegistry:
    return DefinitionRegistry()


@pytest.fixture
def operation_registry() -> InMemoryOperationRegistry:
    return InMemoryOperationRegistry()


@pytest.fixture
def engine(definitions, actions, operation_registry) -> WorkflowEngine:
    return WorkflowEngine(
        definitions,
        actions,
        registry=operation_registry,
        config=EngineConfig(step_retry_delay_ms=0),
    )
