"""Structural validation of workflow definitions."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Set, Tuple

from .contracts import WorkflowDefinition, WorkflowStep

_EXHAUSTED = object()


def build_adjacency(steps: Iterable[WorkflowStep]) -> Dict[str, List[str]]:
    """Map each step id to its dependency ids.

    Duplicate ids have their dependency lists merged so that every declared
    edge still takes part in cycle detection.
    """
    adjacency: Dict[str, List[str]] = {}
    for step in steps:
        deps = adjacency.setdefault(step.id, [])
        deps.extend(d for d in step.dependencies if d not in deps)
    return adjacency


def has_circular_dependencies(steps: Iterable[WorkflowStep]) -> bool:
    """Return ``True`` when the dependency graph contains a cycle.

    Iterative depth-first search with an explicit stack of
    ``(step_id, dependency iterator)`` frames. Edges to unknown steps are
    ignored here; they are reported as invalid dependencies instead.
    """
    adjacency = build_adjacency(steps)
    visited: Set[str] = set()

    for root in adjacency:
        if root in visited:
            continue
        visited.add(root)
        on_stack: Set[str] = {root}
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(adjacency[root]))]

        while stack:
            node, deps = stack[-1]
            dep = next(deps, _EXHAUSTED)
            if dep is _EXHAUSTED:
                stack.pop()
                on_stack.discard(node)
                continue
            if dep in on_stack:
                return True
            if dep in visited or dep not in adjacency:
                continue
            visited.add(dep)
            on_stack.add(dep)
            stack.append((dep, iter(adjacency[dep])))

    return False


def validate(definition: WorkflowDefinition) -> List[str]:
    """Return violation messages for ``definition``; empty means acceptable."""
    errors: List[str] = []
    step_ids = definition.step_ids
    known_ids = set(step_ids)
    phase_index = {phase: i for i, phase in enumerate(definition.phases)}

    seen: Set[str] = set()
    duplicates: List[str] = []
    for step_id in step_ids:
        if step_id in seen and step_id not in duplicates:
            duplicates.append(step_id)
        seen.add(step_id)
    if duplicates:
        errors.append(f"Duplicate step IDs found: {', '.join(duplicates)}")

    for step in definition.steps:
        if step.phase not in phase_index:
            errors.append(f"Step {step.id} references unknown phase: {step.phase}")
        for dep_id in step.dependencies:
            if dep_id not in known_ids:
                errors.append(f"Step {step.id} has invalid dependency: {dep_id}")
                continue
            dep = definition.get_step(dep_id)
            if (
                dep is not None
                and step.phase in phase_index
                and dep.phase in phase_index
                and phase_index[dep.phase] > phase_index[step.phase]
            ):
                errors.append(
                    f"Step {step.id} in phase {step.phase} depends on step "
                    f"{dep_id} in later phase {dep.phase}"
                )

    for group in definition.parallel_groups:
        if group.max_concurrency < 1:
            errors.append(
                f"Parallel group {group.group_id} must allow at least one "
                "concurrent step"
            )
        for step_id in group.step_ids:
            if step_id not in known_ids:
                errors.append(
                    f"Parallel group {group.group_id} references invalid step: {step_id}"
                )

    for rollback in definition.rollback_steps:
        if rollback.step_id not in known_ids:
            errors.append(f"Rollback step references invalid step: {rollback.step_id}")

    if has_circular_dependencies(definition.steps):
        errors.append("Circular dependencies detected in workflow")

    return errors
