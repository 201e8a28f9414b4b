"""Command line interface for inspecting provisioning workflows."""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Iterator, List, Optional

import typer

from provisionflow import (
    OperationRegistry,
    ProvisionflowConfig,
    WorkflowEngine,
    default_actions,
    get_registry,
    load_config,
)
from provisionflow.catalog import builtin_definitions, default_definitions
from provisionflow.contracts import WorkflowExecution
from provisionflow.errors import UnknownWorkflowError
from provisionflow.validation import validate

app = typer.Typer(help="CLI for provisionflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for workflow definitions")
execution_app = typer.Typer(help="Commands for recorded executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main() -> None:
    """provisionflow CLI entry point."""
    pass


def _parse_vars(pairs: List[str]) -> dict:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            typer.secho(f"Invalid variable '{pair}', expected KEY=VALUE", fg=typer.colors.RED)
            raise typer.Exit(code=2)
        variables[key] = value
    return variables


def _echo_execution(execution: WorkflowExecution) -> None:
    typer.echo(f"Execution {execution.execution_id}: {execution.status.value}")
    typer.echo(f"Workflow: {execution.workflow_id}")
    if execution.current_phase:
        typer.echo(f"Phase: {execution.current_phase}")
    if execution.variables:
        typer.echo(f"Variables: {execution.variables}")
    for step in execution.steps:
        line = f"- {step.step_id}: {step.status.value} (attempt {step.attempt})"
        if step.error:
            line += f" - {step.error}"
        typer.echo(line)
    if execution.failed_step_id:
        typer.echo(f"Failed step: {execution.failed_step_id}")
    for error in execution.errors:
        if not error.recoverable:
            typer.echo(f"! {error.step_id or '-'}: {error.error}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List the built-in workflow definitions."""
    for definition in builtin_definitions():
        typer.echo(
            f"{definition.id}\t{definition.template_type}\t{definition.version}\t"
            f"{len(definition.steps)} steps"
        )


@workflow_app.command("validate")
def workflow_validate(workflow_id: Optional[str] = typer.Argument(None)) -> None:
    """
    Validate built-in workflow definitions.

    Example:
        provisionflow workflow validate
        provisionflow workflow validate quickstart-v1
    """
    definitions = builtin_definitions()
    if workflow_id:
        definitions = [d for d in definitions if d.id == workflow_id]
        if not definitions:
            typer.secho(f"Workflow {workflow_id} not found", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    failed = False
    for definition in definitions:
        violations = validate(definition)
        if not violations:
            typer.echo(f"{definition.id}: OK")
            continue
        failed = True
        typer.secho(f"{definition.id}: {len(violations)} violation(s)", fg=typer.colors.RED)
        for violation in violations:
            typer.echo(f"  - {violation}")
    if failed:
        raise typer.Exit(code=1)


@contextmanager
def _open_registry(config: ProvisionflowConfig) -> Iterator[OperationRegistry]:
    """Yield the configured registry and release its connection afterwards."""
    registry = get_registry(config=config)
    try:
        yield registry
    finally:
        close = getattr(registry, "close", None)
        if close is not None:
            close()


@workflow_app.command("dry-run")
def workflow_dry_run(
    key: str,
    var: List[str] = typer.Option([], "--var", help="Run variable as KEY=VALUE"),
) -> None:
    """
    Walk a workflow's schedule without calling any external service.

    Example:
        provisionflow workflow dry-run standard-project --var projectName=demo
    """
    variables = _parse_vars(var)
    config = load_config()
    with _open_registry(config) as registry:
        engine = WorkflowEngine(
            default_definitions(),
            default_actions(),
            registry=registry,
            config=config.engine,
        )
        try:
            execution = asyncio.run(engine.run(key, variables, dry_run=True))
        except UnknownWorkflowError as exc:
            typer.secho(str(exc), fg=typer.colors.RED)
            raise typer.Exit(code=1)
    _echo_execution(execution)


@execution_app.command("list")
def execution_list() -> None:
    """List recorded executions with their status."""
    with _open_registry(load_config()) as registry:
        executions = asyncio.run(registry.list())
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(
            f"{execution.execution_id}\t{execution.workflow_id}\t{execution.status.value}"
        )


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show status, per-step progress and errors of one execution."""
    with _open_registry(load_config()) as registry:
        execution = asyncio.run(registry.get(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    _echo_execution(execution)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
