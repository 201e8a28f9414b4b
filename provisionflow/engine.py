"""Execution engine for provisioning workflows.

The engine turns a validated :class:`WorkflowDefinition` into a running
:class:`WorkflowExecution`. Each run is driven by its own scheduler task which
walks the phases in order, dispatches ready steps (concurrently inside
parallel groups, one at a time otherwise), retries failing steps per their own
policy and compensates completed steps when a required step fails.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from .actions import ActionContext, ActionRegistry, StepAction
from .config import EngineConfig
from .contracts import (
    ExecutionStatus,
    RollbackCondition,
    RollbackInvocation,
    StepStatus,
    WorkflowDefinition,
    WorkflowError,
    WorkflowExecution,
    WorkflowStep,
    WorkflowStepExecution,
    utcnow,
)
from .definitions import DefinitionRegistry
from .errors import (
    RollbackActionError,
    StepRetryExhaustedError,
    StepTimeoutError,
    UnknownOperationError,
    UnregisteredActionError,
)
from .http import ResilientClient
from .persistence import InMemoryOperationRegistry, OperationRegistry
from .utils import retry

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Creates, tracks and cancels workflow runs."""

    def __init__(
        self,
        definitions: DefinitionRegistry,
        actions: ActionRegistry,
        registry: OperationRegistry | None = None,
        client: ResilientClient | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.definitions = definitions
        self.actions = actions
        self.registry = registry or InMemoryOperationRegistry()
        self.client = client
        self.config = config or EngineConfig()
        self._runs: Dict[str, _WorkflowRun] = {}

    async def start(
        self,
        key: str,
        variables: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> str:
        """Start a run of the workflow identified by id or template type.

        Returns the execution id as soon as the run is recorded; the run
        itself continues in the background.

        Raises:
            UnknownWorkflowError: If no registered definition matches ``key``.
        """
        definition = self.definitions.resolve(key)
        execution = WorkflowExecution.for_definition(definition, variables, dry_run)
        await self.registry.put(execution)

        run = _WorkflowRun(self, definition, execution)
        execution_id = execution.execution_id
        self._runs[execution_id] = run
        run.task = asyncio.create_task(
            run.execute(), name=f"workflow-{execution_id}"
        )
        run.task.add_done_callback(lambda _: self._runs.pop(execution_id, None))
        logger.info(
            f"Started execution {execution_id} of workflow {definition.id}"
            + (" (dry run)" if dry_run else "")
        )
        return execution_id

    async def wait(
        self, execution_id: str, timeout: Optional[float] = None
    ) -> WorkflowExecution:
        """Wait for a run to reach a terminal state and return its snapshot."""
        run = self._runs.get(execution_id)
        if run is not None and run.task is not None:
            await asyncio.wait_for(asyncio.shield(run.task), timeout=timeout)
        return await self.get_status(execution_id)

    async def run(
        self,
        key: str,
        variables: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> WorkflowExecution:
        """Start a run and wait for it to finish."""
        execution_id = await self.start(key, variables, dry_run=dry_run)
        return await self.wait(execution_id)

    async def get_status(self, execution_id: str) -> WorkflowExecution:
        """Return the current snapshot of a run.

        Raises:
            UnknownOperationError: If the registry holds no such execution.
        """
        execution = await self.registry.get(execution_id)
        if execution is None:
            raise UnknownOperationError(execution_id)
        return execution

    async def cancel(self, execution_id: str) -> bool:
        """Request cancellation of an active run.

        Returns ``False`` when the run already finished.

        Raises:
            UnknownOperationError: If the execution id is unknown.
        """
        run = self._runs.get(execution_id)
        if run is None:
            await self.get_status(execution_id)
            return False
        logger.info(f"Cancellation requested for execution {execution_id}")
        run.request_cancel()
        return True

    async def list_executions(self) -> List[WorkflowExecution]:
        return await self.registry.list()

    @property
    def active_executions(self) -> List[str]:
        return list(self._runs)

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to settle."""
        runs = list(self._runs.values())
        for run in runs:
            run.request_cancel()
        await asyncio.gather(
            *(run.task for run in runs if run.task is not None),
            return_exceptions=True,
        )


class _WorkflowRun:
    """Scheduler for a single execution; the only writer of its record."""

    def __init__(
        self,
        engine: WorkflowEngine,
        definition: WorkflowDefinition,
        execution: WorkflowExecution,
    ) -> None:
        self.definition = definition
        self.execution = execution
        self.task: Optional[asyncio.Task] = None
        self._actions = engine.actions
        self._registry = engine.registry
        self._client = engine.client
        self._config = engine.config
        self._cancel_requested = asyncio.Event()
        self._completion_order: List[str] = []
        self._outputs: Dict[str, Any] = {}
        self._failed = False
        self._failed_step_id: Optional[str] = None

    def request_cancel(self) -> None:
        self._cancel_requested.set()

    # ------------------------------------------------------------------
    # Run lifecycle
    async def execute(self) -> None:
        execution = self.execution
        execution.transition(ExecutionStatus.RUNNING)
        await self._save()

        try:
            for phase in self.definition.phases:
                if self._cancel_requested.is_set() or self._failed:
                    break
                execution.current_phase = phase
                await self._save()
                logger.debug(f"Execution {execution.execution_id}: entering phase {phase}")
                if not await self._run_phase(phase):
                    break
        except Exception as exc:
            logger.exception(f"Execution {execution.execution_id} aborted by engine error")
            self._failed = True
            self._record_error(None, f"Engine error: {exc}", recoverable=False)

        await self._finalize()

    async def _finalize(self) -> None:
        execution = self.execution
        if self._failed:
            trigger = self._failed_step_id
            self._skip_unfinished(f"Execution failed at step {trigger}")
            execution.failed_step_id = trigger
            await self._rollback()
            execution.transition(ExecutionStatus.FAILED)
            logger.error(
                f"Execution {execution.execution_id} failed at step {trigger}"
            )
        elif self._cancel_requested.is_set():
            self._skip_unfinished("Execution cancelled")
            self._record_error(None, "Execution cancelled by request", recoverable=False)
            if self._config.rollback_on_cancel:
                await self._rollback()
            execution.transition(ExecutionStatus.CANCELLED)
            logger.info(f"Execution {execution.execution_id} cancelled")
        else:
            execution.transition(ExecutionStatus.COMPLETED)
            logger.info(f"Execution {execution.execution_id} completed")

        execution.completed_at = utcnow()
        await self._save()

    # ------------------------------------------------------------------
    # Phase scheduling
    async def _run_phase(self, phase: str) -> bool:
        """Run every step of ``phase``; ``False`` when the run must stop."""
        pending: Dict[str, WorkflowStep] = {
            step.id: step for step in self.definition.steps_in_phase(phase)
        }
        in_flight: Dict[asyncio.Task, WorkflowStep] = {}
        cancel_waiter = asyncio.create_task(self._cancel_requested.wait())

        try:
            while True:
                if self._cancel_requested.is_set():
                    await self._cancel_steps(in_flight, "Execution cancelled")
                    return False

                self._drop_finished(pending)
                self._skip_blocked(pending)
                if self._failed:
                    await self._cancel_steps(
                        in_flight, f"Execution failed at step {self._failed_step_id}"
                    )
                    return False

                for step in self._select_ready(pending, in_flight):
                    del pending[step.id]
                    task = asyncio.create_task(
                        self._run_step(step), name=f"step-{step.id}"
                    )
                    in_flight[task] = step

                if not in_flight:
                    break

                done, _ = await asyncio.wait(
                    [*in_flight, cancel_waiter], return_when=asyncio.FIRST_COMPLETED
                )
                finished = [(t, in_flight.pop(t)) for t in done if t is not cancel_waiter]
                for task, step in finished:
                    if not task.result():
                        await self._on_step_failed(step, pending, in_flight)
        finally:
            cancel_waiter.cancel()
            if in_flight:
                await self._cancel_steps(in_flight, "Execution aborted")

        for step in pending.values():
            self._skip_step(step, "Dependencies never completed")

        for step in self.definition.steps_in_phase(phase):
            record = self._record(step.id)
            if step.required and record.status != StepStatus.COMPLETED:
                self._mark_failure(step.id)
                return False
        return True

    def _select_ready(
        self,
        pending: Dict[str, WorkflowStep],
        in_flight: Dict[asyncio.Task, WorkflowStep],
    ) -> List[WorkflowStep]:
        capacity = self._config.max_concurrent_steps - len(in_flight)
        group_load: Counter = Counter()
        ungrouped_busy = False
        for running in in_flight.values():
            group = self.definition.group_for(running.id)
            if group is None:
                ungrouped_busy = True
            else:
                group_load[group.group_id] += 1

        selected: List[WorkflowStep] = []
        for step in pending.values():
            if capacity <= 0:
                break
            if not self._dependencies_met(step):
                continue
            group = self.definition.group_for(step.id)
            if group is None:
                if ungrouped_busy:
                    continue
                ungrouped_busy = True
            else:
                if group_load[group.group_id] >= group.max_concurrency:
                    continue
                group_load[group.group_id] += 1
            selected.append(step)
            capacity -= 1
        return selected

    def _dependencies_met(self, step: WorkflowStep) -> bool:
        return all(
            self._record(dep).status == StepStatus.COMPLETED
            for dep in step.dependencies
        )

    def _drop_finished(self, pending: Dict[str, WorkflowStep]) -> None:
        for step_id in [s for s in pending if self._record(s).status.is_terminal]:
            del pending[step_id]

    def _skip_blocked(self, pending: Dict[str, WorkflowStep]) -> None:
        """Skip pending steps whose dependencies can no longer complete."""
        for step in list(pending.values()):
            blocked_by = next(
                (
                    dep
                    for dep in step.dependencies
                    if self._record(dep).status in (StepStatus.FAILED, StepStatus.SKIPPED)
                ),
                None,
            )
            if blocked_by is None:
                continue
            del pending[step.id]
            self._skip_step(step, f"Dependency {blocked_by} did not complete")
            if step.required:
                self._record_error(
                    step.id,
                    f"Required step {step.id} skipped: dependency {blocked_by} did not complete",
                    recoverable=False,
                )
                self._mark_failure(step.id)

    async def _on_step_failed(
        self,
        step: WorkflowStep,
        pending: Dict[str, WorkflowStep],
        in_flight: Dict[asyncio.Task, WorkflowStep],
    ) -> None:
        group = self.definition.group_for(step.id)
        if group is not None and group.fail_fast:
            reason = f"Parallel group {group.group_id} failed fast after step {step.id} failed"
            members = set(group.step_ids) - {step.id}
            running = {t: s for t, s in in_flight.items() if s.id in members}
            for task in running:
                del in_flight[task]
            await self._cancel_steps(running, reason)
            for member_id in sorted(members):
                member = self.definition.get_step(member_id)
                if member is None:
                    continue
                pending.pop(member_id, None)
                if not self._record(member_id).status.is_terminal:
                    self._skip_step(member, reason)
                if member.required and self._record(member_id).status == StepStatus.SKIPPED:
                    self._mark_failure(step.id)

        if step.required:
            self._mark_failure(step.id)
        else:
            logger.warning(
                f"Optional step {step.id} failed; execution "
                f"{self.execution.execution_id} continues"
            )

    async def _cancel_steps(
        self, in_flight: Dict[asyncio.Task, WorkflowStep], reason: str
    ) -> None:
        """Cancel running step tasks and mark the interrupted ones skipped."""
        if not in_flight:
            return
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        for step in in_flight.values():
            if not self._record(step.id).status.is_terminal:
                self._skip_step(step, reason)
        in_flight.clear()
        await self._save()

    # ------------------------------------------------------------------
    # Step execution
    async def _run_step(self, step: WorkflowStep) -> bool:
        """Run ``step`` with its retry policy; ``True`` when it completed."""
        record = self._record(step.id)
        record.status = StepStatus.RUNNING
        record.started_at = utcnow()

        if self.execution.dry_run:
            record.attempt = 1
            self._complete_step(
                step,
                {
                    "dry_run": True,
                    "action_registered": self._actions.is_registered(step.type),
                },
            )
            await self._save()
            return True

        try:
            action = self._actions.get(step.type)
        except UnregisteredActionError as exc:
            record.attempt = 1
            self._fail_step(step, exc)
            await self._save()
            return False

        attempts = step.retry_attempts
        last_error: BaseException = RuntimeError("step did not run")
        for attempt in range(1, attempts + 1):
            record.attempt = attempt
            record.status = StepStatus.RUNNING
            await self._save()

            context = ActionContext(
                execution_id=self.execution.execution_id,
                workflow_id=self.definition.id,
                step_id=step.id,
                attempt=attempt,
                variables=self.execution.variables,
                outputs=self._outputs,
                client=self._client,
            )
            try:
                output = await self._call_action(action, step, context)
            except Exception as exc:
                last_error = exc
            else:
                self._complete_step(step, output)
                await self._save()
                return True

            record.error = str(last_error)
            if attempt < attempts:
                record.status = StepStatus.RETRYING
                self._record_error(
                    step.id,
                    f"Attempt {attempt}/{attempts} failed: {last_error}",
                    recoverable=True,
                )
                logger.warning(
                    f"Step {step.id} attempt {attempt}/{attempts} failed: {last_error}"
                )
                await self._save()
                await retry.schedule_retry(attempt, self._config.step_retry_delay_ms)

        self._fail_step(step, StepRetryExhaustedError(step.id, attempts, last_error))
        await self._save()
        return False

    async def _call_action(
        self, action: StepAction, step: WorkflowStep, context: ActionContext
    ) -> Any:
        """Invoke ``action`` with a private copy of the step configuration.

        Only the step deadline itself becomes :class:`StepTimeoutError`; a
        timeout raised by the action before the deadline is its own failure.
        """
        timeout_s = step.timeout_ms / 1000
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            return await asyncio.wait_for(
                action.execute(copy.deepcopy(step.configuration), context),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as exc:
            if loop.time() - started < timeout_s:
                raise
            raise StepTimeoutError(step.timeout_ms, step.id) from exc

    def _complete_step(self, step: WorkflowStep, output: Any) -> None:
        record = self._record(step.id)
        record.status = StepStatus.COMPLETED
        record.completed_at = utcnow()
        record.output = output
        record.error = None
        self._outputs[step.id] = output
        self._completion_order.append(step.id)
        logger.info(
            f"Step {step.id} completed on attempt {record.attempt} "
            f"for execution {self.execution.execution_id}"
        )

    def _fail_step(self, step: WorkflowStep, error: BaseException) -> None:
        record = self._record(step.id)
        record.status = StepStatus.FAILED
        record.completed_at = utcnow()
        record.error = str(error)
        self._record_error(step.id, str(error), recoverable=False)
        logger.error(
            f"Step {step.id} failed for execution {self.execution.execution_id}: {error}"
        )

    def _skip_step(self, step: WorkflowStep, reason: str) -> None:
        record = self._record(step.id)
        record.status = StepStatus.SKIPPED
        record.completed_at = utcnow()
        record.error = reason

    def _skip_unfinished(self, reason: str) -> None:
        for step in self.definition.steps:
            if not self._record(step.id).status.is_terminal:
                self._skip_step(step, reason)

    def _mark_failure(self, step_id: str) -> None:
        if not self._failed:
            self._failed = True
            self._failed_step_id = step_id

    # ------------------------------------------------------------------
    # Compensation
    async def _rollback(self) -> None:
        """Undo completed steps in reverse completion order."""
        targets = []
        for step_id in reversed(self._completion_order):
            rollback = self.definition.rollback_for(step_id)
            if rollback is not None and rollback.condition == RollbackCondition.ON_FAILURE:
                targets.append((self.definition.get_step(step_id), rollback))
        if not targets:
            return

        self.execution.transition(ExecutionStatus.ROLLING_BACK)
        await self._save()
        logger.info(
            f"Rolling back {len(targets)} step(s) for execution "
            f"{self.execution.execution_id}"
        )
        for step, rollback in targets:
            for tag in rollback.rollback_actions:
                await self._compensate(step, tag)
            await self._save()

    async def _compensate(self, step: WorkflowStep, tag: str) -> None:
        context = ActionContext(
            execution_id=self.execution.execution_id,
            workflow_id=self.definition.id,
            step_id=step.id,
            variables=self.execution.variables,
            outputs=self._outputs,
            client=self._client,
            rollback=True,
        )
        try:
            action = self._actions.get(tag)
            if not self.execution.dry_run:
                await self._call_action(action, step, context)
        except Exception as exc:
            error = RollbackActionError(step.id, tag, exc)
        else:
            self.execution.rollbacks.append(
                RollbackInvocation(step_id=step.id, action=tag, status=StepStatus.COMPLETED)
            )
            logger.info(f"Rollback action {tag} for step {step.id} completed")
            return

        self.execution.rollbacks.append(
            RollbackInvocation(
                step_id=step.id, action=tag, status=StepStatus.FAILED, error=str(error)
            )
        )
        self._record_error(step.id, str(error), recoverable=False)
        logger.error(str(error))

    # ------------------------------------------------------------------
    # Record helpers
    def _record(self, step_id: str) -> WorkflowStepExecution:
        record = self.execution.get_step(step_id)
        if record is None:
            raise KeyError(
                f"Execution {self.execution.execution_id} has no record for step {step_id}"
            )
        return record

    def _record_error(
        self, step_id: Optional[str], message: str, recoverable: bool
    ) -> None:
        phase = None
        if step_id is not None:
            step = self.definition.get_step(step_id)
            phase = step.phase if step else None
        self.execution.errors.append(
            WorkflowError(
                step_id=step_id,
                phase=phase or self.execution.current_phase,
                error=message,
                recoverable=recoverable,
            )
        )

    async def _save(self) -> None:
        await self._registry.put(self.execution)
