"""Execution engine tests."""

import asyncio

import pytest

from provisionflow import EngineConfig, ExecutionStatus, StepStatus, WorkflowEngine
from provisionflow.contracts import ParallelGroup, RollbackStep, WorkflowExecution
from provisionflow.engine import _WorkflowRun
from provisionflow.errors import UnknownOperationError, UnknownWorkflowError, ValidationError


async def _wait_for_status(engine, execution_id, step_id, status, attempts=200):
    for _ in range(attempts):
        execution = await engine.get_status(execution_id)
        if execution.get_step(step_id).status == status:
            return execution
        await asyncio.sleep(0.005)
    raise AssertionError(f"{step_id} never reached {status}")


@pytest.mark.asyncio
async def test_linear_chain_recovers_after_retry(engine, definitions, actions, step, definition):
    calls = {"B": 0}

    @actions.action("flaky")
    async def flaky(config, context):
        calls["B"] += 1
        if calls["B"] == 1:
            raise RuntimeError("transient outage")
        return {"attempt": context.attempt}

    definitions.register(
        definition(
            [
                step("A"),
                step("B", type="flaky", dependencies=("A",), retry_attempts=2),
                step("C", dependencies=("B",)),
            ]
        )
    )

    execution = await engine.run("wf")

    assert execution.status == ExecutionStatus.COMPLETED
    b = execution.get_step("B")
    assert b.status == StepStatus.COMPLETED
    assert b.attempt == 2
    assert b.output == {"attempt": 2}
    assert [e.recoverable for e in execution.errors if e.step_id == "B"] == [True]

    a, c = execution.get_step("A"), execution.get_step("C")
    assert a.completed_at <= b.started_at
    assert b.completed_at <= c.started_at
    assert execution.completed_at is not None


@pytest.mark.asyncio
async def test_fail_fast_group_skips_remaining_member(engine, definitions, actions, step, definition):
    started = []

    @actions.action("track")
    async def track(config, context):
        started.append(context.step_id)
        return None

    definitions.register(
        definition(
            [step("G1", type="fail"), step("G2", type="track")],
            parallel_groups=(
                ParallelGroup(
                    group_id="grp", step_ids=("G1", "G2"), max_concurrency=1, fail_fast=True
                ),
            ),
        )
    )

    execution = await engine.run("wf")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.get_step("G1").status == StepStatus.FAILED
    assert execution.get_step("G2").status == StepStatus.SKIPPED
    assert started == []
    assert execution.failed_step_id == "G1"


@pytest.mark.asyncio
async def test_fail_fast_cancels_in_flight_member(engine, definitions, actions, step, definition):
    @actions.action("hang")
    async def hang(config, context):
        await asyncio.Event().wait()

    @actions.action("late_fail")
    async def late_fail(config, context):
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    definitions.register(
        definition(
            [
                step("slow", type="hang", required=False),
                step("bad", type="late_fail", required=False),
                step("after", dependencies=()),
            ],
            parallel_groups=(
                ParallelGroup(
                    group_id="grp", step_ids=("slow", "bad"), max_concurrency=2, fail_fast=True
                ),
            ),
        )
    )

    execution = await asyncio.wait_for(engine.run("wf"), timeout=5)

    assert execution.get_step("bad").status == StepStatus.FAILED
    assert execution.get_step("slow").status == StepStatus.SKIPPED
    assert "failed fast" in execution.get_step("slow").error
    assert execution.get_step("after").status == StepStatus.COMPLETED
    assert execution.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_required_failure_rolls_back_completed_step(engine, definitions, actions, step, definition):
    compensated = []

    @actions.action("undo-a")
    async def undo_a(config, context):
        assert context.rollback
        compensated.append((context.step_id, context.outputs[context.step_id]))

    definitions.register(
        definition(
            [step("A"), step("B", type="fail", dependencies=("A",), retry_attempts=2)],
            rollback_steps=(RollbackStep(step_id="A", rollback_actions=("undo-a",)),),
        )
    )

    execution = await engine.run("wf")

    assert compensated == [("A", {"step": "A"})]
    assert execution.status == ExecutionStatus.FAILED
    assert execution.status_history == [
        ExecutionStatus.PENDING,
        ExecutionStatus.RUNNING,
        ExecutionStatus.ROLLING_BACK,
        ExecutionStatus.FAILED,
    ]
    assert [(r.step_id, r.action, r.status) for r in execution.rollbacks] == [
        ("A", "undo-a", StepStatus.COMPLETED)
    ]
    assert execution.failed_step_id == "B"
    b = execution.get_step("B")
    assert b.attempt == 2
    assert "failed after 2 attempt(s)" in b.error
    assert execution.last_error().step_id == "B"


@pytest.mark.asyncio
async def test_rollback_runs_in_reverse_completion_order(engine, definitions, actions, step, definition):
    order = []

    @actions.action("undo")
    async def undo(config, context):
        order.append(context.step_id)

    definitions.register(
        definition(
            [
                step("A"),
                step("B", dependencies=("A",)),
                step("C", dependencies=("B",)),
                step("D", type="fail", dependencies=("C",)),
                step("E", dependencies=("D",)),
            ],
            rollback_steps=(
                RollbackStep(step_id="A", rollback_actions=("undo",)),
                RollbackStep(step_id="C", rollback_actions=("undo",)),
                RollbackStep(step_id="E", rollback_actions=("undo",)),
            ),
        )
    )

    execution = await engine.run("wf")

    assert order == ["C", "A"]
    assert execution.get_step("E").status == StepStatus.SKIPPED
    assert {r.step_id for r in execution.rollbacks} == {"A", "C"}


@pytest.mark.asyncio
async def test_rollback_failure_is_recorded_alongside_original_error(
    engine, definitions, actions, step, definition
):
    @actions.action("undo-broken")
    async def undo_broken(config, context):
        raise RuntimeError("cannot delete")

    definitions.register(
        definition(
            [step("A"), step("B", type="fail", dependencies=("A",))],
            rollback_steps=(RollbackStep(step_id="A", rollback_actions=("undo-broken", "missing")),),
        )
    )

    execution = await engine.run("wf")

    assert execution.status == ExecutionStatus.FAILED
    messages = [e.error for e in execution.errors]
    assert any("B exploded" in m for m in messages)
    assert any("Rollback action undo-broken for step A failed" in m for m in messages)
    assert any("Rollback action missing for step A failed" in m for m in messages)
    assert [r.status for r in execution.rollbacks] == [StepStatus.FAILED, StepStatus.FAILED]


@pytest.mark.asyncio
async def test_failure_without_rollbacks_skips_rolling_back(engine, definitions, step, definition):
    definitions.register(definition([step("A"), step("B", type="fail", dependencies=("A",))]))

    execution = await engine.run("wf")

    assert ExecutionStatus.ROLLING_BACK not in execution.status_history
    assert execution.status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_optional_failure_does_not_fail_run(engine, definitions, step, definition):
    definitions.register(
        definition(
            [
                step("A"),
                step("B", type="fail", required=False, retry_attempts=2),
                step("C", dependencies=("A",)),
            ]
        )
    )

    execution = await engine.run("wf")

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.get_step("B").status == StepStatus.FAILED
    terminal = [e for e in execution.errors if not e.recoverable]
    assert [e.step_id for e in terminal] == ["B"]
    assert terminal[0].phase == "main"


@pytest.mark.asyncio
async def test_required_step_blocked_by_failed_optional_dependency(engine, definitions, step, definition):
    definitions.register(
        definition([step("B", type="fail", required=False), step("C", dependencies=("B",))])
    )

    execution = await engine.run("wf")

    assert execution.get_step("C").status == StepStatus.SKIPPED
    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step_id == "C"


@pytest.mark.asyncio
async def test_unregistered_action_fails_immediately(engine, definitions, step, definition):
    definitions.register(definition([step("A", type="nobody-home", retry_attempts=3)]))

    execution = await engine.run("wf")

    a = execution.get_step("A")
    assert a.status == StepStatus.FAILED
    assert a.attempt == 1
    assert "No action registered for type 'nobody-home'" in a.error
    assert execution.status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_step_timeout_is_enforced(engine, definitions, actions, step, definition):
    @actions.action("sleepy")
    async def sleepy(config, context):
        await asyncio.sleep(5)

    definitions.register(definition([step("A", type="sleepy", timeout_ms=20, retry_attempts=2)]))

    execution = await asyncio.wait_for(engine.run("wf"), timeout=5)

    a = execution.get_step("A")
    assert a.status == StepStatus.FAILED
    assert a.attempt == 2
    assert "timed out after 20ms" in a.error


@pytest.mark.asyncio
async def test_parallel_group_respects_max_concurrency(engine, definitions, actions, step, definition):
    running = 0
    peak = 0

    @actions.action("measure")
    async def measure(config, context):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1

    definitions.register(
        definition(
            [step(f"P{i}", type="measure") for i in range(4)],
            parallel_groups=(
                ParallelGroup(group_id="grp", step_ids=("P0", "P1", "P2", "P3"), max_concurrency=2),
            ),
        )
    )

    execution = await engine.run("wf")

    assert execution.status == ExecutionStatus.COMPLETED
    assert peak == 2


@pytest.mark.asyncio
async def test_ungrouped_steps_run_one_at_a_time(engine, definitions, actions, step, definition):
    running = 0
    peak = 0

    @actions.action("measure")
    async def measure(config, context):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    definitions.register(definition([step(f"S{i}", type="measure") for i in range(3)]))

    await engine.run("wf")

    assert peak == 1


@pytest.mark.asyncio
async def test_engine_ceiling_caps_group_concurrency(definitions, actions, operation_registry, step, definition):
    running = 0
    peak = 0

    @actions.action("measure")
    async def measure(config, context):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    definitions.register(
        definition(
            [step(f"P{i}", type="measure") for i in range(3)],
            parallel_groups=(
                ParallelGroup(group_id="grp", step_ids=("P0", "P1", "P2"), max_concurrency=3),
            ),
        )
    )
    engine = WorkflowEngine(
        definitions,
        actions,
        registry=operation_registry,
        config=EngineConfig(max_concurrent_steps=1, step_retry_delay_ms=0),
    )

    await engine.run("wf")

    assert peak == 1


@pytest.mark.asyncio
async def test_later_phase_waits_for_earlier_phase(engine, definitions, actions, step, definition):
    @actions.action("slow")
    async def slow(config, context):
        await asyncio.sleep(0.02)

    definitions.register(
        definition(
            [step("first", type="slow", phase="one"), step("second", phase="two")],
            phases=("one", "two"),
        )
    )

    execution = await engine.run("wf")

    first, second = execution.get_step("first"), execution.get_step("second")
    assert first.completed_at <= second.started_at
    assert execution.current_phase == "two"


@pytest.mark.asyncio
async def test_cancel_skips_remaining_steps_without_rollback(engine, definitions, actions, step, definition):
    undone = []

    @actions.action("hang")
    async def hang(config, context):
        await asyncio.Event().wait()

    @actions.action("undo")
    async def undo(config, context):
        undone.append(context.step_id)

    definitions.register(
        definition(
            [
                step("A"),
                step("B", type="hang", dependencies=("A",)),
                step("C", dependencies=("B",)),
            ],
            rollback_steps=(RollbackStep(step_id="A", rollback_actions=("undo",)),),
        )
    )

    execution_id = await engine.start("wf")
    await _wait_for_status(engine, execution_id, "B", StepStatus.RUNNING)

    assert await engine.cancel(execution_id) is True
    execution = await asyncio.wait_for(engine.wait(execution_id), timeout=5)

    assert execution.status == ExecutionStatus.CANCELLED
    assert execution.get_step("A").status == StepStatus.COMPLETED
    assert execution.get_step("B").status == StepStatus.SKIPPED
    assert execution.get_step("C").status == StepStatus.SKIPPED
    assert undone == []
    assert execution.rollbacks == []
    assert execution.errors[-1].error == "Execution cancelled by request"
    assert await engine.cancel(execution_id) is False


@pytest.mark.asyncio
async def test_cancel_can_opt_into_rollback(definitions, actions, operation_registry, step, definition):
    undone = []

    @actions.action("hang")
    async def hang(config, context):
        await asyncio.Event().wait()

    @actions.action("undo")
    async def undo(config, context):
        undone.append(context.step_id)

    definitions.register(
        definition(
            [step("A"), step("B", type="hang", dependencies=("A",))],
            rollback_steps=(RollbackStep(step_id="A", rollback_actions=("undo",)),),
        )
    )
    engine = WorkflowEngine(
        definitions,
        actions,
        registry=operation_registry,
        config=EngineConfig(step_retry_delay_ms=0, rollback_on_cancel=True),
    )

    execution_id = await engine.start("wf")
    await _wait_for_status(engine, execution_id, "B", StepStatus.RUNNING)
    await engine.cancel(execution_id)
    execution = await asyncio.wait_for(engine.wait(execution_id), timeout=5)

    assert undone == ["A"]
    assert execution.status == ExecutionStatus.CANCELLED


@pytest.mark.asyncio
async def test_start_returns_before_completion(engine, definitions, step, definition):
    definitions.register(definition([step("A")]))

    execution_id = await engine.start("wf")
    snapshot = await engine.get_status(execution_id)

    assert snapshot.status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
    final = await engine.wait(execution_id)
    assert final.status == ExecutionStatus.COMPLETED
    assert execution_id not in engine.active_executions


@pytest.mark.asyncio
async def test_terminal_snapshot_is_stable(engine, definitions, step, definition):
    definitions.register(definition([step("A"), step("B", dependencies=("A",))]))
    execution = await engine.run("wf")

    first = await engine.get_status(execution.execution_id)
    second = await engine.get_status(execution.execution_id)

    assert first.model_dump() == second.model_dump() == execution.model_dump()
    first.steps.clear()
    third = await engine.get_status(execution.execution_id)
    assert len(third.steps) == 2


@pytest.mark.asyncio
async def test_unknown_execution_and_workflow(engine):
    with pytest.raises(UnknownOperationError):
        await engine.get_status("missing")
    with pytest.raises(UnknownOperationError):
        await engine.cancel("missing")
    with pytest.raises(UnknownWorkflowError):
        await engine.start("no-such-workflow")


@pytest.mark.asyncio
async def test_invalid_definition_never_reaches_engine(engine, definitions, step, definition):
    cyclic = definition([step("A", dependencies=("B",)), step("B", dependencies=("A",))])

    with pytest.raises(ValidationError) as exc_info:
        definitions.register(cyclic)

    assert "Circular dependencies detected in workflow" in exc_info.value.violations
    with pytest.raises(UnknownWorkflowError):
        await engine.start("wf")


@pytest.mark.asyncio
async def test_actions_share_run_variables(engine, definitions, actions, step, definition):
    @actions.action("register-app")
    async def register_app(config, context):
        context.variables["appId"] = f"app-{context.variables['projectName']}"
        return {"appId": context.variables["appId"]}

    @actions.action("use-app")
    async def use_app(config, context):
        return {"seen": context.outputs["A"]["appId"], "prefix": config["prefix"]}

    definitions.register(
        definition(
            [
                step("A", type="register-app"),
                step("B", type="use-app", dependencies=("A",), configuration={"prefix": "x"}),
            ]
        )
    )

    execution = await engine.run("wf", {"projectName": "demo"})

    assert execution.variables == {"projectName": "demo", "appId": "app-demo"}
    assert execution.get_step("B").output == {"seen": "app-demo", "prefix": "x"}


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated(engine, definitions, actions, step, definition):
    @actions.action("echo")
    async def echo(config, context):
        await asyncio.sleep(0.01)
        return context.variables["n"]

    definitions.register(definition([step("A", type="echo")]))

    ids = [await engine.start("wf", {"n": n}) for n in range(3)]
    results = [await engine.wait(execution_id) for execution_id in ids]

    assert [r.get_step("A").output for r in results] == [0, 1, 2]
    assert len(await engine.list_executions()) == 3


@pytest.mark.asyncio
async def test_runs_never_mutate_the_definition(engine, definitions, actions, step, definition):
    @actions.action("count")
    async def count(config, context):
        config["nested"]["count"] += 1
        config["nested"]["seen"].append(context.execution_id)
        return config["nested"]["count"]

    @actions.action("undo-count")
    async def undo_count(config, context):
        config["nested"]["count"] = -1

    definitions.register(
        definition(
            [
                step("A", type="count", configuration={"nested": {"count": 0, "seen": []}}),
                step("B", type="fail", dependencies=("A",)),
            ],
            rollback_steps=(RollbackStep(step_id="A", rollback_actions=("undo-count",)),),
        )
    )

    first = await engine.run("wf")
    second = await engine.run("wf")

    assert first.get_step("A").output == 1
    assert second.get_step("A").output == 1
    assert definitions.get("wf").get_step("A").configuration == {
        "nested": {"count": 0, "seen": []}
    }


@pytest.mark.asyncio
async def test_timeout_raised_by_action_is_not_a_step_deadline(
    engine, definitions, actions, step, definition
):
    @actions.action("inner-timeout")
    async def inner_timeout(config, context):
        raise asyncio.TimeoutError("upstream gave up")

    definitions.register(definition([step("A", type="inner-timeout", timeout_ms=5_000)]))

    execution = await engine.run("wf")

    a = execution.get_step("A")
    assert a.status == StepStatus.FAILED
    assert "timed out after" not in a.error
    assert "upstream gave up" in a.error


@pytest.mark.asyncio
async def test_unknown_step_record_fails_loudly(engine, definitions, step, definition):
    wf = definitions.register(definition([step("A")]))
    run = _WorkflowRun(engine, wf, WorkflowExecution.for_definition(wf))

    assert run._record("A").step_id == "A"
    with pytest.raises(KeyError):
        run._record("ghost")
