"""Tests for WorkflowEngine scheduling, retries and approval gates."""
from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from wavecrew.engine.config import WorkflowConfig
from wavecrew.engine.engine import EMPTY_REVISION_FEEDBACK, WorkflowEngine
from wavecrew.engine.event_bus import EventBus
from wavecrew.engine.events import TaskProgress, WaveFinished
from wavecrew.engine.models import (
    AgentConfig,
    AgentScope,
    AgentSource,
    CriticReport,
    PlanAndRunParams,
    TaskSpec,
    TaskStatus,
    UsageSummary,
    Wave,
    WorkflowParams,
)
from wavecrew.engine.providers.base import AgentProgress, AgentRunner, AgentRunResult

_TASK_ID_RE = re.compile(r"^TASK ID: (\S+)$", re.MULTILINE)


def worker_ok(summary="did it", status="completed", blockers=()):
    return json.dumps({
        "status": status,
        "summary": summary,
        "filesTouched": ["src/app.py"],
        "blockers": list(blockers),
    })


def critic(decision, rationale="checked", issues=(), instructions=()):
    return json.dumps({
        "decision": decision,
        "rationale": rationale,
        "issues": list(issues),
        "revisionInstructions": list(instructions),
    })


class ScriptedRunner(AgentRunner):
    """Replays canned agent outputs.

    Responses are keyed by ``(agent, task_id)`` or just ``agent`` and
    consumed in order. Each entry is final text, or a tuple of
    ``(exit_code, final_text, stderr)``.
    """

    def __init__(self, responses, usage=None, tool_calls=0, delay=0.0):
        self.responses = {key: list(values) for key, values in responses.items()}
        self.usage = usage or UsageSummary()
        self.tool_calls = tool_calls
        self.delay = delay
        self.calls: list[dict] = []
        self.in_flight = 0
        self.peak = 0

    @property
    def name(self) -> str:
        return "scripted"

    def is_available(self) -> bool:
        return True

    async def run_agent_task(
        self,
        agent,
        task_prompt,
        cwd,
        *,
        cancel_event=None,
        on_progress=None,
        system_prompt_override=None,
    ):
        match = _TASK_ID_RE.search(system_prompt_override or "")
        task_id = match.group(1) if match else None
        self.calls.append({
            "agent": agent.name,
            "task_id": task_id,
            "cwd": cwd,
            "task_prompt": task_prompt,
            "system_prompt": system_prompt_override,
        })
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if on_progress is not None:
                on_progress(AgentProgress(phase="tool", text="running bash"))
            if self.delay:
                await asyncio.sleep(self.delay)
            queue = self.responses.get((agent.name, task_id)) or self.responses[agent.name]
            entry = queue.pop(0) if len(queue) > 1 else queue[0]
        finally:
            self.in_flight -= 1

        exit_code, text, stderr = entry if isinstance(entry, tuple) else (0, entry, "")
        return AgentRunResult(
            agent=agent.name,
            source=agent.source,
            exit_code=exit_code,
            final_text=text,
            stderr=stderr,
            usage=self.usage,
            tool_calls=self.tool_calls,
        )


def _write_agent(directory: Path, name: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{name}.md").write_text(
        f"---\nname: {name}\ndescription: {name} agent\n---\n{name.upper()} INSTRUCTIONS\n",
        encoding="utf-8",
    )


@pytest.fixture
def workspace(tmp_path):
    user_dir = tmp_path / "home-agents"
    for name in ("implementer", "critic", "planner"):
        _write_agent(user_dir, name)
    project = tmp_path / "project"
    project.mkdir()
    config = WorkflowConfig(user_agents_dir=str(user_dir))
    return config, str(project)


def _spec(task_id, cwd=None):
    return TaskSpec(
        id=task_id,
        objective=f"Implement {task_id}",
        acceptance_criteria=("tests pass",),
        cwd=cwd,
    )


def _params(*waves, **kwargs):
    kwargs.setdefault("execution_approved", True)
    return WorkflowParams(
        goal="Ship the feature",
        waves=[Wave(tasks=tuple(_spec(t) for t in wave)) for wave in waves],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_single_task_approved(workspace):
    config, cwd = workspace
    runner = ScriptedRunner(
        {"implementer": [worker_ok()], "critic": [critic("approve")]},
        usage=UsageSummary(input=10, output=5, total_cost=0.01, turns=1),
        tool_calls=2,
    )
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"]), cwd)

    assert result.is_error is False
    assert result.cancelled is False
    task = result.details.tasks[0]
    assert task.status == TaskStatus.COMPLETED
    assert task.attempt == 1
    assert task.worker_summary == "did it"
    assert task.files_touched == ["src/app.py"]
    assert task.critic_decision == "approve"
    assert task.worker_agent_source == AgentSource.USER
    assert task.usage.turns == 2
    assert task.tool_calls == 4
    assert result.details.finished_at is not None
    assert result.text.startswith("Workflow finished: 1 completed, 0 blocked, 0 failed, 0 skipped")
    assert "turns=2 input=20 output=10" in result.text

    worker_call, critic_call = runner.calls
    assert worker_call["task_prompt"] == "Execute the task now and return JSON only."
    assert worker_call["system_prompt"].endswith("IMPLEMENTER INSTRUCTIONS")
    assert critic_call["task_prompt"] == "Review the worker output and return JSON only."
    assert "WORKER OUTPUT TO REVIEW:" in critic_call["system_prompt"]
    assert worker_ok() in critic_call["system_prompt"]


@pytest.mark.asyncio
async def test_revise_then_approve_feeds_critic_issues(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok("first try"), worker_ok("second try")],
        "critic": [
            critic("revise", issues=["missing edge case"], instructions=["handle empty input"]),
            critic("approve"),
        ],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"]), cwd)

    task = result.details.tasks[0]
    assert task.status == TaskStatus.COMPLETED
    assert task.attempt == 2
    assert task.worker_summary == "second try"
    second_worker = [c for c in runner.calls if c["agent"] == "implementer"][1]
    assert "REVISION FEEDBACK FROM CRITIC (MUST ADDRESS):" in second_worker["system_prompt"]
    assert "- missing edge case" in second_worker["system_prompt"]
    assert "- handle empty input" in second_worker["system_prompt"]


@pytest.mark.asyncio
async def test_revise_with_only_rationale_uses_rationale(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok()],
        "critic": [critic("revise", rationale=" needs another look "), critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)
    await engine.execute_workflow(_params(["t1"]), cwd)

    second_worker = [c for c in runner.calls if c["agent"] == "implementer"][1]
    assert "- needs another look" in second_worker["system_prompt"]
    assert EMPTY_REVISION_FEEDBACK not in second_worker["system_prompt"]


@pytest.mark.asyncio
async def test_revise_without_any_feedback_uses_generic_message(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok()],
        "critic": [critic("revise"), critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)
    verdicts = [
        CriticReport(decision="revise", rationale=""),
        CriticReport(decision="approve", rationale="fine"),
    ]
    with patch("wavecrew.engine.engine.parse_critic_report", side_effect=verdicts):
        result = await engine.execute_workflow(_params(["t1"]), cwd)

    assert result.details.tasks[0].status == TaskStatus.COMPLETED
    second_worker = [c for c in runner.calls if c["agent"] == "implementer"][1]
    assert f"- {EMPTY_REVISION_FEEDBACK}" in second_worker["system_prompt"]

@pytest.mark.asyncio
async def test_revise_on_last_attempt_fails_task(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok()],
        "critic": [critic("revise", rationale="not good", issues=["bug A", "bug B"])],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], max_worker_attempts=2), cwd)

    task = result.details.tasks[0]
    assert task.status == TaskStatus.FAILED
    assert task.attempt == 2
    assert task.error == "bug A; bug B"
    assert result.is_error is True


@pytest.mark.asyncio
async def test_worker_nonzero_exit_retries_then_fails(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [(1, "", "rate limited\n")],
        "critic": [critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], max_worker_attempts=3), cwd)

    task = result.details.tasks[0]
    assert task.status == TaskStatus.FAILED
    assert task.attempt == 3
    assert task.error == "rate limited"
    assert [c["agent"] for c in runner.calls] == ["implementer"] * 3
    assert "- rate limited" in runner.calls[1]["system_prompt"]


@pytest.mark.asyncio
async def test_malformed_worker_output_gets_strict_json_feedback(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": ["I did the work, trust me.", worker_ok()],
        "critic": [critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"]), cwd)

    assert result.details.tasks[0].status == TaskStatus.COMPLETED
    retry_prompt = runner.calls[1]["system_prompt"]
    assert "- worker output did not match required JSON schema" in retry_prompt
    assert "- Return ONLY strict JSON using required keys." in retry_prompt


@pytest.mark.asyncio
async def test_malformed_critic_output_exhausts_attempts(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok()],
        "critic": ["looks fine"],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], max_worker_attempts=1), cwd)

    task = result.details.tasks[0]
    assert task.status == TaskStatus.FAILED
    assert task.error == "critic output did not match required JSON schema"


@pytest.mark.asyncio
async def test_blocked_worker_approved_is_blocked_and_fail_fast_skips(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "implementer": [worker_ok(status="blocked", blockers=["no API key"])],
        "critic": [critic("approve")],
    })
    bus = EventBus()
    engine = WorkflowEngine(config=config, runner=runner, event_bus=bus)

    result = await engine.execute_workflow(_params(["t1"], ["t2", "t3"]), cwd)

    statuses = {t.id: t.status for t in result.details.tasks}
    assert statuses == {
        "t1": TaskStatus.BLOCKED,
        "t2": TaskStatus.SKIPPED,
        "t3": TaskStatus.SKIPPED,
    }
    assert result.details.tasks[0].error == "no API key"
    assert result.is_error is True
    assert "0 completed, 1 blocked, 0 failed, 2 skipped" in result.text
    assert {c["task_id"] for c in runner.calls} == {"t1"}

    wave_events = [e for e in bus.drain() if isinstance(e, WaveFinished)]
    assert len(wave_events) == 1
    assert wave_events[0].halted is True


@pytest.mark.asyncio
async def test_without_fail_fast_later_waves_run(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        ("implementer", "t1"): [(2, "", "crash")],
        "implementer": [worker_ok()],
        "critic": [critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(
        _params(["t1"], ["t2"], fail_fast=False, max_worker_attempts=1), cwd,
    )

    statuses = {t.id: t.status for t in result.details.tasks}
    assert statuses == {"t1": TaskStatus.FAILED, "t2": TaskStatus.COMPLETED}
    assert result.is_error is True


@pytest.mark.asyncio
async def test_wave_concurrency_is_bounded(workspace):
    config, cwd = workspace
    runner = ScriptedRunner(
        {"implementer": [worker_ok()], "critic": [critic("approve")]},
        delay=0.01,
    )
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(
        _params([f"t{i}" for i in range(6)], max_concurrency=2), cwd,
    )

    assert all(t.status == TaskStatus.COMPLETED for t in result.details.tasks)
    assert runner.peak == 2


@pytest.mark.asyncio
async def test_usage_aggregates_across_tasks(workspace):
    config, cwd = workspace
    runner = ScriptedRunner(
        {"implementer": [worker_ok()], "critic": [critic("approve")]},
        usage=UsageSummary(input=100, output=10, cache_read=1, cache_write=2, total_cost=0.5, turns=1),
    )
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["a", "b"], ["c"]), cwd)

    assert "Usage: turns=6 input=600 output=60 cacheRead=6 cacheWrite=12 cost=$3.0000" in result.text


@pytest.mark.asyncio
async def test_progress_events_published(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({"implementer": [worker_ok()], "critic": [critic("approve")]})
    bus = EventBus()
    engine = WorkflowEngine(config=config, runner=runner, event_bus=bus)

    await engine.execute_workflow(_params(["t1"]), cwd)

    progress = [e for e in bus.drain() if isinstance(e, TaskProgress)]
    assert progress and progress[0].task_id == "t1"
    assert progress[0].text == "running bash"


@pytest.mark.asyncio
async def test_task_cwd_resolved_and_passed_to_runner(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({"implementer": [worker_ok()], "critic": [critic("approve")]})
    engine = WorkflowEngine(config=config, runner=runner)
    params = WorkflowParams(
        goal="Ship the feature",
        waves=[Wave(tasks=(_spec("t1", cwd="pkg"),))],
        execution_approved=True,
    )

    await engine.execute_workflow(params, cwd)

    assert runner.calls[0]["cwd"] == str(Path(cwd) / "pkg")


@pytest.mark.asyncio
async def test_cwd_escape_is_rejected_before_any_run(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({"implementer": [worker_ok()], "critic": [critic("approve")]})
    engine = WorkflowEngine(config=config, runner=runner)
    params = WorkflowParams(
        goal="Ship the feature",
        waves=[Wave(tasks=(_spec("t1", cwd="../../etc"),))],
        execution_approved=True,
    )

    result = await engine.execute_workflow(params, cwd)

    assert result.is_error is True
    assert "Task cwd must stay inside project root: ../../etc" in result.text
    assert runner.calls == []


@pytest.mark.asyncio
async def test_duplicate_ids_rejected_before_any_run(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({"implementer": [worker_ok()], "critic": [critic("approve")]})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], ["t1"]), cwd)

    assert result.is_error is True
    assert result.text == "Duplicate task id detected: t1"
    assert result.details is None
    assert runner.calls == []


@pytest.mark.asyncio
async def test_missing_agent_reports_available(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], worker_agent="ghost"), cwd)

    assert result.is_error is True
    assert "Missing required agents. worker=ghost" in result.text
    assert "critic (user)" in result.text
    assert runner.calls == []


@pytest.mark.asyncio
async def test_non_interactive_requires_execution_approval(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], execution_approved=False), cwd)

    assert result.cancelled is True
    assert result.is_error is False
    assert result.text.startswith("Execution approval required.")
    assert runner.calls == []


@pytest.mark.asyncio
async def test_declined_execution_runs_nothing(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    confirm = AsyncMock(return_value=False)
    engine = WorkflowEngine(config=config, runner=runner, confirm=confirm)

    result = await engine.execute_workflow(_params(["t1", "t2"], execution_approved=False), cwd)

    assert result.cancelled is True
    assert result.text == "Execution cancelled: plan not approved by user."
    assert runner.calls == []
    question, detail = confirm.await_args.args
    assert question == "Approve workflow execution?"
    assert "Goal: Ship the feature" in detail
    assert "Wave 1: 2 task(s) [t1, t2]" in detail


@pytest.mark.asyncio
async def test_project_agents_need_confirmation(workspace):
    config, cwd = workspace
    _write_agent(Path(cwd) / ".wavecrew" / "agents", "implementer")
    runner = ScriptedRunner({})
    confirm = AsyncMock(return_value=False)
    engine = WorkflowEngine(config=config, runner=runner, confirm=confirm)

    result = await engine.execute_workflow(
        _params(["t1"], agent_scope=AgentScope.BOTH), cwd,
    )

    assert result.cancelled is True
    assert result.text == "Cancelled by user: project-local agents not approved."
    question, detail = confirm.await_args.args
    assert question == "Approve project-local agents?"
    assert "implementer (project)" in detail
    assert confirm.await_count == 1
    assert runner.calls == []


@pytest.mark.asyncio
async def test_project_agents_approved_then_execution_gate(workspace):
    config, cwd = workspace
    _write_agent(Path(cwd) / ".wavecrew" / "agents", "implementer")
    runner = ScriptedRunner({"implementer": [worker_ok()], "critic": [critic("approve")]})
    confirm = AsyncMock(return_value=True)
    engine = WorkflowEngine(config=config, runner=runner, confirm=confirm)

    result = await engine.execute_workflow(
        _params(["t1"], agent_scope=AgentScope.BOTH, execution_approved=False), cwd,
    )

    assert confirm.await_count == 2
    task = result.details.tasks[0]
    assert task.status == TaskStatus.COMPLETED
    assert task.worker_agent_source == AgentSource.PROJECT
    assert task.critic_agent_source == AgentSource.USER


class ExplodingRunner(ScriptedRunner):
    async def run_agent_task(self, agent, task_prompt, cwd, **kwargs):
        if agent.name == "critic":
            raise RuntimeError("event loop on fire")
        return await super().run_agent_task(agent, task_prompt, cwd, **kwargs)


@pytest.mark.asyncio
async def test_infrastructure_exception_fails_remaining_tasks(workspace):
    config, cwd = workspace
    runner = ExplodingRunner({"implementer": [worker_ok()]})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1"], ["t2"]), cwd)

    assert result.is_error is True
    for task in result.details.tasks:
        assert task.status == TaskStatus.FAILED
        assert task.error == "event loop on fire"


def _plan_json(*waves):
    return json.dumps({"waves": [
        {"name": f"Step {i + 1}", "tasks": [
            {"id": task_id, "objective": f"Build {task_id}", "acceptanceCriteria": ["done"]}
            for task_id in wave
        ]}
        for i, wave in enumerate(waves)
    ]})


@pytest.mark.asyncio
async def test_plan_and_execute_retries_invalid_plan(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        "planner": ["here is a plan: step one, step two", _plan_json(["a"], ["b"])],
        "implementer": [worker_ok()],
        "critic": [critic("approve")],
    }, usage=UsageSummary(turns=1, total_cost=0.1))
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.plan_and_execute(
        PlanAndRunParams(goal="Ship the feature", execution_approved=True), cwd,
    )

    assert result.is_error is False
    assert [t.id for t in result.details.tasks] == ["a", "b"]
    assert result.details.tasks[1].wave_name == "Step 2"
    assert result.details.planning.planner_agent == "planner"
    assert result.details.planning.attempts == 2
    assert result.details.planning.usage.turns == 2

    planner_calls = [c for c in runner.calls if c["agent"] == "planner"]
    assert planner_calls[0]["task_prompt"] == "Create a wave-based plan now and return JSON only."
    assert "Planner output was invalid JSON or schema-invalid." in planner_calls[1]["system_prompt"]


@pytest.mark.asyncio
async def test_plan_and_execute_gives_up(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({"planner": [(1, "", "planner crashed")]})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.plan_and_execute(
        PlanAndRunParams(goal="Ship the feature", planning_attempts=2, execution_approved=True),
        cwd,
    )

    assert result.is_error is True
    assert result.text == "Planner failed to produce a valid workflow plan after retries."
    assert [c["agent"] for c in runner.calls] == ["planner", "planner"]
    assert "- planner crashed" in runner.calls[1]["system_prompt"]


@pytest.mark.asyncio
async def test_plan_and_execute_missing_planner(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.plan_and_execute(
        PlanAndRunParams(goal="Ship the feature", planner_agent="architect"), cwd,
    )

    assert result.is_error is True
    assert "planner=architect" in result.text


class CancellableRunner(ScriptedRunner):
    """Holds each run open until the workflow's cancel event fires."""

    async def run_agent_task(self, agent, task_prompt, cwd, *, cancel_event=None, **kwargs):
        self.calls.append({"agent": agent.name, "cwd": cwd})
        await cancel_event.wait()
        return AgentRunResult(
            agent=agent.name,
            source=agent.source,
            exit_code=-15,
            final_text="",
            stderr="terminated",
            usage=self.usage,
        )


@pytest.mark.asyncio
async def test_cancel_event_fails_in_flight_tasks(workspace):
    config, cwd = workspace
    runner = CancellableRunner({})
    engine = WorkflowEngine(config=config, runner=runner)
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        cancel_event.set()

    canceller = asyncio.create_task(cancel_soon())
    result = await asyncio.wait_for(
        engine.execute_workflow(
            _params(["t1", "t2"], ["t3"], max_worker_attempts=1),
            cwd,
            cancel_event=cancel_event,
        ),
        timeout=5,
    )
    await canceller

    assert result.is_error is True
    statuses = {task.id: task.status for task in result.details.tasks}
    assert statuses == {
        "t1": TaskStatus.FAILED,
        "t2": TaskStatus.FAILED,
        "t3": TaskStatus.SKIPPED,
    }
    assert result.details.tasks[0].error == "terminated"
    assert len(runner.calls) == 2


@pytest.mark.asyncio
async def test_pathological_worker_output_does_not_sink_sibling(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({
        ("implementer", "t1"): ["[" * 100000 + "]" * 100000],
        ("implementer", "t2"): [worker_ok()],
        "critic": [critic("approve")],
    })
    engine = WorkflowEngine(config=config, runner=runner)

    result = await engine.execute_workflow(_params(["t1", "t2"], max_worker_attempts=1), cwd)

    first, second = result.details.tasks
    assert first.status == TaskStatus.FAILED
    assert first.error == "worker output did not match required JSON schema"
    assert second.status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_confirm_failure_is_reported_not_raised(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    confirm = AsyncMock(side_effect=EOFError)
    engine = WorkflowEngine(config=config, runner=runner, confirm=confirm)

    result = await engine.execute_workflow(_params(["t1"], execution_approved=False), cwd)

    assert result.is_error is True
    assert result.cancelled is False
    assert result.text == "Workflow aborted: EOFError"
    assert runner.calls == []


@pytest.mark.asyncio
async def test_discovery_failure_is_reported_not_raised(workspace):
    config, cwd = workspace
    runner = ScriptedRunner({})
    engine = WorkflowEngine(config=config, runner=runner)

    with patch(
        "wavecrew.engine.engine.discover_agents",
        side_effect=PermissionError("agents dir unreadable"),
    ):
        result = await engine.plan_and_execute(
            PlanAndRunParams(goal="Ship the feature", execution_approved=True), cwd,
        )

    assert result.is_error is True
    assert result.text == "Workflow aborted: agents dir unreadable"
    assert runner.calls == []
