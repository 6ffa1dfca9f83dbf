"""Workflow engine: wave scheduling and the worker → critic retry loop.

Usage:
    engine = WorkflowEngine(config=WorkflowConfig.from_env(), confirm=ask)
    result = await engine.execute_workflow(params, cwd="/path/to/project")
    print(result.text)

One call owns one fresh set of TaskRuntime records. Waves run in
order; tasks inside a wave fan out through map_with_concurrency. Each
task runs its worker, then its critic, and retries with feedback until
the critic approves or the attempt budget runs out. With fail-fast on,
a failed or blocked task skips every later wave.

Neither entry point raises past its boundary: validation errors,
missing agents, declined approvals and infrastructure failures all
come back as a WorkflowResult.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from .agents import AgentDiscovery, discover_agents, get_agent_by_name, list_agent_names
from .concurrency import map_with_concurrency
from .config import MAX_CONCURRENCY_CEILING, ConfirmCallback, WorkflowConfig
from .errors import AgentNotFoundError, ApprovalDeniedError, OrchestrationError
from .event_bus import EventBus
from .events import (
    PlannerAttempt,
    TaskProgress,
    TaskStatusChanged,
    WaveFinished,
    WorkflowEvent,
    WorkflowFinished,
    WorkflowStarted,
)
from .lifecycle import transition
from .models import (
    AgentConfig,
    AgentScope,
    AgentSource,
    PlanAndRunParams,
    PlanningDetails,
    TaskRuntime,
    TaskStatus,
    UsageSummary,
    WorkflowDetails,
    WorkflowParams,
    WorkflowResult,
)
from .plan import create_task_runtimes, format_wave_summary, validate_workflow
from .prompts import (
    CRITIC_TASK_PROMPT,
    PLANNER_TASK_PROMPT,
    WORKER_TASK_PROMPT,
    build_critic_prompt,
    build_planner_prompt,
    build_worker_prompt,
    with_instructions,
)
from .providers.base import AgentProgress, AgentRunner, AgentRunResult, ProgressCallback
from .providers.pi_runner import PiRunner
from .reports import parse_critic_report, parse_planned_waves, parse_worker_report
from .summary import status_counts, workflow_summary_text

logger = logging.getLogger(__name__)

STRICT_JSON_FEEDBACK = "Return ONLY strict JSON using required keys."
EMPTY_REVISION_FEEDBACK = (
    "Critic requested revision without feedback; re-check every acceptance criterion."
)
PLANNER_INVALID_FEEDBACK = [
    "Planner output was invalid JSON or schema-invalid.",
    "Return ONLY strict JSON with top-level waves[] and valid task packets.",
]


@dataclass
class _WorkflowRun:
    """State owned by one execute_workflow() call."""
    params: WorkflowParams
    worker: AgentConfig
    critic: AgentConfig
    tasks: list[TaskRuntime]
    cancel_event: asyncio.Event


class WorkflowEngine:
    """Runs wave/task plans through worker and critic agents."""

    def __init__(
        self,
        config: WorkflowConfig | None = None,
        runner: AgentRunner | None = None,
        confirm: ConfirmCallback | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config or WorkflowConfig()
        self._runner = runner or PiRunner(
            command=self.config.agent_command,
            kill_grace_seconds=self.config.kill_grace_seconds,
            progress_text_limit=self.config.progress_text_limit,
        )
        self._confirm = confirm
        self._event_bus = event_bus

    # ── Public entry points ────────────────────────────────────

    async def execute_workflow(
        self,
        params: WorkflowParams,
        cwd: str,
        *,
        cancel_event: asyncio.Event | None = None,
        planning: PlanningDetails | None = None,
    ) -> WorkflowResult:
        """Validate, approve and run an explicit wave plan."""
        return await self._guarded(
            self._execute(params, cwd, cancel_event or asyncio.Event(), planning)
        )

    async def plan_and_execute(
        self,
        params: PlanAndRunParams,
        cwd: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> WorkflowResult:
        """Ask the planner agent for waves, then run them."""
        return await self._guarded(
            self._plan_and_execute(params, cwd, cancel_event or asyncio.Event())
        )

    async def _guarded(self, coro) -> WorkflowResult:
        try:
            return await coro
        except ApprovalDeniedError as exc:
            logger.info("Workflow not started: %s", exc)
            return WorkflowResult(text=str(exc), is_error=False, cancelled=True)
        except OrchestrationError as exc:
            logger.warning("Workflow rejected: %s", exc)
            return WorkflowResult(text=str(exc), is_error=True)
        except Exception as exc:
            logger.error("Workflow aborted: %s", exc, exc_info=True)
            return WorkflowResult(
                text=f"Workflow aborted: {str(exc) or type(exc).__name__}",
                is_error=True,
            )

    # ── Workflow execution ────────────────────────────────────

    async def _execute(
        self,
        params: WorkflowParams,
        cwd: str,
        cancel_event: asyncio.Event,
        planning: PlanningDetails | None,
        discovery: AgentDiscovery | None = None,
    ) -> WorkflowResult:
        validate_workflow(params, self.config.max_tasks)
        tasks = create_task_runtimes(params, cwd)

        if discovery is None:
            discovery = self._discover(cwd, params.agent_scope)
        worker, critic = self._resolve_agents(
            discovery,
            worker=params.worker_agent,
            critic=params.critic_agent,
        )

        await self._confirm_project_agents(
            params.agent_scope, params.confirm_project_agents, discovery, [worker, critic],
        )
        await self._require_execution_approval(params)

        details = WorkflowDetails(
            goal=params.goal,
            worker_agent=worker.name,
            critic_agent=critic.name,
            agent_scope=params.agent_scope,
            max_worker_attempts=params.max_worker_attempts,
            tasks=tasks,
            planning=planning,
        )
        run = _WorkflowRun(
            params=params,
            worker=worker,
            critic=critic,
            tasks=tasks,
            cancel_event=cancel_event,
        )
        logger.info(
            "Workflow started: %d task(s) in %d wave(s), worker=%s critic=%s",
            len(tasks), len(params.waves), worker.name, critic.name,
        )
        self._publish(WorkflowStarted(
            goal=params.goal, total_tasks=len(tasks), wave_count=len(params.waves),
        ))

        await self._run_waves(run)

        details.finished_at = time.time()
        counts = status_counts(tasks)
        is_error = counts[TaskStatus.FAILED] > 0 or counts[TaskStatus.BLOCKED] > 0
        text = workflow_summary_text(tasks)
        logger.info("%s", text.replace("\n", " | "))
        self._publish(WorkflowFinished(is_error=is_error, summary=text))
        return WorkflowResult(text=text, is_error=is_error, details=details)

    async def _run_waves(self, run: _WorkflowRun) -> None:
        params = run.params
        concurrency = max(1, min(params.max_concurrency, MAX_CONCURRENCY_CEILING))

        async def _run_task(task: TaskRuntime, _index: int) -> None:
            await self._run_single_task(run, task)

        try:
            for wave_index, wave in enumerate(params.waves):
                wave_tasks = [task for task in run.tasks if task.wave_index == wave_index]
                wave_name = wave.display_name(wave_index)
                logger.info(
                    "Wave %d/%d (%s): %d task(s)",
                    wave_index + 1, len(params.waves), wave_name, len(wave_tasks),
                )
                await map_with_concurrency(wave_tasks, concurrency, _run_task)

                wave_failed = any(
                    task.status in (TaskStatus.FAILED, TaskStatus.BLOCKED)
                    for task in wave_tasks
                )
                halted = wave_failed and params.fail_fast
                self._publish(WaveFinished(
                    wave_index=wave_index,
                    wave_name=wave_name,
                    statuses={task.id: task.status.value for task in wave_tasks},
                    halted=halted,
                ))
                if halted:
                    skipped = self._skip_pending_after(run.tasks, wave_index)
                    logger.info(
                        "Fail-fast: %s had failures; skipped %d later task(s)",
                        wave_name, skipped,
                    )
                    break
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Workflow aborted by infrastructure failure: %s", message, exc_info=True)
            for task in run.tasks:
                if task.status == TaskStatus.PENDING or task.status.is_running:
                    task.error = message
                    self._set_status(task, TaskStatus.FAILED, message)

    def _skip_pending_after(self, tasks: list[TaskRuntime], wave_index: int) -> int:
        skipped = 0
        for task in tasks:
            if task.wave_index > wave_index and task.status == TaskStatus.PENDING:
                self._set_status(task, TaskStatus.SKIPPED, "skipped by fail-fast")
                skipped += 1
        return skipped

    # ── Per-task worker → critic loop ─────────────────────────

    async def _run_single_task(self, run: _WorkflowRun, task: TaskRuntime) -> None:
        params = run.params
        max_attempts = params.max_worker_attempts
        feedback: list[str] = []

        for attempt in range(1, max_attempts + 1):
            task.attempt = attempt
            task.error = None
            self._set_status(
                task, TaskStatus.RUNNING_WORKER,
                f"Worker {task.id} attempt {attempt}/{max_attempts}",
            )

            worker_run = await self._runner.run_agent_task(
                run.worker,
                WORKER_TASK_PROMPT,
                task.cwd,
                cancel_event=run.cancel_event,
                on_progress=self._progress_listener(task),
                system_prompt_override=with_instructions(
                    build_worker_prompt(params.goal, task, feedback),
                    run.worker.instructions,
                ),
            )
            self._record_run(task, worker_run)
            task.worker_agent_source = worker_run.source

            if worker_run.exit_code != 0:
                error = worker_run.stderr.strip() or "worker exited with non-zero code"
                if self._attempt_failed(task, error, attempt, max_attempts):
                    feedback = [error]
                    continue
                return

            worker_report = parse_worker_report(worker_run.final_text)
            if worker_report is None:
                error = "worker output did not match required JSON schema"
                if self._attempt_failed(task, error, attempt, max_attempts):
                    feedback = [error, STRICT_JSON_FEEDBACK]
                    continue
                return

            task.worker_summary = worker_report.summary
            task.files_touched = worker_report.files_touched
            task.blockers = worker_report.blockers

            self._set_status(task, TaskStatus.RUNNING_CRITIC, f"Critic reviewing {task.id}")
            critic_run = await self._runner.run_agent_task(
                run.critic,
                CRITIC_TASK_PROMPT,
                task.cwd,
                cancel_event=run.cancel_event,
                system_prompt_override=with_instructions(
                    build_critic_prompt(
                        params.goal, task, worker_run.final_text,
                        self.config.critic_output_limit,
                    ),
                    run.critic.instructions,
                ),
            )
            self._record_run(task, critic_run)
            task.critic_agent_source = critic_run.source

            if critic_run.exit_code != 0:
                error = critic_run.stderr.strip() or "critic exited with non-zero code"
                if self._attempt_failed(task, error, attempt, max_attempts):
                    feedback = [error]
                    continue
                return

            critic_report = parse_critic_report(critic_run.final_text)
            if critic_report is None:
                error = "critic output did not match required JSON schema"
                if self._attempt_failed(task, error, attempt, max_attempts):
                    feedback = [error, STRICT_JSON_FEEDBACK]
                    continue
                return

            task.critic_decision = critic_report.decision
            task.issues = critic_report.issues

            if critic_report.decision == "approve":
                if worker_report.status == "blocked":
                    task.error = (
                        "; ".join(worker_report.blockers)
                        or "blocked without explicit blocker details"
                    )
                    self._set_status(task, TaskStatus.BLOCKED, task.error)
                else:
                    self._set_status(task, TaskStatus.COMPLETED, worker_report.summary)
                return

            if attempt < max_attempts:
                feedback = [
                    *(critic_report.issues or [critic_report.rationale]),
                    *critic_report.revision_instructions,
                ]
                feedback = [item for item in feedback if item] or [EMPTY_REVISION_FEEDBACK]
                logger.info(
                    "Critic requested revision of %s (attempt %d/%d)",
                    task.id, attempt, max_attempts,
                )
                continue

            task.error = "; ".join(critic_report.issues) or critic_report.rationale
            self._set_status(task, TaskStatus.FAILED, task.error)
            return

    def _attempt_failed(
        self,
        task: TaskRuntime,
        error: str,
        attempt: int,
        max_attempts: int,
    ) -> bool:
        """Record *error*; return True when another attempt remains."""
        task.error = error
        if attempt < max_attempts:
            logger.info(
                "Task %s attempt %d/%d failed, retrying: %s",
                task.id, attempt, max_attempts, error,
            )
            return True
        self._set_status(task, TaskStatus.FAILED, error)
        return False

    @staticmethod
    def _record_run(task: TaskRuntime, result: AgentRunResult) -> None:
        task.usage = task.usage + result.usage
        task.tool_calls += result.tool_calls

    def _progress_listener(self, task: TaskRuntime) -> ProgressCallback:
        def _listener(progress: AgentProgress) -> None:
            self._publish(TaskProgress(
                task_id=task.id, phase=progress.phase, text=progress.text,
            ))
        return _listener

    def _set_status(self, task: TaskRuntime, status: TaskStatus, message: str = "") -> None:
        previous = transition(task, status)
        if status in (TaskStatus.COMPLETED, TaskStatus.BLOCKED, TaskStatus.FAILED):
            logger.info(
                "Task %s %s after %d attempt(s)", task.id, status.value, task.attempt,
            )
        self._publish(TaskStatusChanged(
            task_id=task.id,
            old_status=previous.value,
            new_status=status.value,
            attempt=task.attempt,
            message=message,
        ))

    def _publish(self, event: WorkflowEvent) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)

    # ── Agents and approval gates ─────────────────────────────

    def _discover(self, cwd: str, scope: AgentScope) -> AgentDiscovery:
        return discover_agents(
            cwd,
            scope,
            user_agents_dir=self.config.user_agents_dir,
            project_agents_dirname=self.config.project_agents_dirname,
        )

    @staticmethod
    def _resolve_agents(discovery: AgentDiscovery, **names: str) -> list[AgentConfig]:
        resolved: list[AgentConfig] = []
        missing: dict[str, str] = {}
        for role, name in names.items():
            agent = get_agent_by_name(discovery.agents, name)
            if agent is None:
                missing[role] = name
            else:
                resolved.append(agent)
        if missing:
            raise AgentNotFoundError(
                missing,
                list_agent_names(discovery.agents),
            )
        return resolved

    async def _confirm_project_agents(
        self,
        scope: AgentScope,
        should_confirm: bool,
        discovery: AgentDiscovery,
        agents: list[AgentConfig],
    ) -> None:
        if self._confirm is None or not should_confirm:
            return
        if scope not in (AgentScope.PROJECT, AgentScope.BOTH):
            return
        project_agents = [a for a in agents if a.source == AgentSource.PROJECT]
        if not project_agents:
            return

        names = ", ".join(f"{a.name} ({a.source.value})" for a in project_agents)
        approved = await self._confirm(
            "Approve project-local agents?",
            f"Agents: {names}\nsource dir: {discovery.project_agents_dir or 'unknown'}",
        )
        if not approved:
            raise ApprovalDeniedError("Cancelled by user: project-local agents not approved.")

    async def _require_execution_approval(self, params: WorkflowParams) -> None:
        if params.execution_approved:
            return
        if self._confirm is None:
            raise ApprovalDeniedError(
                "Execution approval required. Re-run with "
                "execution_approved=true for non-interactive mode."
            )
        approved = await self._confirm(
            "Approve workflow execution?",
            f"Goal: {params.goal}\n\n{format_wave_summary(params)}",
        )
        if not approved:
            raise ApprovalDeniedError("Execution cancelled: plan not approved by user.")

    # ── Plan and run ──────────────────────────────────────────

    async def _plan_and_execute(
        self,
        params: PlanAndRunParams,
        cwd: str,
        cancel_event: asyncio.Event,
    ) -> WorkflowResult:
        discovery = self._discover(cwd, params.agent_scope)
        planner, worker, critic = self._resolve_agents(
            discovery,
            planner=params.planner_agent,
            worker=params.worker_agent,
            critic=params.critic_agent,
        )
        await self._confirm_project_agents(
            params.agent_scope, params.confirm_project_agents, discovery,
            [planner, worker, critic],
        )

        waves = None
        feedback: list[str] = []
        usage = UsageSummary()
        used_attempts = 0

        for attempt in range(1, params.planning_attempts + 1):
            used_attempts = attempt
            logger.info("Planner attempt %d/%d", attempt, params.planning_attempts)
            self._publish(PlannerAttempt(attempt=attempt, max_attempts=params.planning_attempts))

            planner_run = await self._runner.run_agent_task(
                planner,
                PLANNER_TASK_PROMPT,
                cwd,
                cancel_event=cancel_event,
                system_prompt_override=with_instructions(
                    build_planner_prompt(
                        params.goal,
                        params.max_waves,
                        params.max_tasks_per_wave,
                        params.planning_context,
                        params.planning_constraints,
                        feedback,
                    ),
                    planner.instructions,
                ),
            )
            usage = usage + planner_run.usage

            if planner_run.exit_code != 0:
                feedback = [planner_run.stderr.strip() or "planner exited with non-zero code"]
                continue

            waves = parse_planned_waves(
                planner_run.final_text, params.max_waves, params.max_tasks_per_wave,
            )
            if waves is not None:
                break
            feedback = list(PLANNER_INVALID_FEEDBACK)

        if waves is None:
            logger.warning("Planner gave no valid plan after %d attempt(s)", used_attempts)
            return WorkflowResult(
                text="Planner failed to produce a valid workflow plan after retries.",
                is_error=True,
            )

        return await self._execute(
            WorkflowParams(
                goal=params.goal,
                waves=waves,
                worker_agent=worker.name,
                critic_agent=critic.name,
                max_concurrency=params.max_concurrency,
                max_worker_attempts=params.max_worker_attempts,
                fail_fast=params.fail_fast,
                agent_scope=params.agent_scope,
                confirm_project_agents=False,
                execution_approved=params.execution_approved,
            ),
            cwd,
            cancel_event,
            PlanningDetails(planner_agent=planner.name, attempts=used_attempts, usage=usage),
            discovery=discovery,
        )
