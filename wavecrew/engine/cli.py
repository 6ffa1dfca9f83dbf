"""CLI entry point for the workflow engine.

Usage:
    wavecrew run plan.json
    wavecrew run plan.json --yes --max-concurrency 2
    wavecrew plan "Add input validation to the signup form" --scope both
    wavecrew agents --scope both
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from .agents import discover_agents
from .config import WorkflowConfig
from .engine import WorkflowEngine
from .errors import PlanValidationError
from .event_bus import EventBus
from .events import TaskStatusChanged, WaveFinished
from .models import AgentScope, PlanAndRunParams, TaskStatus, WorkflowResult
from .plan import parse_workflow_params
from .summary import usage_summary_text
from .yaml_config import DefaultsConfig, load_yaml_config

logger = logging.getLogger(__name__)

console = Console()

_STATUS_STYLES = {
    TaskStatus.COMPLETED: "green",
    TaskStatus.BLOCKED: "yellow",
    TaskStatus.FAILED: "red",
    TaskStatus.SKIPPED: "dim",
}


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config, defaults = _load_config(args.config)
    level = logging.DEBUG if args.verbose else getattr(
        logging, config.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    cwd = os.path.abspath(args.cwd or os.getcwd())

    if args.command == "agents":
        _list_agents(config, cwd, args.scope or defaults.agent_scope.value)
        return

    if args.command == "run":
        coro = _run_plan_file(args, config, defaults, cwd)
    else:
        coro = _plan_and_run(args, config, defaults, cwd)

    result = asyncio.run(coro)
    if result is None:
        sys.exit(1)
    _render_result(result)
    if args.json_output:
        Path(args.json_output).write_text(
            json.dumps(result.to_dict(), indent=2), encoding="utf-8"
        )
    if result.is_error:
        sys.exit(1)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wavecrew",
        description="Wave-based worker/critic orchestration of coding agents",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file layered over WAVECREW_* env vars",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Project root for agents (default: current dir)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute an explicit wave plan (JSON)")
    run.add_argument("plan_file", help="Path to the plan JSON document")
    _add_execution_args(run)

    plan = sub.add_parser("plan", help="Let the planner agent propose waves, then run them")
    plan.add_argument("goal", help="High-level goal for the planner")
    plan.add_argument("--planner", default=None, help="Planner agent name")
    plan.add_argument(
        "--context", action="append", default=[],
        help="Planning context line (repeatable)",
    )
    plan.add_argument(
        "--constraint", action="append", default=[],
        help="Planning constraint line (repeatable)",
    )
    plan.add_argument("--max-waves", type=int, default=6, help="1-12 (default: 6)")
    plan.add_argument(
        "--max-tasks-per-wave", type=int, default=6, help="1-20 (default: 6)",
    )
    plan.add_argument(
        "--planning-attempts", type=int, default=2, help="1-3 (default: 2)",
    )
    _add_execution_args(plan)

    agents = sub.add_parser("agents", help="List discovered agent definitions")
    agents.add_argument(
        "--scope", choices=[s.value for s in AgentScope], default=None,
        help="Which agent directories to search",
    )
    return parser


def _add_execution_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--worker", default=None, help="Worker agent name")
    parser.add_argument("--critic", default=None, help="Critic agent name")
    parser.add_argument(
        "--scope", choices=[s.value for s in AgentScope], default=None,
        help="Which agent directories to search",
    )
    parser.add_argument(
        "--max-concurrency", type=int, default=None,
        help="Tasks in flight per wave, 1-8",
    )
    parser.add_argument(
        "--max-attempts", type=int, default=None,
        help="Worker attempts per task, 1-3",
    )
    parser.add_argument(
        "--no-fail-fast", action="store_true",
        help="Keep running later waves after a failed or blocked task",
    )
    parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip the execution approval prompt",
    )
    parser.add_argument(
        "--json-output", default=None,
        help="Also write the full result as JSON to this path",
    )


def _load_config(path: str | None) -> tuple[WorkflowConfig, DefaultsConfig]:
    config = WorkflowConfig.from_env()
    if path is None:
        return config, DefaultsConfig()
    loaded = load_yaml_config(path, base=config)
    return loaded.engine, loaded.defaults


async def confirm(question: str, detail: str) -> bool:
    """Approval gate backed by an interactive terminal prompt."""
    console.print(Panel(escape(detail), title=question, expand=False))
    return await asyncio.to_thread(Confirm.ask, question, console=console, default=False)


async def _with_engine(config: WorkflowConfig, call) -> WorkflowResult:
    """Run *call(engine, cancel_event)* with live status output and Ctrl-C handling."""
    bus = EventBus(maxsize=config.event_queue_size)
    engine = WorkflowEngine(config=config, confirm=confirm, event_bus=bus)
    cancel_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _request_cancel, cancel_event)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable; Ctrl-C will abort immediately")

    printer = asyncio.create_task(_print_events(bus))
    try:
        return await call(engine, cancel_event)
    finally:
        bus.close()
        await printer
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def _request_cancel(cancel_event: asyncio.Event) -> None:
    if not cancel_event.is_set():
        console.print("[bold red]Cancelling: stopping running agents...[/]")
    cancel_event.set()


async def _print_events(bus: EventBus) -> None:
    async for event in bus.consume():
        if isinstance(event, TaskStatusChanged):
            style = _STATUS_STYLES.get(TaskStatus(event.new_status), "cyan")
            console.print(
                f"[{style}]{escape(event.task_id)}[/] {event.new_status}"
                + (f": {escape(event.message)}" if event.message else "")
            )
        elif isinstance(event, WaveFinished) and event.halted:
            console.print(f"[red]{escape(event.wave_name)} failed; later waves skipped[/]")


async def _run_plan_file(
    args: argparse.Namespace,
    config: WorkflowConfig,
    defaults: DefaultsConfig,
    cwd: str,
) -> WorkflowResult | None:
    try:
        data = json.loads(Path(args.plan_file).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Cannot read plan {escape(args.plan_file)}: {escape(str(exc))}[/]")
        return None
    if isinstance(data, dict):
        data.setdefault("workerAgent", defaults.worker_agent)
        data.setdefault("criticAgent", defaults.critic_agent)
        data.setdefault("agentScope", defaults.agent_scope.value)
        data.setdefault("failFast", defaults.fail_fast)
        data.setdefault("confirmProjectAgents", defaults.confirm_project_agents)
        data.setdefault("maxConcurrency", config.max_concurrency)
        data.setdefault("maxWorkerAttempts", config.max_worker_attempts)

    try:
        params = parse_workflow_params(
            data,
            worker_agent=args.worker,
            critic_agent=args.critic,
            agent_scope=args.scope,
            max_concurrency=args.max_concurrency,
            max_worker_attempts=args.max_attempts,
            fail_fast=False if args.no_fail_fast else None,
            execution_approved=True if args.yes else None,
        )
    except PlanValidationError as exc:
        console.print(f"[red]Invalid plan: {escape(str(exc))}[/]")
        return None

    return await _with_engine(
        config,
        lambda engine, cancel_event: engine.execute_workflow(
            params, cwd, cancel_event=cancel_event,
        ),
    )


async def _plan_and_run(
    args: argparse.Namespace,
    config: WorkflowConfig,
    defaults: DefaultsConfig,
    cwd: str,
) -> WorkflowResult | None:
    params = PlanAndRunParams(
        goal=args.goal,
        planner_agent=args.planner or defaults.planner_agent,
        planning_context=list(args.context),
        planning_constraints=list(args.constraint),
        max_waves=max(1, min(args.max_waves, 12)),
        max_tasks_per_wave=max(1, min(args.max_tasks_per_wave, 20)),
        planning_attempts=max(1, min(args.planning_attempts, 3)),
        worker_agent=args.worker or defaults.worker_agent,
        critic_agent=args.critic or defaults.critic_agent,
        max_concurrency=args.max_concurrency or config.max_concurrency,
        max_worker_attempts=args.max_attempts or config.max_worker_attempts,
        fail_fast=defaults.fail_fast and not args.no_fail_fast,
        agent_scope=AgentScope(args.scope) if args.scope else defaults.agent_scope,
        confirm_project_agents=defaults.confirm_project_agents,
        execution_approved=args.yes,
    )
    return await _with_engine(
        config,
        lambda engine, cancel_event: engine.plan_and_execute(
            params, cwd, cancel_event=cancel_event,
        ),
    )


def _list_agents(config: WorkflowConfig, cwd: str, scope: str) -> None:
    discovery = discover_agents(
        cwd,
        AgentScope(scope),
        user_agents_dir=config.user_agents_dir,
        project_agents_dirname=config.project_agents_dirname,
    )
    if not discovery.agents:
        console.print("No agents found.")
        return
    table = Table(title=f"Agents ({scope})")
    table.add_column("Name", style="bold")
    table.add_column("Source")
    table.add_column("Model")
    table.add_column("Description")
    for agent in discovery.agents:
        table.add_row(
            escape(agent.name),
            agent.source.value,
            escape(agent.model or "-"),
            escape(agent.description),
        )
    console.print(table)


def _render_result(result: WorkflowResult) -> None:
    details = result.details
    if details is not None and details.tasks:
        table = Table(title=escape(details.goal))
        table.add_column("Task", style="bold")
        table.add_column("Wave")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Tools", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Detail")
        for task in details.tasks:
            style = _STATUS_STYLES.get(task.status, "")
            table.add_row(
                escape(task.id),
                escape(task.wave_name),
                f"[{style}]{task.status.value}[/]" if style else task.status.value,
                str(task.attempt),
                str(task.tool_calls),
                f"${task.usage.total_cost:.4f}",
                escape(task.error or task.worker_summary or ""),
            )
        console.print(table)
        if details.planning is not None:
            console.print(
                f"Planner {escape(details.planning.planner_agent)}: "
                f"{details.planning.attempts} attempt(s), "
                f"{usage_summary_text(details.planning.usage)}"
            )

    style = "red" if result.is_error else ("yellow" if result.cancelled else "green")
    console.print(f"[{style}]{escape(result.text)}[/]")
