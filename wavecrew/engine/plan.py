"""Plan wire-schema parsing and pre-flight validation.

parse_workflow_params() turns the JSON tool/CLI input into
WorkflowParams, enforcing the wire bounds. validate_workflow() and
create_task_runtimes() form the pre-flight gate that runs before any
agent is spawned: task ceiling, unique ids, and cwd containment.
"""
from __future__ import annotations

import os
from typing import Any

from .config import (
    MAX_CONCURRENCY_CEILING,
    MAX_TASKS,
    MAX_TASKS_PER_WAVE,
    MAX_WAVES,
    MAX_WORKER_ATTEMPTS_CEILING,
)
from .errors import (
    CwdContainmentError,
    DuplicateTaskIdError,
    PlanValidationError,
    TaskLimitExceededError,
)
from .models import AgentScope, TaskRuntime, TaskSpec, Wave, WorkflowParams

_ENTRY_MAX = 500


def _require_str(value: Any, path: str, min_len: int, max_len: int) -> str:
    if not isinstance(value, str):
        raise PlanValidationError(f"{path} must be a string")
    if not min_len <= len(value) <= max_len:
        raise PlanValidationError(
            f"{path} must be {min_len}-{max_len} characters (got {len(value)})"
        )
    return value


def _str_list(
    value: Any,
    path: str,
    *,
    min_items: int = 0,
    max_items: int,
) -> tuple[str, ...]:
    if value is None and min_items == 0:
        return ()
    if not isinstance(value, list):
        raise PlanValidationError(f"{path} must be a list of strings")
    if not min_items <= len(value) <= max_items:
        raise PlanValidationError(
            f"{path} must have {min_items}-{max_items} entries (got {len(value)})"
        )
    return tuple(
        _require_str(entry, f"{path}[{i}]", 1, _ENTRY_MAX)
        for i, entry in enumerate(value)
    )


def _int_in_range(value: Any, path: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PlanValidationError(f"{path} must be an integer")
    if not low <= value <= high:
        raise PlanValidationError(f"{path} must be between {low} and {high}")
    return value


def _parse_task(raw: Any, path: str) -> TaskSpec:
    if not isinstance(raw, dict):
        raise PlanValidationError(f"{path} must be an object")
    cwd = raw.get("cwd")
    return TaskSpec(
        id=_require_str(raw.get("id"), f"{path}.id", 1, 80),
        objective=_require_str(raw.get("objective"), f"{path}.objective", 5, 2000),
        acceptance_criteria=_str_list(
            raw.get("acceptanceCriteria"), f"{path}.acceptanceCriteria",
            min_items=1, max_items=20,
        ),
        files=_str_list(raw.get("files"), f"{path}.files", max_items=50),
        constraints=_str_list(raw.get("constraints"), f"{path}.constraints", max_items=20),
        context=_str_list(raw.get("context"), f"{path}.context", max_items=20),
        cwd=_require_str(cwd, f"{path}.cwd", 1, 500) if cwd is not None else None,
    )


def parse_waves(raw_waves: Any) -> list[Wave]:
    """Parse and bound-check the ``waves`` array of a plan."""
    if not isinstance(raw_waves, list) or not 1 <= len(raw_waves) <= MAX_WAVES:
        raise PlanValidationError(f"waves must be a list of 1-{MAX_WAVES} waves")

    waves: list[Wave] = []
    for wave_index, raw_wave in enumerate(raw_waves):
        path = f"waves[{wave_index}]"
        if not isinstance(raw_wave, dict):
            raise PlanValidationError(f"{path} must be an object")
        raw_tasks = raw_wave.get("tasks")
        if not isinstance(raw_tasks, list) or not 1 <= len(raw_tasks) <= MAX_TASKS_PER_WAVE:
            raise PlanValidationError(
                f"{path}.tasks must be a list of 1-{MAX_TASKS_PER_WAVE} tasks"
            )
        name = raw_wave.get("name")
        if name is not None:
            name = _require_str(name, f"{path}.name", 1, 120)
        waves.append(Wave(
            tasks=tuple(
                _parse_task(raw_task, f"{path}.tasks[{task_index}]")
                for task_index, raw_task in enumerate(raw_tasks)
            ),
            name=name,
        ))
    return waves


def parse_workflow_params(data: Any, **overrides: Any) -> WorkflowParams:
    """Build WorkflowParams from wire JSON.

    Keyword *overrides* (snake_case field names) win over the
    document's own values; None overrides are ignored.
    """
    if not isinstance(data, dict):
        raise PlanValidationError("Plan must be a JSON object")

    fields: dict[str, Any] = {
        "worker_agent": data.get("workerAgent"),
        "critic_agent": data.get("criticAgent"),
        "max_concurrency": data.get("maxConcurrency"),
        "max_worker_attempts": data.get("maxWorkerAttempts"),
        "fail_fast": data.get("failFast"),
        "agent_scope": data.get("agentScope"),
        "confirm_project_agents": data.get("confirmProjectAgents"),
        "execution_approved": data.get("executionApproved"),
    }
    fields.update({k: v for k, v in overrides.items() if v is not None})
    fields = {k: v for k, v in fields.items() if v is not None}

    if "max_concurrency" in fields:
        _int_in_range(fields["max_concurrency"], "maxConcurrency", 1, MAX_CONCURRENCY_CEILING)
    if "max_worker_attempts" in fields:
        _int_in_range(
            fields["max_worker_attempts"], "maxWorkerAttempts", 1, MAX_WORKER_ATTEMPTS_CEILING
        )
    if "agent_scope" in fields:
        try:
            fields["agent_scope"] = AgentScope(fields["agent_scope"])
        except ValueError:
            raise PlanValidationError(
                f"agentScope must be one of user, project, both (got {fields['agent_scope']!r})"
            ) from None
    for flag in ("fail_fast", "confirm_project_agents", "execution_approved"):
        if flag in fields and not isinstance(fields[flag], bool):
            raise PlanValidationError(f"{flag} must be a boolean")

    return WorkflowParams(
        goal=_require_str(data.get("goal"), "goal", 5, 3000),
        waves=parse_waves(data.get("waves")),
        **fields,
    )


def validate_workflow(params: WorkflowParams, max_tasks: int = MAX_TASKS) -> None:
    """Pre-flight check: task ceiling and globally unique ids.

    Raises a PlanValidationError subclass; nothing has run yet.
    """
    total = params.total_tasks
    if total > max_tasks:
        raise TaskLimitExceededError(total, max_tasks)

    seen: set[str] = set()
    for wave in params.waves:
        for task in wave.tasks:
            if task.id in seen:
                raise DuplicateTaskIdError(task.id)
            seen.add(task.id)


def resolve_task_cwd(base_cwd: str, requested_cwd: str | None) -> str:
    """Resolve a task cwd against the workflow root.

    Relative paths are joined to the root; the result (absolute or
    relative) must stay inside the root.
    """
    resolved_base = os.path.abspath(base_cwd)
    if not requested_cwd:
        return resolved_base

    resolved = os.path.abspath(os.path.join(resolved_base, requested_cwd))
    relative = os.path.relpath(resolved, resolved_base)
    if (
        relative == os.pardir
        or relative.startswith(os.pardir + os.sep)
        or os.path.isabs(relative)
    ):
        raise CwdContainmentError(requested_cwd, resolved_base)
    return resolved


def create_task_runtimes(params: WorkflowParams, base_cwd: str) -> list[TaskRuntime]:
    """Build one fresh TaskRuntime per task, resolving every cwd first."""
    tasks: list[TaskRuntime] = []
    for wave_index, wave in enumerate(params.waves):
        wave_name = wave.display_name(wave_index)
        for spec in wave.tasks:
            tasks.append(TaskRuntime(
                id=spec.id,
                objective=spec.objective,
                wave_index=wave_index,
                wave_name=wave_name,
                cwd=resolve_task_cwd(base_cwd, spec.cwd),
                acceptance_criteria=list(spec.acceptance_criteria),
                files=list(spec.files),
                constraints=list(spec.constraints),
                context=list(spec.context),
            ))
    return tasks


def format_wave_summary(params: WorkflowParams, preview: int = 4) -> str:
    """One line per wave: name, task count and the first few ids."""
    lines: list[str] = []
    for index, wave in enumerate(params.waves):
        ids = [task.id for task in wave.tasks[:preview]]
        overflow = len(wave.tasks) - preview
        task_preview = ", ".join(ids)
        if overflow > 0:
            task_preview += f" +{overflow} more"
        line = f"{wave.display_name(index)}: {len(wave.tasks)} task(s)"
        if task_preview:
            line += f" [{task_preview}]"
        lines.append(line)
    return "\n".join(lines)
