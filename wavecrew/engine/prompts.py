"""Prompt builders for the planner, worker and critic roles.

Every prompt opens with a numbered block of mandatory rules that pin
the JSON schema the engine will parse, followed by the task packet.
The agent's own instructions are appended by the caller.
"""
from __future__ import annotations

from .models import TaskRuntime

WORKER_SCHEMA = (
    '{"status":"completed|blocked","summary":"string","actions":["string"],'
    '"filesTouched":["string"],"blockers":["string"],"notes":["string"]}'
)
CRITIC_SCHEMA = (
    '{"decision":"approve|revise","rationale":"string","issues":["string"],'
    '"revisionInstructions":["string"]}'
)
PLANNER_SCHEMA = (
    '{"waves":[{"name":"string","tasks":[{"id":"string","objective":"string",'
    '"acceptanceCriteria":["string"],"files":["string"],"constraints":["string"],'
    '"context":["string"],"cwd":"string"}]}]}'
)

WORKER_TASK_PROMPT = "Execute the task now and return JSON only."
CRITIC_TASK_PROMPT = "Review the worker output and return JSON only."
PLANNER_TASK_PROMPT = "Create a wave-based plan now and return JSON only."


def _bullets(items: list[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in (items or [empty]))


def truncate_for_prompt(text: str, limit: int = 7000) -> str:
    """Cut *text* to *limit* characters, noting how much was dropped."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n[truncated {len(text) - limit} characters]"


def build_worker_prompt(
    goal: str,
    task: TaskRuntime,
    revision_feedback: list[str],
) -> str:
    lines = [
        "MANDATORY RULES (MUST FOLLOW EXACTLY):",
        "1) You MUST execute only the provided task. Do NOT decompose into unrelated work.",
        "2) You MUST honor every acceptance criterion and constraint.",
        "3) You MUST return ONLY valid JSON with this schema:",
        WORKER_SCHEMA,
        '4) If acceptance criteria cannot be met, status MUST be "blocked" and blockers MUST explain why.',
        "5) Do NOT include markdown, prose outside JSON, or code fences.",
        "",
        f"GLOBAL GOAL: {goal}",
        f"TASK ID: {task.id}",
        f"TASK OBJECTIVE: {task.objective}",
        f"ACCEPTANCE CRITERIA: {_bullets(task.acceptance_criteria, 'none')}",
        f"CONSTRAINTS: {_bullets(task.constraints, 'none')}",
        f"FOCUS FILES: {_bullets(task.files, 'none specified')}",
        f"TASK CONTEXT: {_bullets(task.context, 'none')}",
    ]
    if revision_feedback:
        lines.extend(["", "REVISION FEEDBACK FROM CRITIC (MUST ADDRESS):"])
        lines.extend(f"- {item}" for item in revision_feedback)
    return "\n".join(lines)


def build_critic_prompt(
    goal: str,
    task: TaskRuntime,
    worker_output: str,
    output_limit: int = 7000,
) -> str:
    return "\n".join([
        "MANDATORY RULES (MUST FOLLOW EXACTLY):",
        "1) You MUST evaluate worker output against objective, acceptance criteria, and constraints.",
        "2) You MUST return ONLY valid JSON with this schema:",
        CRITIC_SCHEMA,
        '3) decision MUST be "approve" only when acceptance criteria are fully met.',
        '4) If worker output is malformed or incomplete, decision MUST be "revise".',
        "5) Do NOT include markdown, prose outside JSON, or code fences.",
        "",
        f"GLOBAL GOAL: {goal}",
        f"TASK ID: {task.id}",
        f"TASK OBJECTIVE: {task.objective}",
        f"ACCEPTANCE CRITERIA: {_bullets(task.acceptance_criteria, 'none')}",
        f"CONSTRAINTS: {_bullets(task.constraints, 'none')}",
        "",
        "WORKER OUTPUT TO REVIEW:",
        truncate_for_prompt(worker_output, output_limit),
    ])


def build_planner_prompt(
    goal: str,
    max_waves: int,
    max_tasks_per_wave: int,
    planning_context: list[str],
    planning_constraints: list[str],
    revision_feedback: list[str],
) -> str:
    lines = [
        "MANDATORY RULES (MUST FOLLOW EXACTLY):",
        "1) You MUST return ONLY valid JSON. No markdown. No code fences.",
        "2) Top-level output MUST match this schema exactly:",
        PLANNER_SCHEMA,
        "3) Every task MUST include id, objective, and at least one acceptance criterion.",
        "4) Tasks inside the same wave MUST be independently executable in parallel.",
        "5) Cross-task dependencies MUST be represented by later waves.",
        f"6) You MUST return between 1 and {max_waves} waves, and each wave MUST "
        f"have between 1 and {max_tasks_per_wave} tasks.",
        "",
        f"GOAL: {goal}",
        f"PLANNING CONTEXT: {_bullets(planning_context, 'none')}",
        f"PLANNING CONSTRAINTS: {_bullets(planning_constraints, 'none')}",
    ]
    if revision_feedback:
        lines.extend(["", "REVISION FEEDBACK (MUST FIX):"])
        lines.extend(f"- {item}" for item in revision_feedback)
    return "\n".join(lines)


def with_instructions(composed: str, instructions: str) -> str:
    """Append an agent's own instructions after the composed prompt."""
    if not instructions.strip():
        return composed
    return f"{composed}\n\n{instructions}"
