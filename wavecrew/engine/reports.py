"""Recover structured reports from free-form model output.

Agents are told to answer with bare JSON but regularly wrap it in
prose or code fences. extract_json_candidate() tries a few layered
candidates; the parse_* functions then check the shape. Every parser
returns None on failure instead of raising, so the retry loop can
treat "no JSON" and "wrong shape" the same way.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from .models import (
    CRITIC_DECISIONS,
    WORKER_STATUSES,
    CriticReport,
    TaskSpec,
    Wave,
    WorkerReport,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def extract_json_candidate(raw: str) -> Any | None:
    """Return the first JSON value found in *raw*, or None.

    Candidates, in order: the trimmed text itself, the body of the
    first fenced code block, and the span from the first ``{`` to the
    last ``}``.
    """
    trimmed = (raw or "").strip()
    candidates = [trimmed]

    fence = _FENCE_RE.search(trimmed)
    if fence and fence.group(1):
        candidates.append(fence.group(1).strip())

    first_brace = trimmed.find("{")
    last_brace = trimmed.rfind("}")
    if first_brace >= 0 and last_brace > first_brace:
        candidates.append(trimmed[first_brace:last_brace + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        # Deep nesting and oversized ints fail outside JSONDecodeError.
        except (ValueError, RecursionError):
            continue
    return None


def normalize_string_list(value: Any) -> list[str]:
    """Keep string entries, trimmed, dropping empties. Non-lists give []."""
    if not isinstance(value, list):
        return []
    return [
        entry.strip() for entry in value
        if isinstance(entry, str) and entry.strip()
    ]


def _trimmed_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_worker_report(raw: str) -> WorkerReport | None:
    """Parse a worker's final text into a WorkerReport, or None."""
    data = extract_json_candidate(raw)
    if not isinstance(data, dict):
        return None

    status = data.get("status")
    summary = _trimmed_str(data.get("summary"))
    if status not in WORKER_STATUSES or not summary:
        return None

    return WorkerReport(
        status=status,
        summary=summary,
        actions=normalize_string_list(data.get("actions")),
        files_touched=normalize_string_list(data.get("filesTouched")),
        blockers=normalize_string_list(data.get("blockers")),
        notes=normalize_string_list(data.get("notes")),
    )


def parse_critic_report(raw: str) -> CriticReport | None:
    """Parse a critic's final text into a CriticReport, or None."""
    data = extract_json_candidate(raw)
    if not isinstance(data, dict):
        return None

    decision = data.get("decision")
    rationale = _trimmed_str(data.get("rationale"))
    if decision not in CRITIC_DECISIONS or not rationale:
        return None

    return CriticReport(
        decision=decision,
        rationale=rationale,
        issues=normalize_string_list(data.get("issues")),
        revision_instructions=normalize_string_list(data.get("revisionInstructions")),
    )


def parse_planned_waves(
    raw: str,
    max_waves: int,
    max_tasks_per_wave: int,
) -> list[Wave] | None:
    """Parse planner output into waves, or None if anything is off.

    Accepts ``{"waves": [...]}`` or a bare list of waves. A single
    invalid task or duplicate id rejects the whole plan.
    """
    data = extract_json_candidate(raw)
    if isinstance(data, list):
        raw_waves = data
    elif isinstance(data, dict) and isinstance(data.get("waves"), list):
        raw_waves = data["waves"]
    else:
        return None

    if not raw_waves or len(raw_waves) > max_waves:
        logger.debug("Planner returned %d wave(s); limit %d", len(raw_waves), max_waves)
        return None

    seen_ids: set[str] = set()
    waves: list[Wave] = []
    for wave_index, raw_wave in enumerate(raw_waves):
        if not isinstance(raw_wave, dict):
            return None
        raw_tasks = raw_wave.get("tasks")
        if (
            not isinstance(raw_tasks, list)
            or not raw_tasks
            or len(raw_tasks) > max_tasks_per_wave
        ):
            return None

        tasks: list[TaskSpec] = []
        for raw_task in raw_tasks:
            if not isinstance(raw_task, dict):
                return None
            task_id = _trimmed_str(raw_task.get("id"))
            objective = _trimmed_str(raw_task.get("objective"))
            criteria = normalize_string_list(raw_task.get("acceptanceCriteria"))
            if not task_id or not objective or not criteria:
                return None
            if task_id in seen_ids:
                logger.debug("Planner reused task id %s", task_id)
                return None
            seen_ids.add(task_id)

            tasks.append(TaskSpec(
                id=task_id,
                objective=objective,
                acceptance_criteria=tuple(criteria),
                files=tuple(normalize_string_list(raw_task.get("files"))),
                constraints=tuple(normalize_string_list(raw_task.get("constraints"))),
                context=tuple(normalize_string_list(raw_task.get("context"))),
                cwd=_trimmed_str(raw_task.get("cwd")) or None,
            ))

        name = _trimmed_str(raw_wave.get("name")) or f"Wave {wave_index + 1}"
        waves.append(Wave(tasks=tuple(tasks), name=name))

    return waves
