"""Read-only aggregation over finished task runtimes."""
from __future__ import annotations

from .models import TaskRuntime, TaskStatus, UsageSummary


def combine_usage(tasks: list[TaskRuntime]) -> UsageSummary:
    return sum((task.usage for task in tasks), UsageSummary())


def status_counts(tasks: list[TaskRuntime]) -> dict[TaskStatus, int]:
    counts = {status: 0 for status in TaskStatus}
    for task in tasks:
        counts[task.status] += 1
    return counts


def usage_summary_text(usage: UsageSummary) -> str:
    return (
        f"turns={usage.turns} input={usage.input} output={usage.output} "
        f"cacheRead={usage.cache_read} cacheWrite={usage.cache_write} "
        f"cost=${usage.total_cost:.4f}"
    )


def workflow_summary_text(tasks: list[TaskRuntime]) -> str:
    counts = status_counts(tasks)
    return (
        f"Workflow finished: {counts[TaskStatus.COMPLETED]} completed, "
        f"{counts[TaskStatus.BLOCKED]} blocked, "
        f"{counts[TaskStatus.FAILED]} failed, "
        f"{counts[TaskStatus.SKIPPED]} skipped\n"
        f"Usage: {usage_summary_text(combine_usage(tasks))}"
    )
