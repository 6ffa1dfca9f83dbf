"""Task lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    PENDING ──> RUNNING_WORKER ──> RUNNING_CRITIC ──┬──> COMPLETED
       │            ^    │                          │
       │            │    │                          ├──> BLOCKED
       │            └────┴──── (retry) <────────────┤
       │                                            └──> FAILED
       ├──> SKIPPED  (a prior wave failed under fail-fast)
       └──> FAILED   (infrastructure failure before start)
"""
from __future__ import annotations

import logging

from .models import TaskRuntime, TaskStatus

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {
        TaskStatus.RUNNING_WORKER,
        TaskStatus.SKIPPED,
        TaskStatus.FAILED,
    },
    TaskStatus.RUNNING_WORKER: {
        TaskStatus.RUNNING_WORKER,  # retry after a worker-stage failure
        TaskStatus.RUNNING_CRITIC,
        TaskStatus.FAILED,
    },
    TaskStatus.RUNNING_CRITIC: {
        TaskStatus.RUNNING_WORKER,  # revision attempt
        TaskStatus.COMPLETED,
        TaskStatus.BLOCKED,
        TaskStatus.FAILED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.BLOCKED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.SKIPPED: set(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


def validate_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def transition(task: TaskRuntime, target: TaskStatus) -> TaskStatus:
    """Move *task* to *target* and return the previous status."""
    previous = task.status
    validate_transition(previous, target)
    task.status = target
    logger.debug("Task %s: %s -> %s", task.id, previous.value, target.value)
    return previous
