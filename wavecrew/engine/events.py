"""Event types emitted by the workflow engine.

Each event is a typed dataclass; to_dict() gives the plain callback
payload with an ``event`` key naming the type.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class WorkflowEvent:
    """Base event from the workflow engine."""
    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event"] = data.pop("event_type")
        return data


@dataclass
class WorkflowStarted(WorkflowEvent):
    event_type: str = "workflow_started"
    goal: str = ""
    total_tasks: int = 0
    wave_count: int = 0


@dataclass
class PlannerAttempt(WorkflowEvent):
    event_type: str = "planner_attempt"
    attempt: int = 0
    max_attempts: int = 0


@dataclass
class TaskStatusChanged(WorkflowEvent):
    event_type: str = "task_status_changed"
    task_id: str = ""
    old_status: str = ""
    new_status: str = ""
    attempt: int = 0
    message: str = ""


@dataclass
class TaskProgress(WorkflowEvent):
    event_type: str = "task_progress"
    task_id: str = ""
    phase: str = ""
    text: str = ""


@dataclass
class WaveFinished(WorkflowEvent):
    event_type: str = "wave_finished"
    wave_index: int = 0
    wave_name: str = ""
    statuses: dict[str, str] = field(default_factory=dict)
    halted: bool = False


@dataclass
class WorkflowFinished(WorkflowEvent):
    event_type: str = "workflow_finished"
    is_error: bool = False
    summary: str = ""
