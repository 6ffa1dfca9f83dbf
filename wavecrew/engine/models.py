"""Core data models for the workflow engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states. See lifecycle.py for transition rules."""
    PENDING = "pending"
    RUNNING_WORKER = "running-worker"
    RUNNING_CRITIC = "running-critic"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_running(self) -> bool:
        return self in (TaskStatus.RUNNING_WORKER, TaskStatus.RUNNING_CRITIC)


class AgentSource(str, Enum):
    """Where an agent definition was discovered."""
    USER = "user"
    PROJECT = "project"


class AgentScope(str, Enum):
    """Which discovery locations a workflow draws agents from."""
    USER = "user"
    PROJECT = "project"
    BOTH = "both"


WORKER_STATUSES = ("completed", "blocked")
CRITIC_DECISIONS = ("approve", "revise")


@dataclass(frozen=True)
class AgentConfig:
    """An agent definition loaded from a Markdown file.

    ``instructions`` is the file body and is used as the agent's
    system prompt (or appended to the composed one).
    """
    name: str
    description: str
    instructions: str
    source: AgentSource
    file_path: str = ""
    model: str | None = None
    tools: tuple[str, ...] | None = None


@dataclass
class UsageSummary:
    """Additive token/cost/turn counters.

    Forms a commutative monoid under ``+`` with ``UsageSummary()``
    as the identity, so ``sum(usages, UsageSummary())`` folds a list.
    """
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    turns: int = 0

    def __add__(self, other: UsageSummary) -> UsageSummary:
        if not isinstance(other, UsageSummary):
            return NotImplemented
        return UsageSummary(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
            total_tokens=self.total_tokens + other.total_tokens,
            total_cost=self.total_cost + other.total_cost,
            turns=self.turns + other.turns,
        )

    def __radd__(self, other: Any) -> UsageSummary:
        # Lets the builtin sum() start from 0.
        if other == 0:
            return self
        return self.__add__(other)

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "turns": self.turns,
        }


@dataclass(frozen=True)
class TaskSpec:
    """One task packet from a plan. Immutable."""
    id: str
    objective: str
    acceptance_criteria: tuple[str, ...]
    files: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    context: tuple[str, ...] = ()
    cwd: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "objective": self.objective,
            "acceptanceCriteria": list(self.acceptance_criteria),
        }
        if self.files:
            data["files"] = list(self.files)
        if self.constraints:
            data["constraints"] = list(self.constraints)
        if self.context:
            data["context"] = list(self.context)
        if self.cwd:
            data["cwd"] = self.cwd
        return data


@dataclass(frozen=True)
class Wave:
    """An ordered batch of independent tasks."""
    tasks: tuple[TaskSpec, ...]
    name: str | None = None

    def display_name(self, index: int) -> str:
        name = (self.name or "").strip()
        return name or f"Wave {index + 1}"


@dataclass
class WorkflowParams:
    """Input for a workflow run (explicit waves)."""
    goal: str
    waves: list[Wave]
    worker_agent: str = "implementer"
    critic_agent: str = "critic"
    max_concurrency: int = 4
    max_worker_attempts: int = 2
    fail_fast: bool = True
    agent_scope: AgentScope = AgentScope.USER
    confirm_project_agents: bool = True
    execution_approved: bool = False

    @property
    def total_tasks(self) -> int:
        return sum(len(wave.tasks) for wave in self.waves)


@dataclass
class PlanAndRunParams:
    """Input for plan-and-run: a planner proposes the waves first."""
    goal: str
    planner_agent: str = "planner"
    planning_context: list[str] = field(default_factory=list)
    planning_constraints: list[str] = field(default_factory=list)
    max_waves: int = 6
    max_tasks_per_wave: int = 6
    planning_attempts: int = 2
    worker_agent: str = "implementer"
    critic_agent: str = "critic"
    max_concurrency: int = 4
    max_worker_attempts: int = 2
    fail_fast: bool = True
    agent_scope: AgentScope = AgentScope.USER
    confirm_project_agents: bool = True
    execution_approved: bool = False


@dataclass
class WorkerReport:
    """Structured report a worker agent must return."""
    status: str
    summary: str
    actions: list[str] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


@dataclass
class CriticReport:
    """Structured verdict a critic agent must return."""
    decision: str
    rationale: str
    issues: list[str] = field(default_factory=list)
    revision_instructions: list[str] = field(default_factory=list)


@dataclass
class TaskRuntime:
    """Mutable execution record for one task.

    Created at workflow start and mutated only by that task's own
    execution path.
    """
    id: str
    objective: str
    wave_index: int
    wave_name: str
    cwd: str
    acceptance_criteria: list[str]
    files: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    context: list[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    attempt: int = 0
    worker_summary: str | None = None
    files_touched: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    critic_decision: str | None = None
    issues: list[str] = field(default_factory=list)
    error: str | None = None
    usage: UsageSummary = field(default_factory=UsageSummary)
    tool_calls: int = 0
    worker_agent_source: AgentSource | None = None
    critic_agent_source: AgentSource | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "objective": self.objective,
            "waveIndex": self.wave_index,
            "waveName": self.wave_name,
            "status": self.status.value,
            "attempt": self.attempt,
            "cwd": self.cwd,
            "files": list(self.files),
            "acceptanceCriteria": list(self.acceptance_criteria),
            "constraints": list(self.constraints),
            "context": list(self.context),
            "filesTouched": list(self.files_touched),
            "blockers": list(self.blockers),
            "issues": list(self.issues),
            "usage": self.usage.to_dict(),
            "toolCalls": self.tool_calls,
        }
        if self.worker_summary is not None:
            data["workerSummary"] = self.worker_summary
        if self.critic_decision is not None:
            data["criticDecision"] = self.critic_decision
        if self.error is not None:
            data["error"] = self.error
        if self.worker_agent_source is not None:
            data["workerAgentSource"] = self.worker_agent_source.value
        if self.critic_agent_source is not None:
            data["criticAgentSource"] = self.critic_agent_source.value
        return data


@dataclass
class PlanningDetails:
    """Planner bookkeeping attached to a plan-and-run result."""
    planner_agent: str
    attempts: int
    usage: UsageSummary = field(default_factory=UsageSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plannerAgent": self.planner_agent,
            "attempts": self.attempts,
            "usage": self.usage.to_dict(),
        }


@dataclass
class WorkflowDetails:
    """Full record of one workflow run."""
    goal: str
    worker_agent: str
    critic_agent: str
    agent_scope: AgentScope
    max_worker_attempts: int
    tasks: list[TaskRuntime]
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    planning: PlanningDetails | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "goal": self.goal,
            "workerAgent": self.worker_agent,
            "criticAgent": self.critic_agent,
            "agentScope": self.agent_scope.value,
            "maxWorkerAttempts": self.max_worker_attempts,
            "startedAt": self.started_at,
            "tasks": [task.to_dict() for task in self.tasks],
        }
        if self.finished_at is not None:
            data["finishedAt"] = self.finished_at
        if self.planning is not None:
            data["planning"] = self.planning.to_dict()
        return data


@dataclass
class WorkflowResult:
    """Structured outcome of a workflow call.

    The engine never raises past its boundary; every outcome,
    including an approval decline, ends up here.
    """
    text: str
    is_error: bool = False
    cancelled: bool = False
    details: WorkflowDetails | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "text": self.text,
            "isError": self.is_error,
            "cancelled": self.cancelled,
        }
        if self.details is not None:
            data["details"] = self.details.to_dict()
        return data
