"""Exception hierarchy for the workflow engine.

Task-level failures are recorded on the task runtime, not raised.
These exceptions cover plan validation, agent resolution and
approval, and are converted into a WorkflowResult at the engine
boundary.
"""
from __future__ import annotations


class OrchestrationError(Exception):
    """Base exception for all orchestration errors."""


class PlanValidationError(OrchestrationError):
    """A plan failed validation before any task started."""


class DuplicateTaskIdError(PlanValidationError):
    """Two tasks in the same plan share an id."""
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Duplicate task id detected: {task_id}")


class TaskLimitExceededError(PlanValidationError):
    """The plan holds more tasks than the configured ceiling."""
    def __init__(self, total: int, maximum: int):
        self.total = total
        self.maximum = maximum
        super().__init__(f"Too many tasks ({total}). Maximum is {maximum}.")


class CwdContainmentError(PlanValidationError):
    """A task's requested cwd escapes the workflow root."""
    def __init__(self, requested: str, root: str):
        self.requested = requested
        self.root = root
        super().__init__(
            f"Task cwd must stay inside project root: {requested}"
        )


class AgentNotFoundError(OrchestrationError):
    """One or more required agents were not discovered."""
    def __init__(self, missing: dict[str, str], available: str):
        self.missing = missing
        self.available = available
        roles = " ".join(f"{role}={name}" for role, name in missing.items())
        super().__init__(
            f"Missing required agents. {roles}. Available: {available}"
        )


class ApprovalDeniedError(OrchestrationError):
    """The user (or a missing UI) declined an approval gate."""
