"""Wavecrew: wave-based worker/critic orchestration of coding agents."""
from .models import (
    AgentConfig,
    AgentScope,
    AgentSource,
    CriticReport,
    PlanAndRunParams,
    PlanningDetails,
    TaskRuntime,
    TaskSpec,
    TaskStatus,
    UsageSummary,
    Wave,
    WorkerReport,
    WorkflowDetails,
    WorkflowParams,
    WorkflowResult,
)
from .config import WorkflowConfig
from .errors import (
    AgentNotFoundError,
    ApprovalDeniedError,
    CwdContainmentError,
    DuplicateTaskIdError,
    OrchestrationError,
    PlanValidationError,
    TaskLimitExceededError,
)

__all__ = [
    # Core engine (lazy import to avoid circular deps)
    "WorkflowEngine",
    # Models
    "AgentConfig",
    "AgentScope",
    "AgentSource",
    "CriticReport",
    "PlanAndRunParams",
    "PlanningDetails",
    "TaskRuntime",
    "TaskSpec",
    "TaskStatus",
    "UsageSummary",
    "Wave",
    "WorkerReport",
    "WorkflowDetails",
    "WorkflowParams",
    "WorkflowResult",
    # Config
    "WorkflowConfig",
    # YAML config (lazy import)
    "WavecrewConfig",
    "load_yaml_config",
    # Runners (lazy import)
    "AgentRunner",
    "PiRunner",
    # Events (lazy import)
    "EventBus",
    # Errors
    "AgentNotFoundError",
    "ApprovalDeniedError",
    "CwdContainmentError",
    "DuplicateTaskIdError",
    "OrchestrationError",
    "PlanValidationError",
    "TaskLimitExceededError",
]


def __getattr__(name: str):
    if name == "WorkflowEngine":
        from .engine import WorkflowEngine
        return WorkflowEngine
    if name == "WavecrewConfig":
        from .yaml_config import WavecrewConfig
        return WavecrewConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "AgentRunner":
        from .providers.base import AgentRunner
        return AgentRunner
    if name == "PiRunner":
        from .providers.pi_runner import PiRunner
        return PiRunner
    if name == "EventBus":
        from .event_bus import EventBus
        return EventBus
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
