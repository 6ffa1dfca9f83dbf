"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via WAVECREW_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


# Async UI collaborator for approval gates.
# Signature: async def confirm(question, detail) -> bool
ConfirmCallback = Callable[[str, str], Awaitable[bool]]

# Hard ceilings from the plan wire schema.
MAX_CONCURRENCY_CEILING = 8
MAX_WORKER_ATTEMPTS_CEILING = 3
MAX_WAVES = 12
MAX_TASKS_PER_WAVE = 20
MAX_TASKS = 64


def _default_user_agents_dir() -> str:
    return str(Path.home() / ".wavecrew" / "agents")


@dataclass
class WorkflowConfig:
    """Workflow engine configuration."""

    # Agent CLI binary that speaks the line-JSON event protocol.
    agent_command: str = "pi"
    # Where user-scope agent definitions live.
    user_agents_dir: str = ""
    # Directory name searched upward from cwd for project-scope agents.
    project_agents_dirname: str = ".wavecrew/agents"

    # Per-wave fan-out and retry budget defaults.
    max_concurrency: int = 4
    max_worker_attempts: int = 2
    # Ceiling on tasks across all waves.
    max_tasks: int = MAX_TASKS

    # Seconds between SIGTERM and SIGKILL on cancellation.
    kill_grace_seconds: float = 3.0
    # Worker output longer than this is truncated in the critic prompt.
    critic_output_limit: int = 7000
    # Progress snippets of streamed assistant text are cut to this length.
    progress_text_limit: int = 120

    # Event bus queue size; overflowing events are dropped, not awaited.
    event_queue_size: int = 1000

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.user_agents_dir:
            self.user_agents_dir = _default_user_agents_dir()
        self.max_concurrency = max(
            1, min(int(self.max_concurrency), MAX_CONCURRENCY_CEILING)
        )
        self.max_worker_attempts = max(
            1, min(int(self.max_worker_attempts), MAX_WORKER_ATTEMPTS_CEILING)
        )

    @classmethod
    def from_env(cls) -> WorkflowConfig:
        """Load configuration from WAVECREW_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("WAVECREW_")
        }
        if overrides:
            logger.info(
                "WorkflowConfig.from_env: WAVECREW_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("WorkflowConfig.from_env: no WAVECREW_* env vars set, using defaults")

        config = cls(
            agent_command=os.getenv(
                "WAVECREW_AGENT_COMMAND", cls.agent_command
            ),
            user_agents_dir=os.getenv("WAVECREW_USER_AGENTS_DIR", ""),
            max_concurrency=int(os.getenv(
                "WAVECREW_MAX_CONCURRENCY", str(cls.max_concurrency)
            )),
            max_worker_attempts=int(os.getenv(
                "WAVECREW_MAX_WORKER_ATTEMPTS", str(cls.max_worker_attempts)
            )),
            max_tasks=int(os.getenv(
                "WAVECREW_MAX_TASKS", str(cls.max_tasks)
            )),
            kill_grace_seconds=float(os.getenv(
                "WAVECREW_KILL_GRACE", str(cls.kill_grace_seconds)
            )),
            critic_output_limit=int(os.getenv(
                "WAVECREW_CRITIC_OUTPUT_LIMIT", str(cls.critic_output_limit)
            )),
            log_level=os.getenv("WAVECREW_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "WorkflowConfig.from_env: command=%s concurrency=%d attempts=%d log_level=%s",
            config.agent_command, config.max_concurrency,
            config.max_worker_attempts, config.log_level,
        )
        return config
