"""Abstract base for agent runners.

Each runner wraps an agent CLI that can be driven non-interactively
and reports its work as a line-delimited JSON event stream. The
workflow engine calls run_agent_task() once per worker, critic or
planner turn.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..models import AgentConfig, AgentSource, UsageSummary

logger = logging.getLogger(__name__)


@dataclass
class AgentProgress:
    """In-flight notification from a running agent.

    ``phase`` is ``"tool"`` when a tool starts and ``"model"`` for a
    snippet of streamed assistant text.
    """
    phase: str
    text: str


ProgressCallback = Callable[[AgentProgress], None]


@dataclass
class AgentRunResult:
    """Outcome of one agent process."""
    agent: str
    source: AgentSource
    exit_code: int
    final_text: str = ""
    stop_reason: str | None = None
    stderr: str = ""
    usage: UsageSummary = field(default_factory=UsageSummary)
    tool_calls: int = 0
    messages: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class AgentRunner(abc.ABC):
    """Abstract runner interface.

    Implementations spawn one external process per call and must
    never raise for process-level failures; those resolve as a
    result with a non-zero exit code.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short runner name (e.g. 'pi')."""

    @abc.abstractmethod
    async def run_agent_task(
        self,
        agent: AgentConfig,
        task_prompt: str,
        cwd: str,
        *,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
        system_prompt_override: str | None = None,
    ) -> AgentRunResult:
        """Run *agent* on *task_prompt* inside *cwd* and collect its result.

        Setting *cancel_event* terminates the process (gracefully,
        then forcefully). *on_progress* receives tool starts and text
        snippets while the agent runs.
        """

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if this runner's CLI is installed."""

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve a runner binary by preferring explicit command, then fallback.

        The command may point to a CLI that is not on PATH when using
        custom wrappers or tests. In that case, keep the raw value so
        callers can surface the configured command in error messages.
        """
        if command and shutil.which(command):
            return command
        if fallback and shutil.which(fallback):
            logger.debug(
                "Command %s not found; falling back to %s for runner %s",
                command, fallback, self.name,
            )
            return fallback
        return command or fallback or ""
