"""Agent runner backed by the `pi` coding-agent CLI.

Each call spawns `pi --mode json -p --no-session ...` with the task
prompt as the final argument and parses its line-JSON stdout into an
AgentRunResult.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal

from ..models import AgentConfig
from .base import AgentRunner, AgentRunResult, ProgressCallback
from .stream import JsonlStream

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class PiRunner(AgentRunner):
    """Runner backed by the pi CLI in JSON mode.

    Each agent runs in its own session so cancellation reaches the
    whole process tree: when the shared cancel event is set the group
    gets SIGTERM, then SIGKILL once ``kill_grace_seconds`` pass.
    """

    def __init__(
        self,
        command: str = "pi",
        kill_grace_seconds: float = 3.0,
        progress_text_limit: int = 120,
    ) -> None:
        self._command = self.resolve_command(command, "pi")
        self._kill_grace_seconds = kill_grace_seconds
        self._progress_text_limit = progress_text_limit

    @property
    def name(self) -> str:
        return "pi"

    def is_available(self) -> bool:
        """Check if the pi CLI is installed."""
        return shutil.which(self._command) is not None

    def build_cmd(
        self,
        agent: AgentConfig,
        task_prompt: str,
        system_prompt_override: str | None = None,
    ) -> list[str]:
        """Build the argv for one invocation (no shell)."""
        cmd = [self._command, "--mode", "json", "-p", "--no-session"]
        if agent.model:
            cmd.extend(["--model", agent.model])
        if agent.tools:
            cmd.extend(["--tools", ",".join(agent.tools)])

        if system_prompt_override and system_prompt_override.strip():
            cmd.extend(["--system-prompt", system_prompt_override])
        elif agent.instructions:
            cmd.extend(["--append-system-prompt", agent.instructions])

        cmd.append(task_prompt)
        return cmd

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
        cmd = self.build_cmd(agent, task_prompt, system_prompt_override)
        stream = JsonlStream(
            on_progress=on_progress,
            progress_text_limit=self._progress_text_limit,
        )

        try:
            # Args go straight to exec, never through a shell
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except FileNotFoundError:
            logger.error("'%s' CLI not found, cannot run agent %s", self._command, agent.name)
            return self._result(
                agent, 1, stream,
                f"ERROR: '{self._command}' CLI not found. Install pi first.",
            )
        except OSError as exc:
            logger.error("Failed to start agent %s: %s", agent.name, exc)
            return self._result(agent, 1, stream, f"Failed to start agent: {exc}")

        logger.info("Agent %s started (pid=%d, cwd=%s)", agent.name, proc.pid, cwd)

        watcher: asyncio.Task | None = None
        if cancel_event is not None:
            if cancel_event.is_set():
                logger.info("Cancellation already requested; terminating %s", agent.name)
                self._terminate(proc)
            watcher = asyncio.create_task(self._watch_cancel(proc, cancel_event))

        stderr_text = ""
        try:
            _, stderr_text = await asyncio.gather(
                self._pump_stdout(proc, stream),
                self._read_stderr(proc),
            )
            exit_code = await proc.wait()
        except OSError as exc:
            logger.error("Waiting on agent %s failed: %s", agent.name, exc)
            stderr_text = f"{stderr_text}\nFailed waiting on agent: {exc}".strip()
            exit_code = 1
        finally:
            if watcher is not None:
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)
            if proc.returncode is None:
                # Our own task was cancelled mid-run; never leak the process.
                self._kill(proc)
            elif cancel_event is not None and cancel_event.is_set():
                # Reap descendants that outlived the group leader.
                self._signal_group(proc, signal.SIGKILL)

        stream.finish()
        if exit_code is None:
            exit_code = 1

        logger.info(
            "Agent %s exited rc=%s turns=%d tool_calls=%d",
            agent.name, exit_code, stream.usage.turns, stream.tool_calls,
        )
        return self._result(agent, exit_code, stream, stderr_text)

    async def _pump_stdout(self, proc: asyncio.subprocess.Process, stream: JsonlStream) -> None:
        if proc.stdout is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            stream.feed(decoder.decode(chunk))
        tail = decoder.decode(b"", final=True)
        if tail:
            stream.feed(tail)

    @staticmethod
    async def _read_stderr(proc: asyncio.subprocess.Process) -> str:
        if proc.stderr is None:
            return ""
        data = await proc.stderr.read()
        return data.decode("utf-8", errors="replace")

    async def _watch_cancel(
        self,
        proc: asyncio.subprocess.Process,
        cancel_event: asyncio.Event,
    ) -> None:
        await cancel_event.wait()
        if proc.returncode is not None:
            return
        logger.info("Cancelling agent process group pid=%d", proc.pid)
        self._terminate(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Agent process pid=%d ignored SIGTERM for %.1fs; killing",
                proc.pid, self._kill_grace_seconds,
            )
            self._kill(proc)
            return
        # Leader exited; descendants may still hold the output pipes open.
        self._signal_group(proc, signal.SIGKILL)

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> bool:
        """Send *sig* to the agent's process group when available."""
        if not hasattr(os, "killpg"):
            return False
        try:
            os.killpg(proc.pid, sig)
            return True
        except (ProcessLookupError, PermissionError):
            return False

    @classmethod
    def _terminate(cls, proc: asyncio.subprocess.Process) -> None:
        if cls._signal_group(proc, signal.SIGTERM):
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            pass

    @classmethod
    def _kill(cls, proc: asyncio.subprocess.Process) -> None:
        if cls._signal_group(proc, signal.SIGKILL):
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    @staticmethod
    def _result(
        agent: AgentConfig,
        exit_code: int,
        stream: JsonlStream,
        stderr: str,
    ) -> AgentRunResult:
        return AgentRunResult(
            agent=agent.name,
            source=agent.source,
            exit_code=exit_code,
            final_text=stream.final_text,
            stop_reason=stream.stop_reason,
            stderr=stderr,
            usage=stream.usage,
            tool_calls=stream.tool_calls,
            messages=list(stream.messages),
        )
