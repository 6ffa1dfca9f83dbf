"""Incremental parser for an agent's line-delimited JSON event stream.

Chunks arrive at arbitrary boundaries. Complete lines are parsed as
they appear; the trailing fragment is held until the next chunk or
until finish(). Lines that are not valid JSON are skipped so that
malformed telemetry never aborts a run.

Recognized records:

    message_end            assistant/tool message; assistant usage is
                           folded into the running total
    tool_execution_start   counts a tool call, emits a "tool" progress
    message_update         text_delta snippets emit "model" progress
"""
from __future__ import annotations

import json
import logging
from typing import Any

from ..models import UsageSummary
from .base import AgentProgress, ProgressCallback

logger = logging.getLogger(__name__)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    return 0


def _text_parts(message: dict[str, Any]) -> list[str]:
    content = message.get("content")
    if isinstance(content, str):
        return [content]
    if not isinstance(content, list):
        return []
    parts: list[str] = []
    for part in content:
        if isinstance(part, dict) and part.get("type") == "text":
            text = part.get("text")
            if isinstance(text, str):
                parts.append(text)
    return parts


def extract_assistant_text(messages: list[dict[str, Any]]) -> str:
    """Return the text of the most recent assistant message that has any.

    Non-empty text segments are trimmed and joined with newlines.
    Returns an empty string when no assistant text exists.
    """
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        parts = [part.strip() for part in _text_parts(message)]
        parts = [part for part in parts if part]
        if parts:
            return "\n".join(parts)
    return ""


def usage_from_message(message: dict[str, Any]) -> UsageSummary | None:
    """Usage contribution of one assistant message, or None."""
    if message.get("role") != "assistant":
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None
    cost = usage.get("cost")
    return UsageSummary(
        input=int(_number(usage.get("input"))),
        output=int(_number(usage.get("output"))),
        cache_read=int(_number(usage.get("cacheRead"))),
        cache_write=int(_number(usage.get("cacheWrite"))),
        total_tokens=int(_number(usage.get("totalTokens"))),
        total_cost=float(_number(cost.get("total"))) if isinstance(cost, dict) else 0.0,
        turns=1,
    )


class JsonlStream:
    """Accumulates the state of one agent run from its stdout stream."""

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        progress_text_limit: int = 120,
    ) -> None:
        self._on_progress = on_progress
        self._progress_text_limit = progress_text_limit
        self._buffer = ""
        self.messages: list[dict[str, Any]] = []
        self.usage = UsageSummary()
        self.stop_reason: str | None = None
        self.tool_calls = 0
        self.skipped_lines = 0

    @property
    def final_text(self) -> str:
        return extract_assistant_text(self.messages)

    def feed(self, chunk: str) -> None:
        """Consume a chunk of stdout text."""
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            self.process_line(line)

    def finish(self) -> None:
        """Parse whatever partial line is left once the stream closes."""
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            self.process_line(remainder)

    def process_line(self, line: str) -> None:
        if not line.strip():
            return
        try:
            payload = json.loads(line)
        except (ValueError, RecursionError):
            self.skipped_lines += 1
            logger.debug("Skipping non-JSON agent line: %.80s", line)
            return
        if not isinstance(payload, dict):
            return

        record_type = payload.get("type")
        if record_type == "message_end":
            self._handle_message_end(payload.get("message"))
        elif record_type == "tool_execution_start":
            self.tool_calls += 1
            tool_name = payload.get("toolName") or "tool"
            self._emit("tool", f"running {tool_name}")
        elif record_type == "message_update":
            event = payload.get("assistantMessageEvent")
            if (
                isinstance(event, dict)
                and event.get("type") == "text_delta"
                and isinstance(event.get("delta"), str)
            ):
                delta = event["delta"].strip()
                if delta:
                    self._emit("model", delta[: self._progress_text_limit])

    def _handle_message_end(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        role = message.get("role")
        if role not in ("assistant", "tool", "toolResult"):
            return
        self.messages.append(message)
        contribution = usage_from_message(message)
        if contribution is not None:
            self.usage = self.usage + contribution
        if role == "assistant":
            stop_reason = message.get("stopReason")
            if isinstance(stop_reason, str) and stop_reason:
                self.stop_reason = stop_reason

    def _emit(self, phase: str, text: str) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(AgentProgress(phase=phase, text=text))
        except Exception:
            logger.debug("Progress listener failed", exc_info=True)
