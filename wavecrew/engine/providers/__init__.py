"""Agent runners: one external process per invocation."""
from .base import AgentProgress, AgentRunner, AgentRunResult
from .pi_runner import PiRunner

__all__ = ["AgentProgress", "AgentRunner", "AgentRunResult", "PiRunner"]
