"""Agent definition discovery.

Agents are Markdown files with a YAML frontmatter header:

    ---
    name: implementer
    description: Writes code for one task packet
    model: cerebras/zai-glm-4.6
    tools: read, bash, edit, write
    ---
    You are a focused implementation agent...

User-scope agents live in ``~/.wavecrew/agents``; project-scope agents
in the nearest ``.wavecrew/agents`` directory at or above the working
directory. When both scopes are searched, project entries override
user entries with the same name.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import AgentConfig, AgentScope, AgentSource

logger = logging.getLogger(__name__)


@dataclass
class AgentDiscovery:
    """Agents found for a scope plus the project directory searched."""
    agents: list[AgentConfig]
    project_agents_dir: str | None = None


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split ``---``-delimited YAML frontmatter from a Markdown body.

    Returns an empty mapping (and the full text as body) when there is
    no frontmatter or it is not a YAML mapping.
    """
    normalized = content.replace("\r\n", "\n")
    if not normalized.startswith("---\n"):
        return {}, normalized
    end = normalized.find("\n---", 4)
    if end == -1:
        return {}, normalized
    header = normalized[4:end]
    body_start = normalized.find("\n", end + 4)
    body = "" if body_start == -1 else normalized[body_start + 1:]
    try:
        data = yaml.safe_load(header) or {}
    except yaml.YAMLError as exc:
        logger.warning("Invalid agent frontmatter: %s", exc)
        return {}, normalized
    if not isinstance(data, dict):
        return {}, normalized
    return data, body


def _parse_tools(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        entries = [entry.strip() for entry in value.split(",")]
    elif isinstance(value, list):
        entries = [str(entry).strip() for entry in value]
    else:
        return None
    tools = tuple(entry for entry in entries if entry)
    return tools or None


def read_agent_file(path: Path, source: AgentSource) -> AgentConfig | None:
    """Load one agent definition, or None when it is unusable."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.debug("Cannot read agent file %s: %s", path, exc)
        return None

    frontmatter, body = split_frontmatter(content)
    name = str(frontmatter.get("name") or "").strip()
    description = str(frontmatter.get("description") or "").strip()
    if not name or not description:
        logger.debug("Skipping %s: frontmatter needs name and description", path)
        return None

    model = str(frontmatter.get("model") or "").strip() or None
    return AgentConfig(
        name=name,
        description=description,
        instructions=body.strip(),
        source=source,
        file_path=str(path),
        model=model,
        tools=_parse_tools(frontmatter.get("tools")),
    )


def load_agents_from_dir(directory: str | Path, source: AgentSource) -> list[AgentConfig]:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        logger.warning("Cannot list agents dir %s: %s", directory, exc)
        return []

    agents: list[AgentConfig] = []
    for entry in entries:
        if entry.suffix != ".md" or not entry.is_file():
            continue
        config = read_agent_file(entry, source)
        if config is not None:
            agents.append(config)
    return agents


def find_nearest_project_agents_dir(cwd: str, dirname: str = ".wavecrew/agents") -> str | None:
    """Walk up from *cwd* looking for a project agents directory."""
    current = Path(os.path.abspath(cwd))
    while True:
        candidate = current / dirname
        if candidate.is_dir():
            return str(candidate)
        if current.parent == current:
            return None
        current = current.parent


def discover_agents(
    cwd: str,
    scope: AgentScope,
    user_agents_dir: str | None = None,
    project_agents_dirname: str = ".wavecrew/agents",
) -> AgentDiscovery:
    """Find agents for *scope*, deduplicated by name.

    The merge inserts user agents first and project agents second, so
    a project agent replaces a user agent of the same name.
    """
    user_dir = user_agents_dir or str(Path.home() / ".wavecrew" / "agents")
    project_dir = find_nearest_project_agents_dir(cwd, project_agents_dirname)

    user_agents = (
        [] if scope == AgentScope.PROJECT
        else load_agents_from_dir(user_dir, AgentSource.USER)
    )
    project_agents = (
        [] if scope == AgentScope.USER or project_dir is None
        else load_agents_from_dir(project_dir, AgentSource.PROJECT)
    )

    deduped: dict[str, AgentConfig] = {}
    for agent in user_agents:
        deduped[agent.name] = agent
    for agent in project_agents:
        deduped[agent.name] = agent

    logger.info(
        "Discovered %d agent(s) for scope=%s (user=%d project=%d, project dir=%s)",
        len(deduped), scope.value, len(user_agents), len(project_agents), project_dir,
    )
    return AgentDiscovery(agents=list(deduped.values()), project_agents_dir=project_dir)


def get_agent_by_name(agents: list[AgentConfig], name: str) -> AgentConfig | None:
    for agent in agents:
        if agent.name == name:
            return agent
    return None


def list_agent_names(agents: list[AgentConfig]) -> str:
    if not agents:
        return "none"
    return ", ".join(f"{agent.name} ({agent.source.value})" for agent in agents)
