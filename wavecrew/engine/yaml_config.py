"""YAML configuration loader.

Loads a single YAML file that layers on top of the env-var config.
When no YAML is provided, WorkflowConfig.from_env() is used as-is.

Example YAML:
    engine:
      agent_command: pi
      max_concurrency: 4
      max_worker_attempts: 2
      kill_grace_seconds: 3
      log_level: INFO

    defaults:
      worker_agent: implementer
      critic_agent: critic
      planner_agent: planner
      agent_scope: both
      fail_fast: true
      confirm_project_agents: true
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import WorkflowConfig
from .models import AgentScope

logger = logging.getLogger(__name__)


@dataclass
class DefaultsConfig:
    """Default agent names and run flags from YAML."""
    worker_agent: str = "implementer"
    critic_agent: str = "critic"
    planner_agent: str = "planner"
    agent_scope: AgentScope = AgentScope.USER
    fail_fast: bool = True
    confirm_project_agents: bool = True


@dataclass
class WavecrewConfig:
    """Complete parsed YAML configuration."""
    engine: WorkflowConfig
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)


def _parse_scope(value: object) -> AgentScope:
    try:
        return AgentScope(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown agent_scope %r in config; using 'user'", value)
        return AgentScope.USER


def load_yaml_config(
    path: str | Path,
    base: WorkflowConfig | None = None,
) -> WavecrewConfig:
    """Load and parse a YAML config file.

    Values under ``engine:`` override *base* (typically the env-var
    config); missing keys keep the base value.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")

    base = base or WorkflowConfig()

    # ── Engine config ──────────────────────────────────────────
    engine_raw = raw.get("engine", {}) or {}
    engine = WorkflowConfig(
        agent_command=str(engine_raw.get("agent_command", base.agent_command)),
        user_agents_dir=str(engine_raw.get("user_agents_dir", base.user_agents_dir)),
        project_agents_dirname=str(engine_raw.get(
            "project_agents_dirname", base.project_agents_dirname
        )),
        max_concurrency=int(engine_raw.get(
            "max_concurrency", base.max_concurrency
        )),
        max_worker_attempts=int(engine_raw.get(
            "max_worker_attempts", base.max_worker_attempts
        )),
        max_tasks=int(engine_raw.get("max_tasks", base.max_tasks)),
        kill_grace_seconds=float(engine_raw.get(
            "kill_grace_seconds", base.kill_grace_seconds
        )),
        critic_output_limit=int(engine_raw.get(
            "critic_output_limit", base.critic_output_limit
        )),
        progress_text_limit=int(engine_raw.get(
            "progress_text_limit", base.progress_text_limit
        )),
        event_queue_size=int(engine_raw.get(
            "event_queue_size", base.event_queue_size
        )),
        log_level=str(engine_raw.get("log_level", base.log_level)),
    )

    # ── Defaults ───────────────────────────────────────────────
    defaults_raw = raw.get("defaults", {}) or {}
    defaults = DefaultsConfig(
        worker_agent=str(defaults_raw.get("worker_agent", DefaultsConfig.worker_agent)),
        critic_agent=str(defaults_raw.get("critic_agent", DefaultsConfig.critic_agent)),
        planner_agent=str(defaults_raw.get("planner_agent", DefaultsConfig.planner_agent)),
        agent_scope=_parse_scope(defaults_raw.get("agent_scope", "user")),
        fail_fast=bool(defaults_raw.get("fail_fast", True)),
        confirm_project_agents=bool(
            defaults_raw.get("confirm_project_agents", True)
        ),
    )

    logger.info(
        "Config loaded from %s: command=%s concurrency=%d attempts=%d "
        "worker=%s critic=%s planner=%s scope=%s",
        path.name,
        engine.agent_command,
        engine.max_concurrency,
        engine.max_worker_attempts,
        defaults.worker_agent,
        defaults.critic_agent,
        defaults.planner_agent,
        defaults.agent_scope.value,
    )
    return WavecrewConfig(engine=engine, defaults=defaults)
