"""YAML loader and (de)serialisation for team configs."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from attoteam.config.schema import (
    ShutdownConfig,
    TaskSeed,
    TeamConfig,
    TmuxConfig,
    WatchdogConfig,
    WorkerInteropConfig,
)
from attoteam.errors import InvalidConfigError


def load_team_yaml(path: str | Path) -> TeamConfig:
    """Load a team file.

    Example::

        team_name: refactor
        worker_count: 2
        agent_types: [claude, codex]
        tasks:
          - subject: Split parser module
            description: ...
        watchdog:
          interval_ms: 2000
    """
    p = Path(path)
    if not p.exists():
        raise InvalidConfigError(f"Team config not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise InvalidConfigError(f"Team config must be a mapping: {p}")
    cfg = config_from_dict(raw)
    if cfg.cwd in ("", "."):
        cfg.cwd = str(p.resolve().parent)
    return cfg


def config_from_dict(raw: dict[str, Any]) -> TeamConfig:
    """Build a TeamConfig from a plain mapping (YAML document or manifest)."""
    team_name = str(raw.get("team_name") or raw.get("name") or "").strip()
    if not team_name:
        raise InvalidConfigError("team_name is required")

    watchdog_raw = raw.get("watchdog", {}) if isinstance(raw.get("watchdog"), dict) else {}
    tmux_raw = raw.get("tmux", {}) if isinstance(raw.get("tmux"), dict) else {}
    shutdown_raw = raw.get("shutdown", {}) if isinstance(raw.get("shutdown"), dict) else {}

    tasks: list[TaskSeed] = []
    raw_tasks = raw.get("tasks", [])
    if isinstance(raw_tasks, list):
        for item in raw_tasks:
            if isinstance(item, str):
                tasks.append(TaskSeed(subject=item))
            elif isinstance(item, dict) and "subject" in item:
                tasks.append(TaskSeed(**_pick(item, TaskSeed)))

    interop: list[WorkerInteropConfig] = []
    raw_interop = raw.get("worker_interop_configs", [])
    if isinstance(raw_interop, list):
        for item in raw_interop:
            if isinstance(item, dict) and "worker_name" in item:
                interop.append(WorkerInteropConfig(**_pick(item, WorkerInteropConfig)))

    try:
        worker_count = int(raw.get("worker_count", 1))
    except (TypeError, ValueError):
        raise InvalidConfigError(f"worker_count must be an integer, got {raw.get('worker_count')!r}") from None

    agent_types = raw.get("agent_types", ["claude"])
    if isinstance(agent_types, str):
        agent_types = [agent_types]

    return TeamConfig(
        team_name=team_name,
        worker_count=worker_count,
        agent_types=[str(a) for a in agent_types] if isinstance(agent_types, list) else ["claude"],
        tasks=tasks,
        cwd=str(raw.get("cwd", ".")),
        model=str(raw.get("model", "") or ""),
        worker_interop_configs=interop,
        watchdog=WatchdogConfig(**_pick(watchdog_raw, WatchdogConfig)),
        tmux=TmuxConfig(**_pick(tmux_raw, TmuxConfig)),
        shutdown=ShutdownConfig(**_pick(shutdown_raw, ShutdownConfig)),
    )


def config_to_dict(cfg: TeamConfig) -> dict[str, Any]:
    return asdict(cfg)


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
