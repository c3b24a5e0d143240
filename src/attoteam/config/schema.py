"""Configuration schema for attoteam team files."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class TaskSeed:
    subject: str
    description: str = ""


@dataclass(slots=True)
class WorkerInteropConfig:
    worker_name: str
    agent_type: str = ""
    interop_mode: str | None = None  # None / "none" = no bridging


@dataclass(slots=True)
class WatchdogConfig:
    interval_ms: int = 1000
    stall_threshold_seconds: float = 120.0  # silent this long = stalled (informational)
    dead_threshold_seconds: float = 600.0  # silent this long = heartbeat stale, counts a strike
    max_stall_strikes: int = 3
    max_concurrent_probes: int = 8
    capture_lines: int = 80


@dataclass(slots=True)
class TmuxConfig:
    command_timeout_seconds: float = 5.0
    session_prefix: str = "attoteam-team"
    layout: str = "main-vertical"


@dataclass(slots=True)
class ShutdownConfig:
    timeout_ms: int = 10_000
    poll_interval_ms: int = 250


@dataclass(slots=True)
class TeamConfig:
    team_name: str
    worker_count: int = 1
    agent_types: list[str] = field(default_factory=lambda: ["claude"])
    tasks: list[TaskSeed] = field(default_factory=list)
    cwd: str = "."
    model: str = ""  # empty string = use the CLI's own default model
    worker_interop_configs: list[WorkerInteropConfig] = field(default_factory=list)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    tmux: TmuxConfig = field(default_factory=TmuxConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)

    def interop_for(self, worker_name: str) -> WorkerInteropConfig | None:
        for item in self.worker_interop_configs:
            if item.worker_name == worker_name:
                return item
        return None
