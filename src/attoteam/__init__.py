"""attoteam: run a team of CLI coding agents in tmux panes over a shared task list."""

from attoteam.runtime.controller import (
    assign_task,
    monitor_team,
    resume_monitoring,
    resume_team,
    shutdown_team,
    start_team,
)
from attoteam.runtime.lifecycle import spawn_worker_for_task
from attoteam.runtime.state import TeamRuntime
from attoteam.runtime.watchdog import watchdog_cli_workers

__version__ = "0.1.0"

__all__ = [
    "TeamRuntime",
    "__version__",
    "assign_task",
    "monitor_team",
    "resume_monitoring",
    "resume_team",
    "shutdown_team",
    "spawn_worker_for_task",
    "start_team",
    "watchdog_cli_workers",
]
