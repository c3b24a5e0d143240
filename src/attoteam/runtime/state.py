"""In-memory handle for a running team."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from attoteam.agents.resolver import AgentResolver
from attoteam.channel.base import TaskChannel
from attoteam.channel.file import FileTaskChannel
from attoteam.config.schema import TeamConfig
from attoteam.interop.bridge import InteropBridgeAdapter
from attoteam.interop.file_bridge import FileInteropBridge
from attoteam.protocol.models import TeamLayout
from attoteam.store.roster import TeamStateStore
from attoteam.store.tasks import TaskStore
from attoteam.tmux.base import PaneMultiplexer
from attoteam.tmux.client import TmuxMultiplexer

if TYPE_CHECKING:
    from attoteam.runtime.watchdog import CliWorkerWatchdog


@dataclass(slots=True)
class ActiveWorker:
    task_id: str
    pane_id: str
    started_at: float = field(default_factory=time.time)


@dataclass
class TeamRuntime:
    """Handle owned by the process that started (or resumed) the team.

    Never share it across processes: a second coordinator calls
    :func:`resume_team` and gets its own handle rebuilt from disk.
    """

    team_name: str
    session_name: str
    leader_pane_id: str
    config: TeamConfig
    worker_names: list[str]
    cwd: str
    worker_panes: dict[str, str] = field(default_factory=dict)
    active_workers: dict[str, ActiveWorker] = field(default_factory=dict)
    stop_watchdog: Callable[[], None] | None = None
    phase: str = "starting"
    owns_session: bool = False
    warnings: list[str] = field(default_factory=list)
    multiplexer: PaneMultiplexer | None = None
    channel: TaskChannel | None = None
    bridge: InteropBridgeAdapter | None = None
    resolver: AgentResolver = field(default_factory=AgentResolver)
    watchdog: CliWorkerWatchdog | None = field(default=None, repr=False)
    assign_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    background: set[asyncio.Task[Any]] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        self.layout = TeamLayout.for_team(self.cwd, self.team_name)
        self.task_store = TaskStore(self.layout)
        self.state_store = TeamStateStore(self.layout)
        if self.multiplexer is None:
            self.multiplexer = TmuxMultiplexer(self.config.tmux)
        if self.channel is None:
            self.channel = FileTaskChannel(self.layout)
        if self.bridge is None:
            self.bridge = InteropBridgeAdapter(FileInteropBridge(self.layout))

    @property
    def worker_pane_ids(self) -> list[str]:
        return [self.worker_panes[n] for n in self.worker_names if self.worker_panes.get(n)]

    def idle_workers(self) -> list[str]:
        return [n for n in self.worker_names if n not in self.active_workers]
