"""Pane multiplexer interface consumed by the team runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class TeamSession:
    session_name: str
    leader_pane_id: str
    worker_pane_ids: list[str] = field(default_factory=list)
    owns_session: bool = False  # True when we created a detached session


class PaneMultiplexer(Protocol):
    async def create_team_session(self, team_name: str, worker_count: int, cwd: str) -> TeamSession: ...

    async def create_pane(self, target: str, cwd: str) -> str: ...

    async def send_keys(self, pane_id: str, text: str, *, enter: bool = True) -> None: ...

    async def capture(self, pane_id: str, lines: int = 80) -> str: ...

    async def is_alive(self, pane_id: str) -> bool: ...

    async def kill_pane(self, pane_id: str) -> None: ...

    async def has_session(self, session_name: str) -> bool: ...

    async def kill_session(self, session_name: str) -> None: ...
