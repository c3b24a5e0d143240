"""tmux implementation of :class:`PaneMultiplexer`.

Every tmux invocation carries a hard timeout.  A timeout, a missing tmux
binary or an unexpected non-zero exit raises :class:`PaneUnavailableError`,
which the watchdog treats as "unreachable this tick" rather than fatal.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Awaitable, Callable

from attoteam.config.schema import TmuxConfig
from attoteam.errors import PaneUnavailableError
from attoteam.tmux.base import TeamSession
from attoteam.tmux.naming import build_session_name, is_pane_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TmuxResult:
    code: int
    stdout: str
    stderr: str


TmuxRunner = Callable[[list[str], float], Awaitable[TmuxResult]]


async def run_tmux(args: list[str], timeout: float) -> TmuxResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            "tmux",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise PaneUnavailableError(f"tmux is not available: {exc}") from exc
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise PaneUnavailableError(f"tmux {args[0]} timed out after {timeout}s") from None
    return TmuxResult(
        code=proc.returncode if proc.returncode is not None else 1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _is_missing_target(err: str) -> bool:
    lowered = err.lower()
    return any(marker in lowered for marker in ("can't find", "no such", "not found", "no server running"))


class TmuxMultiplexer:
    def __init__(
        self,
        config: TmuxConfig | None = None,
        *,
        runner: TmuxRunner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config or TmuxConfig()
        self._runner = runner or run_tmux
        self._which = which

    async def _tmux(self, args: list[str], *, pane_id: str | None = None, check: bool = True) -> TmuxResult:
        result = await self._runner(args, self.config.command_timeout_seconds)
        if check and result.code != 0:
            raise PaneUnavailableError(
                f"tmux {args[0]} failed: {result.stderr.strip() or f'exit {result.code}'}",
                pane_id=pane_id,
            )
        return result

    # -- session ----------------------------------------------------------

    async def create_team_session(self, team_name: str, worker_count: int, cwd: str) -> TeamSession:
        session = await self._resolve_leader_context(team_name, cwd)
        for i in range(worker_count):
            target = session.leader_pane_id if i == 0 else session.worker_pane_ids[-1]
            direction = "-h" if i == 0 else "-v"
            pane_id = await self._split(target, cwd, direction)
            session.worker_pane_ids.append(pane_id)
        if worker_count > 0:
            result = await self._tmux(
                ["select-layout", "-t", session.session_name, self.config.layout], check=False
            )
            if result.code != 0:
                logger.debug("select-layout failed: %s", result.stderr.strip())
        return session

    async def _resolve_leader_context(self, team_name: str, cwd: str) -> TeamSession:
        if os.environ.get("TMUX"):
            env_pane = os.environ.get("TMUX_PANE", "")
            if is_pane_id(env_pane):
                # Anchor on our own pane so focus changes can't redirect the splits.
                out = await self._tmux(["display-message", "-p", "-t", env_pane, "#S:#I"])
                return TeamSession(session_name=out.stdout.strip(), leader_pane_id=env_pane)
            out = await self._tmux(["display-message", "-p", "#S:#I #{pane_id}"])
            session_name, _, pane_id = out.stdout.strip().partition(" ")
            return TeamSession(session_name=session_name, leader_pane_id=pane_id.strip())

        if self._which("tmux") is None:
            raise PaneUnavailableError(
                "tmux is not available: install tmux or run attoteam inside a tmux session"
            )
        name = build_session_name(self.config.session_prefix, team_name)
        await self._tmux(["new-session", "-d", "-s", name, "-c", cwd])
        out = await self._tmux(["display-message", "-p", "-t", name, "#{pane_id}"])
        return TeamSession(session_name=name, leader_pane_id=out.stdout.strip(), owns_session=True)

    async def has_session(self, session_name: str) -> bool:
        target = session_name.split(":", 1)[0]
        result = await self._tmux(["has-session", "-t", target], check=False)
        return result.code == 0

    async def kill_session(self, session_name: str) -> None:
        target = session_name.split(":", 1)[0]
        result = await self._tmux(["kill-session", "-t", target], check=False)
        if result.code != 0 and not _is_missing_target(result.stderr):
            raise PaneUnavailableError(f"kill-session {target} failed: {result.stderr.strip()}")

    # -- panes ------------------------------------------------------------

    async def _split(self, target: str, cwd: str, direction: str) -> str:
        out = await self._tmux(
            ["split-window", direction, "-t", target, "-d", "-P", "-F", "#{pane_id}", "-c", cwd],
            pane_id=target,
        )
        pane_id = out.stdout.strip()
        if not is_pane_id(pane_id):
            raise PaneUnavailableError(f"split-window returned no pane id: {pane_id!r}", pane_id=target)
        return pane_id

    async def create_pane(self, target: str, cwd: str) -> str:
        return await self._split(target, cwd, "-v")

    async def send_keys(self, pane_id: str, text: str, *, enter: bool = True) -> None:
        if text:
            await self._tmux(["send-keys", "-t", pane_id, "-l", text], pane_id=pane_id)
        if enter:
            await self._tmux(["send-keys", "-t", pane_id, "Enter"], pane_id=pane_id)

    async def capture(self, pane_id: str, lines: int = 80) -> str:
        out = await self._tmux(["capture-pane", "-p", "-t", pane_id, "-S", f"-{lines}"], pane_id=pane_id)
        return out.stdout

    async def is_alive(self, pane_id: str) -> bool:
        result = await self._tmux(["display-message", "-p", "-t", pane_id, "#{pane_dead}"], check=False)
        if result.code != 0:
            if _is_missing_target(result.stderr):
                return False
            raise PaneUnavailableError(f"pane probe failed: {result.stderr.strip()}", pane_id=pane_id)
        return result.stdout.strip() != "1"

    async def kill_pane(self, pane_id: str) -> None:
        result = await self._tmux(["kill-pane", "-t", pane_id], check=False)
        if result.code != 0 and not _is_missing_target(result.stderr):
            raise PaneUnavailableError(f"kill-pane {pane_id} failed: {result.stderr.strip()}", pane_id=pane_id)
