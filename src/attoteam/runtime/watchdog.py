"""Watchdog for CLI worker liveness, stalls and task completion.

One asyncio task polls every tracked worker per tick.  Probes within a
tick fan out under a semaphore and are joined before the next sleep, so
ticks never overlap.  Completion callbacks run as their own tasks: a slow
or failing callback cannot hold up polling of other workers.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from attoteam.channel.base import TaskChannel
from attoteam.channel.file import FileTaskChannel
from attoteam.config.schema import WatchdogConfig
from attoteam.errors import PaneUnavailableError, TeamError
from attoteam.interop.bridge import InteropBridgeAdapter, requires_bridge
from attoteam.interop.file_bridge import FileInteropBridge
from attoteam.protocol.models import (
    HeartbeatRecord,
    TaskRecord,
    TeamLayout,
    WatchdogCompletionEvent,
    WorkerRecord,
    parse_iso,
)
from attoteam.store.roster import TeamStateStore
from attoteam.store.tasks import TaskStore, finish_mutation, reclaim_mutation
from attoteam.tmux.base import PaneMultiplexer
from attoteam.tmux.client import TmuxMultiplexer

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[WatchdogCompletionEvent], "Awaitable[None] | None"]
WorkerDeadCallback = Callable[[str, list[str]], "Awaitable[None] | None"]


@dataclass(slots=True)
class LivenessVerdict:
    alive: bool
    stalled: bool
    stale: bool  # heartbeat older than the dead threshold
    silent_seconds: float = 0.0


def evaluate_liveness(
    pane_alive: bool,
    last_heartbeat_at: str | None,
    *,
    stall_threshold_seconds: float,
    dead_threshold_seconds: float,
    now: datetime | None = None,
) -> LivenessVerdict:
    """Classify one worker from its pane state and last observed activity.

    No heartbeat (idle worker, or the watchdog never ran) counts as fresh.
    """
    if not pane_alive:
        return LivenessVerdict(alive=False, stalled=False, stale=False)
    hb = parse_iso(last_heartbeat_at)
    if hb is None:
        return LivenessVerdict(alive=True, stalled=False, stale=False)
    silent = max(0.0, ((now or datetime.now(UTC)) - hb).total_seconds())
    stale = silent > dead_threshold_seconds
    return LivenessVerdict(
        alive=not stale,
        stalled=silent > stall_threshold_seconds,
        stale=stale,
        silent_seconds=silent,
    )


def output_digest(text: str) -> str:
    return hashlib.sha1(text.rstrip().encode("utf-8", errors="replace")).hexdigest()


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CliWorkerWatchdog:
    def __init__(
        self,
        team_name: str,
        worker_names: list[str],
        cwd: str | Path,
        interval_ms: int,
        on_complete: CompletionCallback,
        *,
        multiplexer: PaneMultiplexer | None = None,
        channel: TaskChannel | None = None,
        bridge: InteropBridgeAdapter | None = None,
        config: WatchdogConfig | None = None,
        on_worker_dead: WorkerDeadCallback | None = None,
    ) -> None:
        self.team_name = team_name
        self.worker_names = list(worker_names)
        self.interval_seconds = max(interval_ms / 1000.0, 0.05)
        self.config = config or WatchdogConfig()
        self.layout = TeamLayout.for_team(cwd, team_name)
        self.tasks = TaskStore(self.layout)
        self.state = TeamStateStore(self.layout)
        self.multiplexer: PaneMultiplexer = multiplexer or TmuxMultiplexer()
        self.channel: TaskChannel = channel or FileTaskChannel(self.layout)
        self.bridge = bridge or InteropBridgeAdapter(FileInteropBridge(self.layout))
        self._on_complete = on_complete
        self._on_worker_dead = on_worker_dead

        self._stopped = False
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Task[Any]] = set()
        self._dead: set[str] = set()
        self.ticks = 0

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(), name=f"attoteam-watchdog-{self.team_name}"
        )

    def stop(self) -> None:
        """Stop before the next tick; an in-flight tick runs to completion. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._wake.set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def dead_workers(self) -> set[str]:
        return set(self._dead)

    async def join(self) -> None:
        """Wait for the loop and any in-flight callbacks to finish."""
        if self._loop_task is not None:
            await self._loop_task
        if self._callback_tasks:
            await asyncio.gather(*list(self._callback_tasks), return_exceptions=True)

    async def _run(self) -> None:
        logger.info("Watchdog started for team %s (%d workers)", self.team_name, len(self.worker_names))
        while not self._stopped:
            try:
                await self.tick()
            except Exception:
                logger.exception("Watchdog tick failed for team %s", self.team_name)
            if self._stopped:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
        logger.info("Watchdog stopped for team %s", self.team_name)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        self.ticks += 1
        owned: dict[str, list[TaskRecord]] = {}
        for t in self.tasks.list_tasks():
            if t.status == "in_progress" and t.owner:
                owned.setdefault(t.owner, []).append(t)
        workers: list[WorkerRecord] = []
        for name in self.worker_names:
            if name in self._dead:
                continue
            record = self.state.get_worker(name)
            if record is None or record.status != "active":
                continue
            workers.append(record)

        sem = asyncio.Semaphore(max(1, self.config.max_concurrent_probes))

        async def _guarded(worker: WorkerRecord) -> None:
            async with sem:
                try:
                    await self._probe_worker(worker, owned.get(worker.worker_name, []))
                except Exception:
                    logger.exception("Probe of %s failed", worker.worker_name)

        await asyncio.gather(*(_guarded(w) for w in workers))

    async def _probe_worker(self, worker: WorkerRecord, tasks: list[TaskRecord]) -> None:
        if tasks and await self._check_completion(worker, tasks):
            return

        if not worker.pane_id:
            await self._handle_dead(worker, tasks, reason="no_pane")
            return
        try:
            alive = await self.multiplexer.is_alive(worker.pane_id)
        except PaneUnavailableError as exc:
            logger.debug("Pane %s of %s unreachable this tick: %s", worker.pane_id, worker.worker_name, exc)
            return
        if not alive:
            await self._handle_dead(worker, tasks, reason="pane_dead")
            return
        await self._observe_activity(worker, tasks)

    async def _check_completion(self, worker: WorkerRecord, tasks: list[TaskRecord]) -> bool:
        bridged = requires_bridge(worker.interop_mode)
        if bridged:
            result = await self.bridge.poll_completion(worker)
        else:
            result = self.channel.read_completion(worker.worker_name)
        if result is None:
            return False

        if len(tasks) > 1:
            logger.warning(
                "Worker %s owns %d tasks (%s)", worker.worker_name, len(tasks), ", ".join(t.id for t in tasks)
            )
        task_id = result.task_id or tasks[0].id
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            logger.warning(
                "Completion from %s names task %s but it owns task %s; discarding",
                worker.worker_name, task_id, ", ".join(t.id for t in tasks),
            )
            if not bridged:
                self.channel.clear_completion(worker.worker_name)
            return False

        try:
            self.tasks.update_task(
                task.id,
                finish_mutation(result.status, result.summary, expected_owner=worker.worker_name),
            )
        except TeamError as exc:
            logger.warning("Could not record completion of task %s by %s: %s", task.id, worker.worker_name, exc)
            if not bridged:
                self.channel.clear_completion(worker.worker_name)
            return False

        if not bridged:
            self.channel.clear_completion(worker.worker_name)
        self.state.append_event(
            f"task.{result.status}",
            {"worker_name": worker.worker_name, "task_id": task.id, "summary": result.summary},
        )
        logger.info("Task %s %s by %s", task.id, result.status, worker.worker_name)
        self._dispatch(
            WatchdogCompletionEvent(
                worker_name=worker.worker_name,
                task_id=task.id,
                status=result.status,
                summary=result.summary,
            )
        )
        return True

    async def _observe_activity(self, worker: WorkerRecord, tasks: list[TaskRecord]) -> None:
        try:
            output = await self.multiplexer.capture(worker.pane_id, self.config.capture_lines)
        except PaneUnavailableError as exc:
            logger.debug("Capture of %s failed: %s", worker.pane_id, exc)
            return

        digest = output_digest(output)
        hb = self.state.read_heartbeat(worker.worker_name) or HeartbeatRecord(worker_name=worker.worker_name)
        now = datetime.now(UTC)
        if hb.last_heartbeat_at is None or digest != hb.output_digest:
            hb.last_heartbeat_at = now.isoformat()
            hb.output_digest = digest
            hb.stall_strikes = 0
            self.state.write_heartbeat(hb)
            return
        if not tasks:
            return
        task = tasks[0]

        verdict = evaluate_liveness(
            True,
            hb.last_heartbeat_at,
            stall_threshold_seconds=self.config.stall_threshold_seconds,
            dead_threshold_seconds=self.config.dead_threshold_seconds,
            now=now,
        )
        if not verdict.stale:
            if verdict.stalled:
                logger.debug(
                    "Worker %s stalled on task %s (%.0fs without output)",
                    worker.worker_name, task.id, verdict.silent_seconds,
                )
            return

        hb.stall_strikes += 1
        self.state.write_heartbeat(hb)
        logger.warning(
            "Worker %s silent for %.0fs on task %s (strike %d/%d)",
            worker.worker_name, verdict.silent_seconds, task.id,
            hb.stall_strikes, self.config.max_stall_strikes,
        )
        if hb.stall_strikes >= self.config.max_stall_strikes:
            await self._handle_dead(worker, tasks, reason="stalled")

    async def _handle_dead(self, worker: WorkerRecord, tasks: list[TaskRecord], *, reason: str) -> None:
        name = worker.worker_name
        self._dead.add(name)
        self.state.mark_worker(name, "dead")
        if reason == "stalled" and worker.pane_id:
            try:
                await self.multiplexer.kill_pane(worker.pane_id)
            except PaneUnavailableError as exc:
                logger.warning("Could not kill stalled pane %s of %s: %s", worker.pane_id, name, exc)

        reclaimed: list[str] = []
        for task in tasks:
            try:
                self.tasks.update_task(task.id, reclaim_mutation(expected_owner=name))
                reclaimed.append(task.id)
            except TeamError as exc:
                logger.warning("Could not reclaim task %s from %s: %s", task.id, name, exc)

        self.state.append_event(
            "worker.dead", {"worker_name": name, "reason": reason, "reclaimed_task_ids": reclaimed}
        )
        if reclaimed:
            logger.warning(
                "Worker %s is dead (%s); task %s returned to pending", name, reason, ", ".join(reclaimed)
            )
        else:
            logger.warning("Worker %s is dead (%s)", name, reason)

        if self._on_worker_dead is not None:
            try:
                await _maybe_await(self._on_worker_dead(name, reclaimed))
            except Exception:
                logger.exception("Worker-dead hook failed for %s", name)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _dispatch(self, event: WatchdogCompletionEvent) -> None:
        try:
            result = self._on_complete(event)
        except Exception:
            logger.exception("Completion callback failed for %s task %s", event.worker_name, event.task_id)
            return
        if inspect.isawaitable(result):
            cb_task = asyncio.ensure_future(result)
            self._callback_tasks.add(cb_task)
            cb_task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task[Any]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Completion callback failed: %s", exc, exc_info=exc)


def watchdog_cli_workers(
    team_name: str,
    worker_names: list[str],
    cwd: str | Path,
    interval_ms: int,
    on_complete: CompletionCallback,
    **kwargs: Any,
) -> Callable[[], None]:
    """Start polling ``worker_names`` for completion sentinels and liveness.

    Must be called from inside a running event loop.  Returns an idempotent
    stop function.  Keyword arguments are passed to :class:`CliWorkerWatchdog`.
    """
    watchdog = CliWorkerWatchdog(team_name, worker_names, cwd, interval_ms, on_complete, **kwargs)
    watchdog.start()
    return watchdog.stop
