"""Team controller: start, monitor, assign, shut down and resume a team.

Team phase moves ``starting -> running -> stopping -> stopped`` and is
persisted in the manifest, so ``running`` survives a coordinator restart
via :func:`resume_team`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from attoteam.agents.contracts import get_contract
from attoteam.agents.resolver import AgentResolver
from attoteam.channel.base import TaskChannel
from attoteam.channel.file import FileTaskChannel
from attoteam.config.loader import config_from_dict, config_to_dict
from attoteam.config.schema import TeamConfig
from attoteam.errors import (
    AgentUnavailableError,
    InvalidConfigError,
    NoPendingTaskError,
    PaneUnavailableError,
    TaskNotPendingError,
    TeamError,
    WorkerBusyError,
)
from attoteam.interop.bridge import InteropBridge, InteropBridgeAdapter
from attoteam.interop.file_bridge import FileInteropBridge
from attoteam.protocol.models import (
    HeartbeatRecord,
    TaskCounts,
    TaskRecord,
    TeamLayout,
    TeamManifest,
    TeamSnapshot,
    WatchdogCompletionEvent,
    WorkerRecord,
    WorkerStatus,
    utc_now_iso,
)
from attoteam.runtime.lifecycle import agent_kind_for, spawn_worker_for_task
from attoteam.runtime.state import ActiveWorker, TeamRuntime
from attoteam.runtime.watchdog import (
    CliWorkerWatchdog,
    CompletionCallback,
    _maybe_await,
    evaluate_liveness,
)
from attoteam.store.roster import TeamStateStore
from attoteam.store.tasks import TaskStore, claim_mutation, reclaim_mutation
from attoteam.tmux.base import PaneMultiplexer
from attoteam.tmux.client import TmuxMultiplexer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ShutdownReport:
    exited: list[str] = field(default_factory=list)
    killed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


def validate_config(config: TeamConfig, resolver: AgentResolver | None = None) -> None:
    if not config.team_name.strip():
        raise InvalidConfigError("team_name must not be empty")
    if config.worker_count < 1:
        raise InvalidConfigError(f"worker_count must be >= 1, got {config.worker_count}")
    if not config.tasks:
        raise InvalidConfigError("tasks must not be empty")
    for i, seed in enumerate(config.tasks, start=1):
        if not seed.subject.strip():
            raise InvalidConfigError(f"task #{i} has an empty subject")
    if not config.agent_types:
        raise InvalidConfigError("agent_types must list at least one agent kind")
    kinds = set(config.agent_types) | {c.agent_type for c in config.worker_interop_configs if c.agent_type}
    for kind in sorted(kinds):
        try:
            get_contract(kind)
        except ValueError as exc:
            raise InvalidConfigError(str(exc)) from None
        if resolver is not None and not resolver.is_available(kind):
            raise AgentUnavailableError(kind)


def _archive_stopped_team(layout: TeamLayout) -> None:
    stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    target = layout.root.with_name(f"{layout.root.name}.stopped-{stamp}")
    shutil.move(str(layout.root), str(target))
    logger.info("Archived previous run of %s to %s", layout.root.name, target)


async def start_team(
    config: TeamConfig,
    *,
    multiplexer: PaneMultiplexer | None = None,
    channel: TaskChannel | None = None,
    bridge: InteropBridge | None = None,
    resolver: AgentResolver | None = None,
    on_complete: CompletionCallback | None = None,
    watchdog: bool = True,
) -> TeamRuntime:
    """Create the team's panes, persist its tasks and roster, spawn workers.

    Workers that fail to spawn are reported in ``runtime.warnings`` and left
    out of ``runtime.worker_names``; the rest of the team keeps going.
    """
    resolver = resolver or AgentResolver()
    validate_config(config, resolver)

    cwd = str(Path(config.cwd).resolve())
    layout = TeamLayout.for_team(cwd, config.team_name)
    state = TeamStateStore(layout)
    existing = state.read_manifest()
    if existing is not None:
        if existing.phase != "stopped":
            raise InvalidConfigError(
                f"Team '{config.team_name}' is already {existing.phase}; use resume_team()"
            )
        _archive_stopped_team(layout)

    mux: PaneMultiplexer = multiplexer or TmuxMultiplexer(config.tmux)
    session = await mux.create_team_session(config.team_name, config.worker_count, cwd)
    state.write_manifest(
        TeamManifest(
            team_name=config.team_name,
            session_name=session.session_name,
            leader_pane_id=session.leader_pane_id,
            owns_session=session.owns_session,
            phase="starting",
            config={**config_to_dict(config), "cwd": cwd},
        )
    )
    state.append_event("team.starting", {"session_name": session.session_name, "workers": config.worker_count})

    tasks = TaskStore(layout)
    for i, seed in enumerate(config.tasks, start=1):
        tasks.create_task(TaskRecord(id=str(i), subject=seed.subject, description=seed.description))

    runtime = TeamRuntime(
        team_name=config.team_name,
        session_name=session.session_name,
        leader_pane_id=session.leader_pane_id,
        config=config,
        worker_names=[f"worker-{i + 1}" for i in range(config.worker_count)],
        cwd=cwd,
        owns_session=session.owns_session,
        multiplexer=mux,
        channel=channel,
        bridge=InteropBridgeAdapter(bridge or FileInteropBridge(layout)),
        resolver=resolver,
    )

    for i, name in enumerate(runtime.worker_names):
        pane_id = session.worker_pane_ids[i] if i < len(session.worker_pane_ids) else ""
        interop = config.interop_for(name)
        state.save_worker(
            WorkerRecord(
                worker_name=name,
                agent_kind=agent_kind_for(runtime, name, i),
                pane_id=pane_id,
                interop_mode=interop.interop_mode if interop is not None else None,
                index=i,
            )
        )
        if pane_id:
            runtime.worker_panes[name] = pane_id

    failed: list[str] = []
    for i, name in enumerate(list(runtime.worker_names)):
        try:
            await spawn_worker_for_task(runtime, name, i)
        except NoPendingTaskError:
            logger.info("%s has no task yet; idle until work frees up", name)
        except Exception as exc:
            message = f"{name}: spawn failed: {exc}"
            logger.warning("Worker %s failed to spawn: %s", name, exc)
            runtime.warnings.append(message)
            failed.append(name)
            await _retire_worker(runtime, name, kill_pane=True)

    runtime.worker_names = [n for n in runtime.worker_names if n not in failed]
    runtime.phase = "running"
    state.set_phase("running")
    logger.info(
        "Team %s running: %d/%d workers, %d tasks",
        config.team_name, len(runtime.worker_names), config.worker_count, len(config.tasks),
    )
    if watchdog:
        resume_monitoring(runtime, on_complete)
    return runtime


async def _retire_worker(runtime: TeamRuntime, worker_name: str, *, kill_pane: bool) -> None:
    """Mark a worker dead and hand back whatever task it holds."""
    runtime.active_workers.pop(worker_name, None)
    runtime.state_store.mark_worker(worker_name, "dead")
    for task in runtime.task_store.list_tasks():
        if task.status == "in_progress" and task.owner == worker_name:
            try:
                runtime.task_store.update_task(task.id, reclaim_mutation(expected_owner=worker_name))
            except TeamError as exc:
                logger.warning("Could not reclaim task %s from %s: %s", task.id, worker_name, exc)
    pane_id = runtime.worker_panes.get(worker_name)
    if kill_pane and pane_id and runtime.multiplexer is not None:
        try:
            await runtime.multiplexer.kill_pane(pane_id)
        except PaneUnavailableError as exc:
            logger.debug("kill-pane %s failed: %s", pane_id, exc)


async def fill_idle_workers(runtime: TeamRuntime) -> list[str]:
    """Give pending tasks to idle live workers. Returns the workers that got one."""
    started: list[str] = []
    async with runtime.assign_lock:
        if runtime.phase != "running":
            return started
        for name in runtime.idle_workers():
            record = runtime.state_store.get_worker(name)
            if record is None or record.status != "active":
                continue
            held = runtime.task_store.owned_by(name)
            if held:
                # assigned out of band since this runtime last looked
                runtime.active_workers[name] = ActiveWorker(task_id=held[0].id, pane_id=record.pane_id)
                continue
            try:
                await spawn_worker_for_task(runtime, name, record.index)
            except NoPendingTaskError:
                break
            except (TeamError, OSError, ValueError) as exc:
                logger.warning("Reassigning work to %s failed: %s", name, exc)
                continue
            started.append(name)
    return started


def resume_monitoring(
    runtime: TeamRuntime,
    on_complete: CompletionCallback | None = None,
) -> Callable[[], None]:
    """Start the watchdog for ``runtime``; completions free the worker for the next task."""

    async def _on_complete(event: WatchdogCompletionEvent) -> None:
        runtime.active_workers.pop(event.worker_name, None)
        await fill_idle_workers(runtime)
        if on_complete is not None:
            await _maybe_await(on_complete(event))

    async def _on_worker_dead(worker_name: str, reclaimed: list[str]) -> None:
        runtime.active_workers.pop(worker_name, None)
        if worker_name in runtime.worker_names:
            runtime.worker_names.remove(worker_name)
        if reclaimed:
            await fill_idle_workers(runtime)

    if runtime.stop_watchdog is not None:
        runtime.stop_watchdog()
    wd = CliWorkerWatchdog(
        runtime.team_name,
        runtime.worker_names,
        runtime.cwd,
        runtime.config.watchdog.interval_ms,
        _on_complete,
        multiplexer=runtime.multiplexer,
        channel=runtime.channel,
        bridge=runtime.bridge,
        config=runtime.config.watchdog,
        on_worker_dead=_on_worker_dead,
    )
    wd.start()
    runtime.watchdog = wd
    runtime.stop_watchdog = wd.stop
    if runtime.idle_workers() and runtime.task_store.counts().pending:
        # work reclaimed while nobody was watching
        fill = asyncio.get_running_loop().create_task(fill_idle_workers(runtime))
        runtime.background.add(fill)
        fill.add_done_callback(runtime.background.discard)
    return wd.stop


# ---------------------------------------------------------------------------
# monitor
# ---------------------------------------------------------------------------


def _load_config(manifest: TeamManifest, team_name: str, cwd: str) -> TeamConfig:
    try:
        return config_from_dict(manifest.config)
    except (InvalidConfigError, TypeError, ValueError) as exc:
        logger.debug("Manifest config for %s unreadable (%s); using defaults", team_name, exc)
        return TeamConfig(team_name=team_name, cwd=cwd)


async def monitor_team(
    team_name: str,
    cwd: str,
    worker_pane_ids: list[str] | None = None,
    *,
    multiplexer: PaneMultiplexer | None = None,
) -> TeamSnapshot:
    """Point-in-time snapshot built from disk plus fresh pane probes. Read-only."""
    state = TeamStateStore.for_team(cwd, team_name)
    manifest = state.read_manifest()
    if manifest is None:
        return TeamSnapshot(team_name=team_name, phase="unknown")
    config = _load_config(manifest, team_name, cwd)
    mux = multiplexer or TmuxMultiplexer(config.tmux)

    tasks = TaskStore(state.layout).list_tasks()
    owned = {t.owner: t.id for t in tasks if t.status == "in_progress" and t.owner}
    workers = state.list_workers()
    if worker_pane_ids:
        wanted = set(worker_pane_ids)
        workers = [w for w in workers if w.pane_id in wanted]

    async def _status(worker: WorkerRecord) -> WorkerStatus:
        task_id = owned.get(worker.worker_name)
        hb = state.read_heartbeat(worker.worker_name)
        last = hb.last_heartbeat_at if hb else None
        if worker.status != "active" or not worker.pane_id:
            return WorkerStatus(worker.worker_name, alive=False, pane_id=worker.pane_id,
                                current_task_id=task_id, last_heartbeat=last)
        try:
            pane_alive = await mux.is_alive(worker.pane_id)
        except PaneUnavailableError:
            # unknown this time; trust the roster rather than report a death
            pane_alive = True
        verdict = evaluate_liveness(
            pane_alive,
            last if task_id else None,
            stall_threshold_seconds=config.watchdog.stall_threshold_seconds,
            dead_threshold_seconds=config.watchdog.dead_threshold_seconds,
        )
        return WorkerStatus(
            worker.worker_name,
            alive=verdict.alive,
            pane_id=worker.pane_id,
            stalled=verdict.stalled,
            current_task_id=task_id,
            last_heartbeat=last,
        )

    statuses = list(await asyncio.gather(*(_status(w) for w in workers)))
    return TeamSnapshot(
        team_name=team_name,
        phase=manifest.phase,
        workers=statuses,
        task_counts=TaskCounts.from_tasks(tasks),
        dead_workers=[s.worker_name for s in statuses if not s.alive],
    )


# ---------------------------------------------------------------------------
# assign
# ---------------------------------------------------------------------------


async def assign_task(
    team_name: str,
    task_id: str,
    target_worker_name: str,
    pane_id: str,
    session_name: str,
    cwd: str,
    *,
    multiplexer: PaneMultiplexer | None = None,
    channel: TaskChannel | None = None,
) -> None:
    """Hand a pending task to a worker out of band (e.g. after a stall).

    Raises :class:`TaskNotPendingError` if the task is not pending and
    :class:`WorkerBusyError` if the worker already owns an in-progress task.
    If the pane cannot be triggered the claim is rolled back before
    re-raising.
    """
    layout = TeamLayout.for_team(cwd, team_name)
    tasks = TaskStore(layout)
    state = TeamStateStore(layout)
    mux = multiplexer or TmuxMultiplexer()
    ch = channel or FileTaskChannel(layout)

    current = tasks.get_task(task_id)
    if current.status != "pending" or current.owner is not None:
        raise TaskNotPendingError(task_id, current.status)
    held = tasks.owned_by(target_worker_name)
    if held:
        raise WorkerBusyError(target_worker_name, held[0].id)
    task = tasks.update_task(task_id, claim_mutation(target_worker_name))
    try:
        ch.clear_completion(target_worker_name)
        trigger = ch.deliver(target_worker_name, task)
        await mux.send_keys(pane_id, trigger)
    except (PaneUnavailableError, OSError):
        tasks.update_task(task_id, reclaim_mutation(expected_owner=target_worker_name))
        logger.warning("Could not trigger %s in %s; task %s back to pending", target_worker_name, pane_id, task_id)
        raise

    record = state.get_worker(target_worker_name) or WorkerRecord(
        worker_name=target_worker_name, agent_kind="claude", launched=True,
        index=len(state.list_workers()),
    )
    record.pane_id = pane_id
    record.status = "active"
    state.save_worker(record)
    state.write_heartbeat(HeartbeatRecord(worker_name=target_worker_name, last_heartbeat_at=utc_now_iso()))
    state.append_event(
        "task.assigned",
        {"task_id": task_id, "worker_name": target_worker_name, "pane_id": pane_id, "session_name": session_name},
    )
    logger.info("Assigned task %s to %s (%s)", task_id, target_worker_name, pane_id)


# ---------------------------------------------------------------------------
# shutdown
# ---------------------------------------------------------------------------


async def shutdown_team(
    team_name: str,
    session_name: str,
    cwd: str,
    timeout_ms: int | None = None,
    worker_pane_ids: list[str] | None = None,
    leader_pane_id: str | None = None,
    *,
    stop_watchdog: Callable[[], None] | None = None,
    multiplexer: PaneMultiplexer | None = None,
) -> ShutdownReport:
    """Stop the watchdog, ask panes to exit, force-kill stragglers, then the session.

    Every step is attempted even if earlier ones fail; failures are
    collected in the returned report.
    """
    report = ShutdownReport()
    if stop_watchdog is not None:
        try:
            stop_watchdog()
        except Exception as exc:
            report.errors.append(f"stop watchdog: {exc}")

    state = TeamStateStore.for_team(cwd, team_name)
    manifest = state.read_manifest()
    config = _load_config(manifest, team_name, cwd) if manifest else TeamConfig(team_name=team_name, cwd=cwd)
    if timeout_ms is None:
        timeout_ms = config.shutdown.timeout_ms
    mux = multiplexer or TmuxMultiplexer(config.tmux)
    state.set_phase("stopping")

    workers = state.list_workers()
    kind_by_pane = {w.pane_id: w.agent_kind for w in workers if w.pane_id}
    panes = list(worker_pane_ids) if worker_pane_ids else [w.pane_id for w in workers if w.pane_id]
    remaining = list(dict.fromkeys(panes))

    if timeout_ms > 0 and remaining:
        for pane_id in remaining:
            try:
                exit_cmd = get_contract(kind_by_pane.get(pane_id, "claude")).exit_command
                await mux.send_keys(pane_id, exit_cmd)
            except (PaneUnavailableError, ValueError) as exc:
                report.errors.append(f"{pane_id}: exit request failed: {exc}")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        poll = max(config.shutdown.poll_interval_ms / 1000.0, 0.01)
        while remaining and loop.time() < deadline:
            for pane_id in list(remaining):
                try:
                    alive = await mux.is_alive(pane_id)
                except PaneUnavailableError:
                    continue
                if not alive:
                    remaining.remove(pane_id)
                    report.exited.append(pane_id)
            if remaining:
                await asyncio.sleep(min(poll, max(0.0, deadline - loop.time())))

    for pane_id in remaining:
        try:
            await mux.kill_pane(pane_id)
            report.killed.append(pane_id)
        except PaneUnavailableError as exc:
            report.errors.append(f"{pane_id}: kill failed: {exc}")

    owns_session = manifest.owns_session if manifest is not None else ":" not in session_name
    leader = leader_pane_id or (manifest.leader_pane_id if manifest is not None else None)
    try:
        if owns_session and session_name:
            await mux.kill_session(session_name)
        elif leader and leader != os.environ.get("TMUX_PANE"):
            await mux.kill_pane(leader)
    except PaneUnavailableError as exc:
        report.errors.append(f"leader/session teardown failed: {exc}")

    for worker in workers:
        if worker.status == "active":
            state.mark_worker(worker.worker_name, "stopped")
    state.set_phase("stopped")
    state.append_event(
        "team.stopped",
        {"exited": report.exited, "killed": report.killed, "errors": report.errors},
    )
    if report.errors:
        logger.warning("Team %s shut down with %d error(s): %s", team_name, len(report.errors), report.errors)
    else:
        logger.info("Team %s shut down (%d exited, %d killed)", team_name, len(report.exited), len(report.killed))
    return report


# ---------------------------------------------------------------------------
# resume
# ---------------------------------------------------------------------------


async def resume_team(
    team_name: str,
    cwd: str,
    *,
    multiplexer: PaneMultiplexer | None = None,
    channel: TaskChannel | None = None,
    bridge: InteropBridge | None = None,
    resolver: AgentResolver | None = None,
) -> TeamRuntime | None:
    """Rebuild a :class:`TeamRuntime` from disk alone.

    Returns ``None`` when nothing is persisted for ``team_name`` or the team
    was shut down.  If its tmux session is gone, every worker is marked
    dead and all in-progress tasks go back to pending.  The watchdog is not
    restarted; call :func:`resume_monitoring`.
    """
    state = TeamStateStore.for_team(cwd, team_name)
    manifest = state.read_manifest()
    if manifest is None:
        return None
    if manifest.phase == "stopped":
        logger.info("Team %s was shut down; nothing to resume", team_name)
        return None

    config = _load_config(manifest, team_name, cwd)
    mux = multiplexer or TmuxMultiplexer(config.tmux)
    tasks = TaskStore(state.layout)
    workers = state.list_workers()

    try:
        session_alive = await mux.has_session(manifest.session_name)
    except PaneUnavailableError as exc:
        logger.warning("Could not probe session %s (%s); leaving workers as recorded", manifest.session_name, exc)
        session_alive = True
    if not session_alive:
        logger.warning("Session %s is gone; treating all workers of %s as dead", manifest.session_name, team_name)
        for w in workers:
            if w.status == "active":
                state.mark_worker(w.worker_name, "dead")
                w.status = "dead"

    live = {w.worker_name for w in workers if w.status == "active"}
    active: dict[str, ActiveWorker] = {}
    pane_by_worker = {w.worker_name: w.pane_id for w in workers}
    for task in tasks.list_tasks():
        if task.status != "in_progress" or task.owner is None:
            continue
        if task.owner in live:
            active[task.owner] = ActiveWorker(
                task_id=task.id,
                pane_id=pane_by_worker.get(task.owner, ""),
                started_at=_started_at(task),
            )
            continue
        try:
            tasks.update_task(task.id, reclaim_mutation(expected_owner=task.owner))
            logger.info("Reclaimed task %s from dead worker %s", task.id, task.owner)
        except TeamError as exc:
            logger.warning("Could not reclaim task %s: %s", task.id, exc)

    runtime = TeamRuntime(
        team_name=team_name,
        session_name=manifest.session_name,
        leader_pane_id=manifest.leader_pane_id,
        config=config,
        worker_names=[w.worker_name for w in workers if w.status == "active"],
        cwd=str(cwd),
        worker_panes={w.worker_name: w.pane_id for w in workers if w.status == "active" and w.pane_id},
        active_workers=active,
        phase=manifest.phase,
        owns_session=manifest.owns_session,
        multiplexer=mux,
        channel=channel,
        bridge=InteropBridgeAdapter(bridge or FileInteropBridge(state.layout)),
        resolver=resolver or AgentResolver(),
    )
    state.append_event("team.resumed", {"pid": os.getpid(), "session_alive": session_alive})
    return runtime


def _started_at(task: TaskRecord) -> float:
    try:
        return datetime.fromisoformat(task.updated_at).timestamp()
    except ValueError:
        return time.time()
