"""CLI entrypoint for attoteam."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any

import click

from attoteam.agents.resolver import detect_all_clis
from attoteam.config.loader import load_team_yaml
from attoteam.errors import TeamError
from attoteam.protocol.models import TeamLayout, TeamSnapshot
from attoteam.runtime.controller import (
    assign_task,
    monitor_team,
    resume_monitoring,
    resume_team,
    shutdown_team,
    start_team,
)
from attoteam.runtime.state import TeamRuntime
from attoteam.store.roster import TeamStateStore
from attoteam.utils.logger import bind_team, setup_logging

logger = logging.getLogger(__name__)


@click.group()
@click.option("--debug", "debug_flag", is_flag=True, help="Log per-tick watchdog detail")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
def main(debug_flag: bool, json_logs: bool) -> None:
    """Run a team of CLI coding agents in tmux panes."""
    setup_logging(debug=debug_flag, json_output=json_logs)


def _print_snapshot(snapshot: TeamSnapshot) -> None:
    c = snapshot.task_counts
    click.echo(
        f"team={snapshot.team_name} phase={snapshot.phase} "
        f"pending={c.pending} in_progress={c.in_progress} completed={c.completed} failed={c.failed}"
    )
    for w in snapshot.workers:
        state = "alive" if w.alive else "dead"
        if w.alive and w.stalled:
            state = "stalled"
        click.echo(f"  {w.worker_name:<12} {w.pane_id or '-':<6} {state:<8} task={w.current_task_id or '-'}")


async def _drive(runtime: TeamRuntime, poll_seconds: float) -> int:
    """Wait until no task is pending or in progress. Returns the number of failed tasks."""
    while True:
        counts = runtime.task_store.counts()
        if counts.pending == 0 and counts.in_progress == 0:
            return counts.failed
        if not runtime.worker_names:
            logger.warning("No live workers left in %s; %d task(s) unfinished", runtime.team_name, counts.pending)
            return counts.failed + counts.pending
        await asyncio.sleep(poll_seconds)


async def _run_until_done(runtime: TeamRuntime, keep: bool) -> int:
    try:
        failed = await _drive(runtime, runtime.config.watchdog.interval_ms / 1000.0)
    finally:
        if not keep:
            report = await shutdown_team(
                runtime.team_name,
                runtime.session_name,
                runtime.cwd,
                worker_pane_ids=runtime.worker_pane_ids,
                leader_pane_id=runtime.leader_pane_id,
                stop_watchdog=runtime.stop_watchdog,
                multiplexer=runtime.multiplexer,
            )
            for err in report.errors:
                click.echo(f"shutdown: {err}", err=True)
        elif runtime.stop_watchdog is not None:
            runtime.stop_watchdog()
    return 0 if failed == 0 else 1


@main.command("start")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--detach", is_flag=True, help="Spawn the workers and return without watching")
@click.option("--keep", is_flag=True, help="Leave panes running once all tasks are done")
def start_command(config_path: Path, detach: bool, keep: bool) -> None:
    """Start a team from a YAML config and watch it until every task is done."""
    try:
        cfg = load_team_yaml(config_path)
    except TeamError as exc:
        raise click.ClickException(str(exc)) from exc
    bind_team(cfg.team_name)

    async def _start() -> int:
        runtime = await start_team(cfg, watchdog=not detach)
        for warning in runtime.warnings:
            click.echo(f"warning: {warning}", err=True)
        click.echo(f"Team {cfg.team_name} running in {runtime.session_name} ({len(runtime.worker_names)} workers)")
        if detach:
            click.echo(f"Reattach: attoteam watch {cfg.team_name} --cwd {runtime.cwd}")
            return 0
        return await _run_until_done(runtime, keep)

    try:
        code = asyncio.run(_start())
    except TeamError as exc:
        raise click.ClickException(str(exc)) from exc
    raise SystemExit(code)


@main.command("watch")
@click.argument("team_name")
@click.option("--cwd", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--keep", is_flag=True, help="Leave panes running once all tasks are done")
def watch_command(team_name: str, cwd: Path, keep: bool) -> None:
    """Resume watching a team started by another (possibly dead) coordinator."""
    bind_team(team_name)

    async def _watch() -> int:
        runtime = await resume_team(team_name, str(cwd.resolve()))
        if runtime is None:
            raise click.ClickException(f"No running team named {team_name!r} under {cwd}")
        resume_monitoring(runtime)
        return await _run_until_done(runtime, keep)

    raise SystemExit(asyncio.run(_watch()))


@main.command("status")
@click.argument("team_name")
@click.option("--cwd", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON")
def status_command(team_name: str, cwd: Path, as_json: bool) -> None:
    """Show task counts and worker liveness."""
    snapshot = asyncio.run(monitor_team(team_name, str(cwd.resolve())))
    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return
    if snapshot.phase == "unknown":
        raise click.ClickException(f"No team named {team_name!r} under {cwd}")
    _print_snapshot(snapshot)


@main.command("assign")
@click.argument("team_name")
@click.argument("task_id")
@click.argument("worker_name")
@click.option("--cwd", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--pane", "pane_id", default=None, help="Target pane (default: the worker's roster pane)")
def assign_command(team_name: str, task_id: str, worker_name: str, cwd: Path, pane_id: str | None) -> None:
    """Hand a pending task to a specific worker."""
    root = str(cwd.resolve())
    state = TeamStateStore(TeamLayout.for_team(root, team_name))
    manifest = state.read_manifest()
    if manifest is None:
        raise click.ClickException(f"No team named {team_name!r} under {cwd}")
    if pane_id is None:
        record = state.get_worker(worker_name)
        if record is None or not record.pane_id:
            raise click.ClickException(f"{worker_name} has no pane; pass --pane")
        pane_id = record.pane_id
    try:
        asyncio.run(assign_task(team_name, task_id, worker_name, pane_id, manifest.session_name, root))
    except TeamError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Task {task_id} assigned to {worker_name} ({pane_id})")


@main.command("shutdown")
@click.argument("team_name")
@click.option("--cwd", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--timeout-ms", default=None, type=int, help="Grace period before force-kill (0 = kill now)")
def shutdown_command(team_name: str, cwd: Path, timeout_ms: int | None) -> None:
    """Ask every worker to exit, then kill what is left."""
    root = str(cwd.resolve())
    manifest = TeamStateStore(TeamLayout.for_team(root, team_name)).read_manifest()
    if manifest is None:
        raise click.ClickException(f"No team named {team_name!r} under {cwd}")
    report = asyncio.run(shutdown_team(team_name, manifest.session_name, root, timeout_ms))
    click.echo(f"exited={len(report.exited)} killed={len(report.killed)}")
    for err in report.errors:
        click.echo(f"  error: {err}", err=True)
    raise SystemExit(0 if report.ok else 1)


def _doctor_rows() -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    tmux = shutil.which("tmux")
    rows.append({"name": "tmux", "ok": tmux is not None, "details": tmux or "missing binary `tmux`"})
    for kind, info in detect_all_clis().items():
        rows.append({
            "name": kind,
            "ok": info.available,
            "details": (info.version or info.path or "") if info.available else f"missing binary `{kind}`",
        })
    return rows


@main.command("doctor")
def doctor_command() -> None:
    """Check that tmux and the agent CLIs are installed."""
    click.echo("Preflight:")
    tmux_ok = False
    any_agent = False
    for row in _doctor_rows():
        icon = "OK" if row["ok"] else "FAIL"
        click.echo(f"  [{icon}] {row['name']} - {row['details']}")
        if row["name"] == "tmux":
            tmux_ok = row["ok"]
        elif row["ok"]:
            any_agent = True
    raise SystemExit(0 if tmux_ok and any_agent else 1)
