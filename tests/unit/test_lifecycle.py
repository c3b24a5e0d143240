"""Tests for spawn_worker_for_task."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from attoteam.agents.resolver import AgentResolver
from attoteam.config.schema import TaskSeed, TeamConfig, WorkerInteropConfig
from attoteam.errors import InvalidConfigError, NoPendingTaskError, PaneUnavailableError, WorkerBusyError
from attoteam.interop.bridge import InteropBridgeAdapter
from attoteam.interop.file_bridge import FileInteropBridge
from attoteam.protocol.models import TaskRecord
from attoteam.runtime.lifecycle import spawn_worker_for_task
from attoteam.runtime.state import TeamRuntime
from attoteam.store.tasks import finish_mutation

from helpers.fakes import FailingBridge, FakeMultiplexer, RecordingBridge


def _runtime(
    tmp_path: Path,
    mux: FakeMultiplexer,
    resolver: AgentResolver,
    *,
    tasks: int = 2,
    interop: list[WorkerInteropConfig] | None = None,
    bridge: object | None = None,
) -> TeamRuntime:
    cfg = TeamConfig(
        team_name="alpha",
        worker_count=1,
        agent_types=["claude", "gemini"],
        tasks=[TaskSeed(f"task {i}") for i in range(1, tasks + 1)],
        cwd=str(tmp_path),
        worker_interop_configs=interop or [],
    )
    runtime = TeamRuntime(
        team_name="alpha",
        session_name="attoteam-team-alpha",
        leader_pane_id="%0",
        config=cfg,
        worker_names=[],
        cwd=str(tmp_path),
        multiplexer=mux,
        bridge=InteropBridgeAdapter(bridge) if bridge is not None else None,  # type: ignore[arg-type]
        resolver=resolver,
    )
    for i, seed in enumerate(cfg.tasks, start=1):
        runtime.task_store.create_task(TaskRecord(id=str(i), subject=seed.subject))
    return runtime


@pytest.mark.asyncio
async def test_spawn_claims_first_pending_and_launches_agent(
    tmp_path: Path, resolver: AgentResolver
) -> None:
    mux = FakeMultiplexer(next_pane=10)
    runtime = _runtime(tmp_path, mux, resolver)

    pane_id = await spawn_worker_for_task(runtime, "worker-1", 0)

    assert pane_id == "%10"
    task = runtime.task_store.get_task("1")
    assert (task.status, task.owner) == ("in_progress", "worker-1")
    assert runtime.task_store.get_task("2").status == "pending"
    assert runtime.active_workers["worker-1"].task_id == "1"
    assert runtime.worker_names == ["worker-1"]
    assert mux.calls[0] == ("create_pane", ("%0", str(tmp_path)))

    (sent_pane, command), = mux.sent
    assert sent_pane == "%10"
    assert "/usr/local/bin/claude" in command
    assert "--dangerously-skip-permissions" in command
    assert "ATTOTEAM_WORKER=worker-1" in command
    assert str(runtime.layout.inbox("worker-1")) in command

    record = runtime.state_store.get_worker("worker-1")
    assert record is not None
    assert record.pane_id == "%10"
    assert record.launched is True
    assert runtime.state_store.read_heartbeat("worker-1") is not None
    assert runtime.layout.inbox("worker-1").exists()


@pytest.mark.asyncio
async def test_second_spawn_reuses_pane_and_only_sends_trigger(
    tmp_path: Path, resolver: AgentResolver
) -> None:
    mux = FakeMultiplexer(next_pane=10)
    runtime = _runtime(tmp_path, mux, resolver)
    await spawn_worker_for_task(runtime, "worker-1", 0)
    runtime.task_store.update_task("1", finish_mutation("completed", "done"))

    pane_id = await spawn_worker_for_task(runtime, "worker-1", 0)

    assert pane_id == "%10"
    assert mux.call_names().count("create_pane") == 1
    _, trigger = mux.sent[-1]
    assert trigger.startswith("Read ")
    assert "task 2" in trigger
    assert runtime.task_store.get_task("2").owner == "worker-1"


@pytest.mark.asyncio
async def test_agent_kind_follows_task_index(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer()
    runtime = _runtime(tmp_path, mux, resolver)
    await spawn_worker_for_task(runtime, "worker-2", 1)
    record = runtime.state_store.get_worker("worker-2")
    assert record is not None
    assert record.agent_kind == "gemini"
    assert "--prompt-interactive" in mux.sent[0][1]


@pytest.mark.asyncio
async def test_no_pending_task(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer()
    runtime = _runtime(tmp_path, mux, resolver, tasks=1)
    await spawn_worker_for_task(runtime, "worker-1", 0)
    with pytest.raises(NoPendingTaskError):
        await spawn_worker_for_task(runtime, "worker-2", 1)
    assert mux.call_names().count("create_pane") == 1
    assert runtime.state_store.get_worker("worker-2") is None


@pytest.mark.asyncio
async def test_pane_failure_leaves_claim_for_reclaim(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer(fail_create=True)
    runtime = _runtime(tmp_path, mux, resolver)
    with pytest.raises(PaneUnavailableError):
        await spawn_worker_for_task(runtime, "worker-1", 0)
    task = runtime.task_store.get_task("1")
    assert (task.status, task.owner) == ("in_progress", "worker-1")
    assert "worker-1" not in runtime.active_workers


@pytest.mark.asyncio
async def test_interop_bootstrap_failure_is_fail_open(
    tmp_path: Path, resolver: AgentResolver, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING)
    mux = FakeMultiplexer(next_pane=77)
    bridge = FailingBridge("bridge bootstrap failed")
    runtime = _runtime(
        tmp_path,
        mux,
        resolver,
        interop=[WorkerInteropConfig("worker-1", agent_type="codex", interop_mode="omx")],
        bridge=bridge,
    )

    pane_id = await spawn_worker_for_task(runtime, "worker-1", 0)

    assert pane_id == "%77"
    assert bridge.bootstraps == 1
    task = runtime.task_store.get_task("1")
    assert task.status == "in_progress"
    assert task.owner == "worker-1"
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "worker-1" in warnings[0].getMessage()
    assert "task 1" in warnings[0].getMessage()
    assert runtime.active_workers["worker-1"].pane_id == "%77"


@pytest.mark.asyncio
async def test_bridge_only_for_interop_workers(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer()
    bridge = RecordingBridge()
    runtime = _runtime(
        tmp_path,
        mux,
        resolver,
        interop=[WorkerInteropConfig("worker-2", interop_mode="omx")],
        bridge=bridge,
    )
    await spawn_worker_for_task(runtime, "worker-1", 0)
    await spawn_worker_for_task(runtime, "worker-2", 1)
    assert bridge.bootstrapped == [("worker-2", "2")]


@pytest.mark.asyncio
async def test_busy_worker_not_given_a_second_task(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer()
    runtime = _runtime(tmp_path, mux, resolver)
    await spawn_worker_for_task(runtime, "worker-1", 0)
    sent = len(mux.sent)

    with pytest.raises(WorkerBusyError) as excinfo:
        await spawn_worker_for_task(runtime, "worker-1", 0)

    assert excinfo.value.task_id == "1"
    assert runtime.task_store.get_task("2").status == "pending"
    assert len(mux.sent) == sent


@pytest.mark.asyncio
async def test_default_bridge_writes_bootstrap_file(tmp_path: Path, resolver: AgentResolver) -> None:
    mux = FakeMultiplexer()
    runtime = _runtime(
        tmp_path,
        mux,
        resolver,
        interop=[WorkerInteropConfig("worker-1", agent_type="codex", interop_mode="omx")],
    )
    assert runtime.bridge is not None
    assert isinstance(runtime.bridge.bridge, FileInteropBridge)

    await spawn_worker_for_task(runtime, "worker-1", 0)

    bootstrap = runtime.layout.interop_dir("worker-1") / "bootstrap.json"
    assert '"id": "1"' in bootstrap.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_runtime_without_multiplexer_rejected(tmp_path: Path, resolver: AgentResolver) -> None:
    runtime = _runtime(tmp_path, FakeMultiplexer(), resolver)
    runtime.multiplexer = None
    with pytest.raises(InvalidConfigError):
        await spawn_worker_for_task(runtime, "worker-1", 0)
    assert runtime.task_store.get_task("1").status == "pending"
