from __future__ import annotations

import json
import logging

import pytest

from attoteam.interop.bridge import InteropBridgeAdapter, requires_bridge
from attoteam.interop.file_bridge import FileInteropBridge
from attoteam.protocol.models import CompletionResult, TaskRecord, TeamLayout, WorkerRecord

from helpers.fakes import FailingBridge, RecordingBridge


def _worker() -> WorkerRecord:
    return WorkerRecord(worker_name="worker-1", agent_kind="codex", pane_id="%5", interop_mode="omx")


def _task() -> TaskRecord:
    return TaskRecord(id="1", subject="Port module", status="in_progress", owner="worker-1")


@pytest.mark.parametrize(
    ("mode", "expected"),
    [(None, False), ("", False), ("none", False), ("OFF", False), ("omx", True), ("file", True)],
)
def test_requires_bridge(mode: str | None, expected: bool) -> None:
    assert requires_bridge(mode) is expected


@pytest.mark.asyncio
async def test_bootstrap_success_sync_bridge() -> None:
    bridge = RecordingBridge()
    assert await InteropBridgeAdapter(bridge).bootstrap(_worker(), _task()) is True
    assert bridge.bootstrapped == [("worker-1", "1")]


@pytest.mark.asyncio
async def test_bootstrap_failure_is_one_warning(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="attoteam.interop.bridge")
    ok = await InteropBridgeAdapter(FailingBridge("socket closed")).bootstrap(_worker(), _task())
    assert ok is False
    records = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(records) == 1
    message = records[0].getMessage()
    assert "worker-1" in message
    assert "task 1" in message
    assert "socket closed" in message


@pytest.mark.asyncio
async def test_poll_failure_returns_none(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="attoteam.interop.bridge")
    assert await InteropBridgeAdapter(FailingBridge()).poll_completion(_worker()) is None
    assert any("worker-1" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_poll_rejects_wrong_type() -> None:
    class OddBridge(RecordingBridge):
        async def poll_omx_completion(self, worker: WorkerRecord):  # type: ignore[override]
            return {"status": "completed"}

    assert await InteropBridgeAdapter(OddBridge()).poll_completion(_worker()) is None


@pytest.mark.asyncio
async def test_default_adapter_is_noop() -> None:
    adapter = InteropBridgeAdapter()
    assert await adapter.bootstrap(_worker(), _task()) is True
    assert await adapter.poll_completion(_worker()) is None


@pytest.mark.asyncio
async def test_file_bridge(layout: TeamLayout) -> None:
    bridge = FileInteropBridge(layout)
    worker = _worker()
    await bridge.bridge_bootstrap_to_omx(worker, _task())
    boot = json.loads((layout.interop_dir("worker-1") / "bootstrap.json").read_text(encoding="utf-8"))
    assert boot["task"]["id"] == "1"
    assert boot["interop_mode"] == "omx"

    assert await bridge.poll_omx_completion(worker) is None
    completion = layout.interop_dir("worker-1") / "completion.json"
    completion.write_text(json.dumps({"task_id": "1", "status": "completed", "summary": "ok"}), encoding="utf-8")
    result = await bridge.poll_omx_completion(worker)
    assert result == CompletionResult(task_id="1", status="completed", summary="ok")
    assert not completion.exists()
