"""Directory-based interop transport.

The coordinator drops ``interop/bootstrap.json`` in the worker directory for
an external translator to pick up; the translator reports back by writing
``interop/completion.json``, which is consumed on the first successful poll.
"""

from __future__ import annotations

from attoteam.channel.base import normalize_completion_status
from attoteam.protocol.io import read_json, write_json_atomic
from attoteam.protocol.models import CompletionResult, TaskRecord, TeamLayout, WorkerRecord, utc_now_iso


class FileInteropBridge:
    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    async def bridge_bootstrap_to_omx(self, worker: WorkerRecord, task: TaskRecord) -> None:
        write_json_atomic(
            self.layout.interop_dir(worker.worker_name) / "bootstrap.json",
            {
                "worker_name": worker.worker_name,
                "agent_kind": worker.agent_kind,
                "interop_mode": worker.interop_mode,
                "pane_id": worker.pane_id,
                "task": {"id": task.id, "subject": task.subject, "description": task.description},
                "inbox": str(self.layout.inbox(worker.worker_name)),
                "created_at": utc_now_iso(),
            },
        )

    async def poll_omx_completion(self, worker: WorkerRecord) -> CompletionResult | None:
        path = self.layout.interop_dir(worker.worker_name) / "completion.json"
        raw = read_json(path, default=None)
        if not isinstance(raw, dict):
            return None
        path.unlink(missing_ok=True)
        task_id = raw.get("task_id")
        return CompletionResult(
            task_id=str(task_id) if task_id is not None else None,
            status=normalize_completion_status(raw.get("status")),  # type: ignore[arg-type]
            summary=str(raw.get("summary", "")),
        )
