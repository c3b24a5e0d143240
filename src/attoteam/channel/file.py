"""File-backed task channel: ``inbox.md`` in, ``done.json`` sentinel out."""

from __future__ import annotations

import json
import logging
import time

from attoteam.channel.base import normalize_completion_status
from attoteam.protocol.io import write_text_atomic
from attoteam.protocol.models import CompletionResult, TaskRecord, TeamLayout

logger = logging.getLogger(__name__)

# A sentinel that fails to parse is assumed to be mid-write for this long.
PARTIAL_WRITE_GRACE_SECONDS = 5.0


class FileTaskChannel:
    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    def deliver(self, worker_name: str, task: TaskRecord) -> str:
        inbox = self.layout.inbox(worker_name)
        sentinel = self.layout.sentinel(worker_name)
        write_text_atomic(inbox, self._render_inbox(worker_name, task, str(sentinel)))
        return (
            f"Read {inbox} and complete task {task.id}. "
            f"When finished, write the completion JSON to {sentinel} as described there."
        )

    def read_completion(self, worker_name: str) -> CompletionResult | None:
        path = self.layout.sentinel(worker_name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.debug("Sentinel for %s unreadable: %s", worker_name, exc)
            return None
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            try:
                age = time.time() - path.stat().st_mtime
            except OSError:
                return None
            if age < PARTIAL_WRITE_GRACE_SECONDS:
                return None
            return CompletionResult(task_id=None, status="failed", summary=f"malformed sentinel: {exc}")
        if not isinstance(raw, dict):
            return CompletionResult(task_id=None, status="completed", summary=str(raw))
        task_id = raw.get("task_id", raw.get("taskId"))
        return CompletionResult(
            task_id=str(task_id) if task_id is not None else None,
            status=normalize_completion_status(raw.get("status")),  # type: ignore[arg-type]
            summary=str(raw.get("summary") or raw.get("message") or ""),
        )

    def clear_completion(self, worker_name: str) -> None:
        self.layout.sentinel(worker_name).unlink(missing_ok=True)

    @staticmethod
    def _render_inbox(worker_name: str, task: TaskRecord, sentinel: str) -> str:
        example = json.dumps({"task_id": task.id, "status": "completed", "summary": "<one line>"})
        return (
            f"# Task {task.id}: {task.subject}\n\n"
            f"Assigned to: {worker_name}\n\n"
            f"{task.description.strip()}\n\n"
            "## When you are done\n\n"
            f"Write a single JSON object to `{sentinel}`:\n\n"
            f"    {example}\n\n"
            'Use `"status": "failed"` if you could not complete the task. '
            "Do not start other work until a new task is delivered.\n"
        )
