"""In-process queue backend for task delivery and completion reporting.

Used when workers live in the same process or talk to the coordinator
over a socket bridge that feeds :meth:`post_completion`.
"""

from __future__ import annotations

import threading
from collections import deque

from attoteam.channel.base import normalize_completion_status
from attoteam.protocol.models import CompletionResult, TaskRecord


class QueueTaskChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inboxes: dict[str, deque[TaskRecord]] = {}
        self._completions: dict[str, CompletionResult] = {}

    def deliver(self, worker_name: str, task: TaskRecord) -> str:
        with self._lock:
            self._inboxes.setdefault(worker_name, deque()).append(task)
        return f"Task {task.id} is waiting in your queue: {task.subject}"

    def next_task(self, worker_name: str) -> TaskRecord | None:
        with self._lock:
            inbox = self._inboxes.get(worker_name)
            return inbox.popleft() if inbox else None

    def post_completion(self, worker_name: str, task_id: str | None, status: str, summary: str = "") -> None:
        result = CompletionResult(
            task_id=task_id,
            status=normalize_completion_status(status),  # type: ignore[arg-type]
            summary=summary,
        )
        with self._lock:
            self._completions[worker_name] = result

    def read_completion(self, worker_name: str) -> CompletionResult | None:
        with self._lock:
            return self._completions.get(worker_name)

    def clear_completion(self, worker_name: str) -> None:
        with self._lock:
            self._completions.pop(worker_name, None)
