"""Task channel interface."""

from __future__ import annotations

from typing import Protocol

from attoteam.protocol.models import CompletionResult, TaskRecord


class TaskChannel(Protocol):
    def deliver(self, worker_name: str, task: TaskRecord) -> str:
        """Hand ``task`` to the worker; return the trigger text for its pane."""
        ...

    def read_completion(self, worker_name: str) -> CompletionResult | None: ...

    def clear_completion(self, worker_name: str) -> None: ...


def normalize_completion_status(value: object) -> str:
    return "failed" if str(value or "").strip().lower() in {"failed", "failure", "error"} else "completed"
