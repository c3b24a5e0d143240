"""Task Store: one JSON file per task, updated by atomic rename.

Every write is durable before the call returns, which is what lets a
second coordinator process rebuild a team with :func:`resume_team`.
Updates hold the task's flock from read to rename, so two coordinators
never interleave on one record.  Writers that skip the lock are caught by
the ``version`` re-check just before the rename: a mismatch raises
:class:`ConcurrentUpdateError`, which is retried once before surfacing.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Callable

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from attoteam.errors import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    TaskNotFoundError,
    TaskNotPendingError,
)
from attoteam.protocol.io import read_json, write_json_atomic
from attoteam.protocol.locks import locked_file
from attoteam.protocol.models import TaskCounts, TaskRecord, TeamLayout, utc_now_iso

logger = logging.getLogger(__name__)

TaskMutation = Callable[[TaskRecord], "TaskRecord | None"]

TRANSITIONS: dict[str, set[str]] = {
    "pending": {"in_progress"},
    "in_progress": {"completed", "failed", "pending"},
    "completed": set(),
    "failed": set(),
}


def _id_key(task_id: str) -> tuple[int, int | str]:
    return (0, int(task_id)) if task_id.isdigit() else (1, task_id)


def check_invariants(before: TaskRecord, after: TaskRecord) -> None:
    if after.status != before.status and after.status not in TRANSITIONS[before.status]:
        raise InvalidTransitionError(before.id, before.status, after.status)
    if (after.owner is not None) != (after.status == "in_progress"):
        raise InvalidTransitionError(
            before.id, before.status, f"{after.status} (owner={after.owner!r})"
        )


class TaskStore:
    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    @classmethod
    def for_team(cls, cwd: str | Path, team_name: str) -> TaskStore:
        return cls(TeamLayout.for_team(cwd, team_name))

    def create_task(self, task: TaskRecord) -> TaskRecord:
        path = self.layout.task(task.id)
        if path.exists():
            raise ValueError(f"Task {task.id} already exists")
        if (task.owner is not None) != (task.status == "in_progress"):
            raise InvalidTransitionError(task.id, "new", task.status)
        write_json_atomic(path, task.to_dict())
        return task

    def get_task(self, task_id: str) -> TaskRecord:
        path = self.layout.task(task_id)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise TaskNotFoundError(task_id) from None
        return TaskRecord.from_dict(raw)

    def list_tasks(self) -> list[TaskRecord]:
        if not self.layout.tasks_dir.exists():
            return []
        tasks: list[TaskRecord] = []
        for path in self.layout.tasks_dir.glob("*.json"):
            raw = read_json(path, default=None)
            if isinstance(raw, dict) and raw.get("id"):
                tasks.append(TaskRecord.from_dict(raw))
        tasks.sort(key=lambda t: _id_key(t.id))
        return tasks

    def owned_by(self, owner: str) -> list[TaskRecord]:
        return [t for t in self.list_tasks() if t.status == "in_progress" and t.owner == owner]

    def next_task_id(self) -> str:
        numeric = [int(t.id) for t in self.list_tasks() if t.id.isdigit()]
        return str(max(numeric, default=0) + 1)

    def counts(self) -> TaskCounts:
        return TaskCounts.from_tasks(self.list_tasks())

    @retry(
        retry=retry_if_exception_type(ConcurrentUpdateError),
        stop=stop_after_attempt(2),
        reraise=True,
    )
    def update_task(self, task_id: str, mutation: TaskMutation) -> TaskRecord:
        """Apply ``mutation`` to the stored record and persist it atomically.

        ``mutation`` receives a copy of the current record and may either
        mutate it in place or return a replacement.  Exceptions raised by the
        mutation (e.g. :class:`TaskNotPendingError`) abort the update.
        """
        if not self.layout.task(task_id).exists():
            raise TaskNotFoundError(task_id)
        with locked_file(self.layout.task_lock(task_id)):
            current = self.get_task(task_id)
            working = copy.deepcopy(current)
            returned = mutation(working)
            updated = returned if returned is not None else working
            check_invariants(current, updated)

            on_disk = read_json(self.layout.task(task_id), default=None)
            if not isinstance(on_disk, dict):
                raise TaskNotFoundError(task_id)
            if int(on_disk.get("version", 0)) != current.version:
                logger.debug("Task %s version moved under us, retrying", task_id)
                raise ConcurrentUpdateError(task_id)

            updated.id = current.id
            updated.version = current.version + 1
            updated.updated_at = utc_now_iso()
            write_json_atomic(self.layout.task(task_id), updated.to_dict())
        return updated


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def claim_mutation(owner: str) -> TaskMutation:
    def _claim(task: TaskRecord) -> TaskRecord:
        if task.status != "pending" or task.owner is not None:
            raise TaskNotPendingError(task.id, task.status)
        task.status = "in_progress"
        task.owner = owner
        task.result = None
        return task

    return _claim


def finish_mutation(status: str, summary: str = "", *, expected_owner: str | None = None) -> TaskMutation:
    def _finish(task: TaskRecord) -> TaskRecord:
        if task.status != "in_progress":
            raise InvalidTransitionError(task.id, task.status, status)
        if expected_owner is not None and task.owner != expected_owner:
            raise InvalidTransitionError(task.id, f"in_progress[{task.owner}]", status)
        task.status = status  # type: ignore[assignment]
        task.owner = None
        task.result = summary
        return task

    return _finish


def reclaim_mutation(*, expected_owner: str | None = None) -> TaskMutation:
    def _reclaim(task: TaskRecord) -> TaskRecord:
        if task.status != "in_progress":
            raise InvalidTransitionError(task.id, task.status, "pending")
        if expected_owner is not None and task.owner != expected_owner:
            raise InvalidTransitionError(task.id, f"in_progress[{task.owner}]", "pending")
        task.status = "pending"
        task.owner = None
        return task

    return _reclaim
