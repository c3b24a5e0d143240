"""Attoteam error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    CONFIGURATION = "configuration"
    SCHEDULING = "scheduling"
    STORAGE = "storage"
    MULTIPLEXER = "multiplexer"
    INTEROP = "interop"
    INTERNAL = "internal"


class TeamError(Exception):
    """Base error for all team runtime exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class InvalidConfigError(TeamError):
    """Invalid team configuration supplied by the caller."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False, **kwargs)


class AgentUnavailableError(InvalidConfigError):
    """Agent CLI binary for a requested kind is not installed."""

    def __init__(self, agent_kind: str) -> None:
        super().__init__(
            f"Agent CLI '{agent_kind}' is not installed or not on PATH",
            details={"agent_kind": agent_kind},
        )
        self.agent_kind = agent_kind


class NoPendingTaskError(TeamError):
    """No pending, unowned task is left for a worker."""

    def __init__(self, team_name: str, worker_name: str | None = None) -> None:
        who = f" for {worker_name}" if worker_name else ""
        super().__init__(
            f"No pending task in team '{team_name}'{who}",
            category=ErrorCategory.SCHEDULING,
            details={"team_name": team_name, "worker_name": worker_name},
        )


class TaskNotPendingError(TeamError):
    """Task is not pending, so it cannot be (re)assigned."""

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(
            f"Task {task_id} is not pending (status={status})",
            category=ErrorCategory.SCHEDULING,
            details={"task_id": task_id, "status": status},
        )
        self.task_id = task_id
        self.status = status


class InvalidTransitionError(TeamError):
    """Requested task status transition is not allowed."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Task {task_id}: transition {current} -> {target} is not allowed",
            category=ErrorCategory.SCHEDULING,
            details={"task_id": task_id, "from": current, "to": target},
        )


class TaskNotFoundError(TeamError):
    """Task Store lookup miss."""

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task not found: {task_id}",
            category=ErrorCategory.STORAGE,
            details={"task_id": task_id},
        )
        self.task_id = task_id


class ConcurrentUpdateError(TeamError):
    """Task record changed on disk between read and write."""

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently",
            category=ErrorCategory.STORAGE,
            retryable=True,
            details={"task_id": task_id},
        )


class PaneUnavailableError(TeamError):
    """Pane multiplexer call failed or timed out."""

    def __init__(self, message: str, *, pane_id: str | None = None) -> None:
        super().__init__(
            message,
            category=ErrorCategory.MULTIPLEXER,
            retryable=True,
            details={"pane_id": pane_id},
        )
        self.pane_id = pane_id


class InteropBootstrapFailedError(TeamError):
    """Interop bridge bootstrap failed for a worker."""

    def __init__(self, worker_name: str, task_id: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Interop bootstrap failed for {worker_name} (task {task_id}): {cause}",
            category=ErrorCategory.INTEROP,
            details={"worker_name": worker_name, "task_id": task_id},
        )


# Short alias used throughout the storage layer.
NotFound = TaskNotFoundError


class WorkerBusyError(TeamError):
    """Worker already owns an in-progress task."""

    def __init__(self, worker_name: str, task_id: str) -> None:
        super().__init__(
            f"{worker_name} is already working on task {task_id}",
            category=ErrorCategory.SCHEDULING,
            details={"worker_name": worker_name, "task_id": task_id},
        )
        self.worker_name = worker_name
        self.task_id = task_id
