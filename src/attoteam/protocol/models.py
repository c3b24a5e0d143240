"""Filesystem protocol types for attoteam."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

TaskStatus = Literal["pending", "in_progress", "completed", "failed"]
WorkerState = Literal["active", "dead", "stopped"]
TeamPhase = Literal["starting", "running", "stopping", "stopped"]
CompletionStatus = Literal["completed", "failed"]

TASK_STATUSES: tuple[str, ...] = ("pending", "in_progress", "completed", "failed")
STATE_DIR = ".attoteam"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_iso(ts: str | None) -> datetime | None:
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


@dataclass(slots=True)
class TaskRecord:
    id: str
    subject: str
    description: str = ""
    status: TaskStatus = "pending"
    owner: str | None = None
    result: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskRecord:
        status = str(raw.get("status", "pending"))
        if status not in TASK_STATUSES:
            status = "pending"
        owner = raw.get("owner")
        return cls(
            id=str(raw.get("id", "")),
            subject=str(raw.get("subject", "")),
            description=str(raw.get("description", "")),
            status=status,  # type: ignore[arg-type]
            owner=str(owner) if owner else None,
            result=str(raw["result"]) if raw.get("result") is not None else None,
            created_at=str(raw.get("created_at", utc_now_iso())),
            updated_at=str(raw.get("updated_at", utc_now_iso())),
            version=int(raw.get("version", 0)),
        )


@dataclass(slots=True)
class WorkerRecord:
    """Persisted roster entry for one worker."""

    worker_name: str
    agent_kind: str
    pane_id: str = ""
    interop_mode: str | None = None
    status: WorkerState = "active"
    index: int = 0
    launched: bool = False  # agent binary started in the pane

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkerRecord:
        mode = raw.get("interop_mode")
        status = str(raw.get("status", "active"))
        return cls(
            worker_name=str(raw.get("worker_name", "")),
            agent_kind=str(raw.get("agent_kind", "claude")),
            pane_id=str(raw.get("pane_id", "") or ""),
            interop_mode=str(mode) if mode else None,
            status=status if status in ("active", "dead", "stopped") else "active",  # type: ignore[arg-type]
            index=int(raw.get("index", 0)),
            launched=bool(raw.get("launched", False)),
        )


@dataclass(slots=True)
class HeartbeatRecord:
    """Watchdog-owned liveness state of a worker pane."""

    worker_name: str
    last_heartbeat_at: str | None = None
    output_digest: str = ""
    stall_strikes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> HeartbeatRecord:
        return cls(
            worker_name=str(raw.get("worker_name", "")),
            last_heartbeat_at=raw.get("last_heartbeat_at") or None,
            output_digest=str(raw.get("output_digest", "")),
            stall_strikes=int(raw.get("stall_strikes", 0)),
        )


@dataclass(slots=True)
class TeamManifest:
    team_name: str
    session_name: str
    leader_pane_id: str
    owns_session: bool = False
    phase: TeamPhase = "starting"
    config: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TeamManifest:
        return cls(
            team_name=str(raw.get("team_name", "")),
            session_name=str(raw.get("session_name", "")),
            leader_pane_id=str(raw.get("leader_pane_id", "")),
            owns_session=bool(raw.get("owns_session", False)),
            phase=str(raw.get("phase", "running")),  # type: ignore[arg-type]
            config=raw.get("config", {}) if isinstance(raw.get("config"), dict) else {},
            created_at=str(raw.get("created_at", utc_now_iso())),
            updated_at=str(raw.get("updated_at", utc_now_iso())),
        )


@dataclass(slots=True)
class CompletionResult:
    task_id: str | None
    status: CompletionStatus
    summary: str = ""


@dataclass(slots=True)
class WatchdogCompletionEvent:
    worker_name: str
    task_id: str
    status: CompletionStatus
    summary: str = ""


@dataclass(slots=True)
class WorkerStatus:
    worker_name: str
    alive: bool
    pane_id: str
    stalled: bool = False
    current_task_id: str | None = None
    last_heartbeat: str | None = None


@dataclass(slots=True)
class TaskCounts:
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0

    @classmethod
    def from_tasks(cls, tasks: list[TaskRecord]) -> TaskCounts:
        counts = cls()
        for t in tasks:
            setattr(counts, t.status, getattr(counts, t.status) + 1)
        return counts


@dataclass(slots=True)
class TeamSnapshot:
    team_name: str
    phase: str
    workers: list[WorkerStatus] = field(default_factory=list)
    task_counts: TaskCounts = field(default_factory=TaskCounts)
    dead_workers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class TeamLayout:
    """Paths of one team's persisted state."""

    root: Path

    @classmethod
    def for_team(cls, cwd: str | Path, team_name: str) -> TeamLayout:
        return cls(root=Path(cwd) / STATE_DIR / "team" / team_name)

    @property
    def manifest(self) -> Path:
        return self.root / "manifest.json"

    @property
    def events(self) -> Path:
        return self.root / "events.jsonl"

    @property
    def tasks_dir(self) -> Path:
        return self.root / "tasks"

    @property
    def workers_dir(self) -> Path:
        return self.root / "workers"

    def task(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.json"

    def task_lock(self, task_id: str) -> Path:
        return self.tasks_dir / f".{task_id}.lock"

    def worker_dir(self, worker_name: str) -> Path:
        return self.workers_dir / worker_name

    def worker_record(self, worker_name: str) -> Path:
        return self.worker_dir(worker_name) / "worker.json"

    def inbox(self, worker_name: str) -> Path:
        return self.worker_dir(worker_name) / "inbox.md"

    def sentinel(self, worker_name: str) -> Path:
        return self.worker_dir(worker_name) / "done.json"

    def heartbeat(self, worker_name: str) -> Path:
        return self.worker_dir(worker_name) / "heartbeat.json"

    def interop_dir(self, worker_name: str) -> Path:
        return self.worker_dir(worker_name) / "interop"
