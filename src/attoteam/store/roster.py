"""Team manifest, worker roster, heartbeat and event-log persistence."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from attoteam.protocol.io import append_jsonl, read_json, write_json_atomic
from attoteam.protocol.models import (
    HeartbeatRecord,
    TeamLayout,
    TeamManifest,
    WorkerRecord,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class TeamStateStore:
    """Everything about a team other than its tasks."""

    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    @classmethod
    def for_team(cls, cwd: str | Path, team_name: str) -> TeamStateStore:
        return cls(TeamLayout.for_team(cwd, team_name))

    def exists(self) -> bool:
        return self.layout.manifest.exists()

    # -- manifest ---------------------------------------------------------

    def write_manifest(self, manifest: TeamManifest) -> None:
        manifest.updated_at = utc_now_iso()
        write_json_atomic(self.layout.manifest, manifest.to_dict())

    def read_manifest(self) -> TeamManifest | None:
        raw = read_json(self.layout.manifest, default=None)
        if not isinstance(raw, dict):
            return None
        return TeamManifest.from_dict(raw)

    def set_phase(self, phase: str) -> None:
        manifest = self.read_manifest()
        if manifest is None:
            logger.debug("No manifest at %s, phase %s not recorded", self.layout.manifest, phase)
            return
        if manifest.phase != phase:
            self.append_event("team.phase", {"from": manifest.phase, "to": phase})
        manifest.phase = phase  # type: ignore[assignment]
        self.write_manifest(manifest)

    # -- roster -----------------------------------------------------------

    def save_worker(self, record: WorkerRecord) -> None:
        write_json_atomic(self.layout.worker_record(record.worker_name), record.to_dict())

    def get_worker(self, worker_name: str) -> WorkerRecord | None:
        raw = read_json(self.layout.worker_record(worker_name), default=None)
        if not isinstance(raw, dict):
            return None
        return WorkerRecord.from_dict(raw)

    def list_workers(self) -> list[WorkerRecord]:
        if not self.layout.workers_dir.exists():
            return []
        workers: list[WorkerRecord] = []
        for path in self.layout.workers_dir.glob("*/worker.json"):
            raw = read_json(path, default=None)
            if isinstance(raw, dict) and raw.get("worker_name"):
                workers.append(WorkerRecord.from_dict(raw))
        workers.sort(key=lambda w: (w.index, w.worker_name))
        return workers

    def mark_worker(self, worker_name: str, status: str) -> WorkerRecord | None:
        record = self.get_worker(worker_name)
        if record is None:
            return None
        record.status = status  # type: ignore[assignment]
        self.save_worker(record)
        return record

    # -- heartbeats -------------------------------------------------------

    def read_heartbeat(self, worker_name: str) -> HeartbeatRecord | None:
        raw = read_json(self.layout.heartbeat(worker_name), default=None)
        if not isinstance(raw, dict):
            return None
        return HeartbeatRecord.from_dict(raw)

    def write_heartbeat(self, record: HeartbeatRecord) -> None:
        write_json_atomic(self.layout.heartbeat(record.worker_name), record.to_dict())

    # -- events -----------------------------------------------------------

    def append_event(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            append_jsonl(
                self.layout.events,
                {"timestamp": utc_now_iso(), "type": event_type, "payload": payload},
            )
        except OSError as exc:
            logger.debug("Event log write failed: %s", exc)
