"""Tests for attoteam.store.tasks.TaskStore."""

from __future__ import annotations

import fcntl
import json
import threading

import pytest

from attoteam.errors import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    NotFound,
    TaskNotFoundError,
    TaskNotPendingError,
)
from attoteam.protocol.models import TaskRecord
from attoteam.store import tasks as tasks_module
from attoteam.store.tasks import TaskStore, claim_mutation, finish_mutation, reclaim_mutation


def _seed(store: TaskStore, *subjects: str) -> None:
    for i, subject in enumerate(subjects, start=1):
        store.create_task(TaskRecord(id=str(i), subject=subject))


class TestCreateAndRead:
    def test_roundtrip_through_disk(self, task_store: TaskStore) -> None:
        task_store.create_task(TaskRecord(id="1", subject="Write parser", description="lexer first"))
        task = task_store.get_task("1")
        assert task.subject == "Write parser"
        assert task.description == "lexer first"
        assert task.status == "pending"
        assert task.owner is None
        assert task_store.layout.task("1").exists()

    def test_duplicate_id_rejected(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        with pytest.raises(ValueError):
            task_store.create_task(TaskRecord(id="1", subject="again"))

    def test_missing_task(self, task_store: TaskStore) -> None:
        with pytest.raises(TaskNotFoundError):
            task_store.get_task("42")
        assert NotFound is TaskNotFoundError

    def test_list_orders_numeric_ids_numerically(self, task_store: TaskStore) -> None:
        for tid in ("10", "2", "1", "extra"):
            task_store.create_task(TaskRecord(id=tid, subject=f"t{tid}"))
        assert [t.id for t in task_store.list_tasks()] == ["1", "2", "10", "extra"]

    def test_list_empty_when_no_dir(self, task_store: TaskStore) -> None:
        assert task_store.list_tasks() == []
        assert task_store.next_task_id() == "1"

    def test_next_task_id_and_counts(self, task_store: TaskStore) -> None:
        _seed(task_store, "a", "b", "c")
        task_store.update_task("2", claim_mutation("worker-1"))
        assert task_store.next_task_id() == "4"
        counts = task_store.counts()
        assert (counts.pending, counts.in_progress, counts.completed, counts.failed) == (2, 1, 0, 0)

    def test_corrupt_file_skipped_in_listing(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        task_store.layout.task("9").write_text("{not json", encoding="utf-8")
        assert [t.id for t in task_store.list_tasks()] == ["1"]


class TestTransitions:
    def test_claim_then_complete(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        claimed = task_store.update_task("1", claim_mutation("worker-1"))
        assert claimed.status == "in_progress"
        assert claimed.owner == "worker-1"
        assert claimed.version == 1

        done = task_store.update_task("1", finish_mutation("completed", "all green", expected_owner="worker-1"))
        assert done.status == "completed"
        assert done.owner is None
        assert done.result == "all green"
        assert task_store.get_task("1").version == 2

    def test_claim_non_pending_raises(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        task_store.update_task("1", claim_mutation("worker-1"))
        with pytest.raises(TaskNotPendingError):
            task_store.update_task("1", claim_mutation("worker-2"))
        assert task_store.get_task("1").owner == "worker-1"

    def test_reclaim_returns_to_pending(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        task_store.update_task("1", claim_mutation("worker-1"))
        task = task_store.update_task("1", reclaim_mutation(expected_owner="worker-1"))
        assert task.status == "pending"
        assert task.owner is None

    def test_reclaim_wrong_owner_rejected(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        task_store.update_task("1", claim_mutation("worker-1"))
        with pytest.raises(InvalidTransitionError):
            task_store.update_task("1", reclaim_mutation(expected_owner="worker-2"))

    def test_terminal_states_are_final(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        task_store.update_task("1", claim_mutation("worker-1"))
        task_store.update_task("1", finish_mutation("failed", "boom"))
        with pytest.raises(TaskNotPendingError):
            task_store.update_task("1", claim_mutation("worker-1"))

        def _reopen(task: TaskRecord) -> None:
            task.status = "pending"

        with pytest.raises(InvalidTransitionError):
            task_store.update_task("1", _reopen)

    def test_owner_without_in_progress_rejected(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")

        def _sneaky(task: TaskRecord) -> None:
            task.owner = "worker-1"

        with pytest.raises(InvalidTransitionError):
            task_store.update_task("1", _sneaky)
        assert task_store.get_task("1").owner is None

    def test_in_place_mutation_is_persisted(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")

        def _edit(task: TaskRecord) -> None:
            task.description = "more detail"

        task_store.update_task("1", _edit)
        assert task_store.get_task("1").description == "more detail"


class TestConcurrentUpdate:
    def _bump_on_disk(self, store: TaskStore, task_id: str) -> None:
        path = store.layout.task(task_id)
        raw = json.loads(path.read_text(encoding="utf-8"))
        raw["version"] += 1
        raw["description"] = "edited elsewhere"
        path.write_text(json.dumps(raw), encoding="utf-8")

    def test_conflict_retried_once(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        calls = {"n": 0}
        claim = claim_mutation("worker-1")

        def _racy(task: TaskRecord) -> TaskRecord:
            calls["n"] += 1
            if calls["n"] == 1:
                self._bump_on_disk(task_store, "1")
            return claim(task)

        task = task_store.update_task("1", _racy)
        assert calls["n"] == 2
        assert task.owner == "worker-1"
        assert task.description == "edited elsewhere"
        assert task.version == 2

    def test_second_conflict_surfaces(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        calls = {"n": 0}

        def _always_racy(task: TaskRecord) -> None:
            calls["n"] += 1
            self._bump_on_disk(task_store, "1")

        with pytest.raises(ConcurrentUpdateError):
            task_store.update_task("1", _always_racy)
        assert calls["n"] == 2


class TestTaskLock:
    def test_lock_held_across_version_check_and_rename(
        self, task_store: TaskStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _seed(task_store, "a")
        seen: list[str] = []
        real_write = tasks_module.write_json_atomic

        def _write_while_probing_lock(path, data):  # type: ignore[no-untyped-def]
            with task_store.layout.task_lock("1").open("a+", encoding="utf-8") as handle:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    seen.append("held")
                else:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                    seen.append("free")
            real_write(path, data)

        monkeypatch.setattr(tasks_module, "write_json_atomic", _write_while_probing_lock)
        task_store.update_task("1", claim_mutation("worker-1"))
        assert seen == ["held"]

    def test_racing_claims_have_exactly_one_winner(self, task_store: TaskStore) -> None:
        _seed(task_store, "a")
        barrier = threading.Barrier(2)
        winners: list[str] = []
        losers: list[str] = []

        def _claim(owner: str) -> None:
            store = TaskStore(task_store.layout)
            barrier.wait()
            try:
                store.update_task("1", claim_mutation(owner))
                winners.append(owner)
            except TaskNotPendingError:
                losers.append(owner)

        threads = [threading.Thread(target=_claim, args=(name,)) for name in ("worker-A", "worker-B")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 1
        task = task_store.get_task("1")
        assert task.owner == winners[0]
        assert task.version == 1

    def test_lock_files_not_listed_as_tasks(self, task_store: TaskStore) -> None:
        _seed(task_store, "a", "b")
        task_store.update_task("1", claim_mutation("worker-1"))
        assert task_store.layout.task_lock("1").exists()
        assert [t.id for t in task_store.list_tasks()] == ["1", "2"]

    def test_owned_by(self, task_store: TaskStore) -> None:
        _seed(task_store, "a", "b", "c")
        task_store.update_task("2", claim_mutation("worker-1"))
        assert [t.id for t in task_store.owned_by("worker-1")] == ["2"]
        assert task_store.owned_by("worker-2") == []
