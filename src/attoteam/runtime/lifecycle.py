"""Worker lifecycle: claim a task, start (or nudge) the agent in its pane."""

from __future__ import annotations

import logging

from attoteam.agents.contracts import get_contract
from attoteam.errors import InvalidConfigError, NoPendingTaskError, TaskNotPendingError, WorkerBusyError
from attoteam.interop.bridge import requires_bridge
from attoteam.protocol.models import HeartbeatRecord, TaskRecord, WorkerRecord, utc_now_iso
from attoteam.runtime.state import ActiveWorker, TeamRuntime
from attoteam.store.tasks import claim_mutation

logger = logging.getLogger(__name__)


def agent_kind_for(runtime: TeamRuntime, worker_name: str, index: int) -> str:
    interop = runtime.config.interop_for(worker_name)
    if interop is not None and interop.agent_type:
        return interop.agent_type
    kinds = runtime.config.agent_types or ["claude"]
    return kinds[index % len(kinds)]


def worker_record_for(runtime: TeamRuntime, worker_name: str, index: int) -> WorkerRecord:
    """Roster entry for ``worker_name``: persisted one if any, else a fresh one."""
    record = runtime.state_store.get_worker(worker_name)
    if record is not None:
        return record
    interop = runtime.config.interop_for(worker_name)
    return WorkerRecord(
        worker_name=worker_name,
        agent_kind=agent_kind_for(runtime, worker_name, index),
        pane_id=runtime.worker_panes.get(worker_name, ""),
        interop_mode=interop.interop_mode if interop is not None else None,
        index=index,
    )


def claim_next_pending(runtime: TeamRuntime, worker_name: str) -> TaskRecord:
    """Claim the first-created pending task for ``worker_name``.

    Candidates that another writer claims between listing and update are
    skipped; :class:`NoPendingTaskError` once none remain.
    """
    for task in runtime.task_store.list_tasks():
        if task.status != "pending" or task.owner is not None:
            continue
        try:
            return runtime.task_store.update_task(task.id, claim_mutation(worker_name))
        except TaskNotPendingError:
            logger.debug("Task %s claimed elsewhere, trying next", task.id)
    raise NoPendingTaskError(runtime.team_name, worker_name)


async def spawn_worker_for_task(runtime: TeamRuntime, worker_name: str, task_index: int) -> str:
    """Claim the next pending task for ``worker_name`` and get it working on it.

    The claim is persisted before the pane is touched, so a failure after
    that point leaves the task attributed to the worker for the watchdog (or
    a later resume) to reclaim.  Raises :class:`WorkerBusyError` if the worker
    already owns an in-progress task.  Returns the worker's pane id.
    """
    mux, channel, bridge = runtime.multiplexer, runtime.channel, runtime.bridge
    if mux is None or channel is None or bridge is None:
        raise InvalidConfigError(f"Team {runtime.team_name} runtime has no multiplexer, channel or bridge")
    held = runtime.task_store.owned_by(worker_name)
    if held:
        raise WorkerBusyError(worker_name, held[0].id)
    record = worker_record_for(runtime, worker_name, task_index)
    task = claim_next_pending(runtime, worker_name)
    record.status = "active"
    runtime.state_store.save_worker(record)

    pane_id = runtime.worker_panes.get(worker_name) or record.pane_id
    if not pane_id:
        pane_id = await mux.create_pane(runtime.leader_pane_id, runtime.cwd)
        record.pane_id = pane_id
        runtime.state_store.save_worker(record)
    runtime.worker_panes[worker_name] = pane_id

    channel.clear_completion(worker_name)
    trigger = channel.deliver(worker_name, task)
    if record.launched:
        await mux.send_keys(pane_id, trigger)
    else:
        contract = get_contract(record.agent_kind)
        command = contract.build_shell_command(
            runtime.resolver.resolve(record.agent_kind),
            cwd=runtime.cwd,
            env={
                "ATTOTEAM_TEAM": runtime.team_name,
                "ATTOTEAM_WORKER": worker_name,
                "ATTOTEAM_STATE_DIR": str(runtime.layout.root),
            },
            model=runtime.config.model,
            prompt=trigger,
        )
        await mux.send_keys(pane_id, command)
        record.launched = True

    if requires_bridge(record.interop_mode):
        await bridge.bootstrap(record, task)

    runtime.state_store.save_worker(record)
    runtime.state_store.write_heartbeat(
        HeartbeatRecord(worker_name=worker_name, last_heartbeat_at=utc_now_iso())
    )
    runtime.active_workers[worker_name] = ActiveWorker(task_id=task.id, pane_id=pane_id)
    if worker_name not in runtime.worker_names:
        runtime.worker_names.append(worker_name)
    runtime.state_store.append_event(
        "worker.spawned",
        {"worker_name": worker_name, "task_id": task.id, "pane_id": pane_id, "agent_kind": record.agent_kind},
    )
    logger.info("Worker %s started task %s in pane %s", worker_name, task.id, pane_id)
    return pane_id
