"""Fail-open wrapper around an interop bridge transport.

A bridge failure degrades one worker (no protocol translation) but must
never fail a spawn, roll back a task claim, or crash the watchdog.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Protocol

from attoteam.errors import InteropBootstrapFailedError
from attoteam.protocol.models import CompletionResult, TaskRecord, WorkerRecord

logger = logging.getLogger(__name__)

_NO_BRIDGE_MODES = frozenset({"", "none", "off", "disabled"})


def requires_bridge(interop_mode: str | None) -> bool:
    return interop_mode is not None and interop_mode.strip().lower() not in _NO_BRIDGE_MODES


class InteropBridge(Protocol):
    async def bridge_bootstrap_to_omx(self, worker: WorkerRecord, task: TaskRecord) -> None: ...

    async def poll_omx_completion(self, worker: WorkerRecord) -> CompletionResult | None: ...


class NullInteropBridge:
    """Bridge used when nothing is configured: bootstrap is a no-op, never completes."""

    async def bridge_bootstrap_to_omx(self, worker: WorkerRecord, task: TaskRecord) -> None:
        logger.debug("No interop transport configured for %s", worker.worker_name)

    async def poll_omx_completion(self, worker: WorkerRecord) -> CompletionResult | None:
        return None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class InteropBridgeAdapter:
    def __init__(self, bridge: InteropBridge | None = None) -> None:
        self.bridge: InteropBridge = bridge or NullInteropBridge()

    async def bootstrap(self, worker: WorkerRecord, task: TaskRecord) -> bool:
        """Bootstrap ``worker`` for ``task``; ``False`` (plus one warning) on failure."""
        try:
            await _maybe_await(self.bridge.bridge_bootstrap_to_omx(worker, task))
        except Exception as exc:
            err = InteropBootstrapFailedError(worker.worker_name, task.id, exc)
            logger.warning("%s; worker continues without interop translation", err)
            return False
        return True

    async def poll_completion(self, worker: WorkerRecord) -> CompletionResult | None:
        try:
            result = await _maybe_await(self.bridge.poll_omx_completion(worker))
        except Exception as exc:
            logger.warning("Interop completion poll failed for %s: %s", worker.worker_name, exc)
            return None
        if result is None or isinstance(result, CompletionResult):
            return result
        logger.warning(
            "Interop bridge returned %s for %s, expected CompletionResult",
            type(result).__name__,
            worker.worker_name,
        )
        return None
