"""Agent binary resolution and CLI detection."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable

from attoteam.agents.contracts import get_contract


@dataclass(slots=True)
class CliInfo:
    available: bool
    version: str | None = None
    path: str | None = None


class AgentResolver:
    """Resolves an agent kind to the absolute path of its CLI binary.

    Results (including misses) are cached per instance; call
    :meth:`clear_cache` after installing a CLI mid-run.
    """

    def __init__(self, which: Callable[[str], str | None] = shutil.which) -> None:
        self._which = which
        self._cache: dict[str, str | None] = {}

    def resolve(self, agent_kind: str) -> str | None:
        kind = agent_kind.lower()
        if kind not in self._cache:
            try:
                binary = get_contract(kind).binary
            except ValueError:
                self._cache[kind] = None
            else:
                self._cache[kind] = self._which(binary)
        return self._cache[kind]

    def is_available(self, agent_kind: str) -> bool:
        return self.resolve(agent_kind) is not None

    def clear_cache(self) -> None:
        self._cache.clear()


def detect_cli(binary: str, *, timeout: float = 5.0) -> CliInfo:
    path = shutil.which(binary)
    if path is None:
        return CliInfo(available=False)
    try:
        result = subprocess.run(
            [path, "--version"], capture_output=True, text=True, timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired):
        return CliInfo(available=False)
    if result.returncode != 0:
        return CliInfo(available=False)
    return CliInfo(available=True, version=result.stdout.strip(), path=path)


def detect_all_clis() -> dict[str, CliInfo]:
    return {kind: detect_cli(kind) for kind in ("claude", "codex", "gemini")}
