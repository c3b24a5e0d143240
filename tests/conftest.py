"""Global test fixtures for attoteam."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from attoteam.agents.resolver import AgentResolver
from attoteam.config.schema import TaskSeed, TeamConfig, WatchdogConfig
from attoteam.protocol.models import TeamLayout
from attoteam.store.roster import TeamStateStore
from attoteam.store.tasks import TaskStore

from helpers.fakes import FakeMultiplexer


@pytest.fixture(autouse=True)
def _no_tmux_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests never run as if inside the developer's own tmux session."""
    monkeypatch.delenv("TMUX", raising=False)
    monkeypatch.delenv("TMUX_PANE", raising=False)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Drop the root handlers setup_logging() installs during a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def layout(tmp_path: Path) -> TeamLayout:
    return TeamLayout.for_team(tmp_path, "alpha")


@pytest.fixture
def task_store(layout: TeamLayout) -> TaskStore:
    return TaskStore(layout)


@pytest.fixture
def state_store(layout: TeamLayout) -> TeamStateStore:
    return TeamStateStore(layout)


@pytest.fixture
def mux() -> FakeMultiplexer:
    return FakeMultiplexer()


@pytest.fixture
def resolver() -> AgentResolver:
    return AgentResolver(which=lambda binary: f"/usr/local/bin/{binary}")


@pytest.fixture
def team_config(tmp_path: Path) -> TeamConfig:
    return TeamConfig(
        team_name="alpha",
        worker_count=2,
        agent_types=["claude", "codex"],
        tasks=[TaskSeed("Write parser"), TaskSeed("Write tests"), TaskSeed("Update docs")],
        cwd=str(tmp_path),
        watchdog=WatchdogConfig(interval_ms=50),
    )
