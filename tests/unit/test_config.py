from __future__ import annotations

from pathlib import Path

import pytest

from attoteam.config.loader import config_from_dict, config_to_dict, load_team_yaml
from attoteam.errors import InvalidConfigError


def test_load_team_yaml(tmp_path: Path) -> None:
    cfg_path = tmp_path / "team.yaml"
    cfg_path.write_text(
        """team_name: refactor
worker_count: 2
agent_types: [claude, gemini]
model: sonnet
tasks:
  - Split parser module
  - subject: Add tests
    description: cover the error paths
    priority: high
worker_interop_configs:
  - worker_name: worker-2
    agent_type: codex
    interop_mode: omx
watchdog:
  interval_ms: 2000
  max_stall_strikes: 5
  bogus: 1
shutdown:
  timeout_ms: 0
""",
        encoding="utf-8",
    )
    cfg = load_team_yaml(cfg_path)
    assert cfg.team_name == "refactor"
    assert cfg.worker_count == 2
    assert cfg.agent_types == ["claude", "gemini"]
    assert cfg.model == "sonnet"
    assert [t.subject for t in cfg.tasks] == ["Split parser module", "Add tests"]
    assert cfg.tasks[1].description == "cover the error paths"
    assert cfg.watchdog.interval_ms == 2000
    assert cfg.watchdog.max_stall_strikes == 5
    assert cfg.shutdown.timeout_ms == 0
    assert cfg.cwd == str(tmp_path.resolve())
    interop = cfg.interop_for("worker-2")
    assert interop is not None
    assert interop.agent_type == "codex"
    assert interop.interop_mode == "omx"
    assert cfg.interop_for("worker-1") is None


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigError):
        load_team_yaml(tmp_path / "nope.yaml")


def test_non_mapping_document(tmp_path: Path) -> None:
    cfg_path = tmp_path / "team.yaml"
    cfg_path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(InvalidConfigError):
        load_team_yaml(cfg_path)


def test_team_name_required() -> None:
    with pytest.raises(InvalidConfigError):
        config_from_dict({"worker_count": 1})


def test_non_numeric_worker_count_rejected() -> None:
    with pytest.raises(InvalidConfigError, match="worker_count"):
        config_from_dict({"team_name": "x", "worker_count": "two"})


def test_malformed_sections_fall_back_to_defaults() -> None:
    cfg = config_from_dict({"name": "x", "watchdog": "fast", "agent_types": "codex"})
    assert cfg.team_name == "x"
    assert cfg.watchdog.interval_ms == 1000
    assert cfg.agent_types == ["codex"]


def test_dict_roundtrip_keeps_nested_sections() -> None:
    cfg = config_from_dict({"team_name": "x", "tasks": ["a"], "tmux": {"session_prefix": "t"}})
    again = config_from_dict(config_to_dict(cfg))
    assert again == cfg
