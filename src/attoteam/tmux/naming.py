"""Session and token naming for tmux targets."""

from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
MAX_SESSION_NAME = 120


def sanitize_tmux_token(value: str) -> str:
    """Lowercase, collapse non-alphanumerics to ``-`` and trim; ``unknown`` if empty."""
    token = _NON_ALNUM.sub("-", value.lower()).strip("-")
    return token or "unknown"


def build_session_name(prefix: str, team_name: str) -> str:
    return f"{prefix}-{sanitize_tmux_token(team_name)}"[:MAX_SESSION_NAME]


def is_pane_id(value: str | None) -> bool:
    return bool(value) and re.fullmatch(r"%\d+", value or "") is not None
