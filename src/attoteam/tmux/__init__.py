"""Pane multiplexer adapter (tmux)."""

from attoteam.tmux.base import PaneMultiplexer, TeamSession
from attoteam.tmux.client import TmuxMultiplexer, TmuxResult
from attoteam.tmux.naming import build_session_name, sanitize_tmux_token

__all__ = [
    "PaneMultiplexer",
    "TeamSession",
    "TmuxMultiplexer",
    "TmuxResult",
    "build_session_name",
    "sanitize_tmux_token",
]
