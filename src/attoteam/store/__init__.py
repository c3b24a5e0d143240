"""Durable team state: task records, worker roster and manifest."""

from attoteam.store.roster import TeamStateStore
from attoteam.store.tasks import TaskStore

__all__ = ["TaskStore", "TeamStateStore"]
