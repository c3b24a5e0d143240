"""Task channels: how a task payload reaches a worker and how completion comes back."""

from attoteam.channel.base import TaskChannel
from attoteam.channel.file import FileTaskChannel
from attoteam.channel.memory import QueueTaskChannel

__all__ = ["FileTaskChannel", "QueueTaskChannel", "TaskChannel"]
