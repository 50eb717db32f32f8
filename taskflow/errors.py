"""
Exception types raised by the task queue.
"""


class TaskflowError(Exception):
    """Base class for all task queue errors."""


class InvalidTransition(TaskflowError):
    """A task was asked to move between states that are not connected."""

    def __init__(self, task_id: str, current: str, target: str):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id}: illegal transition {current} -> {target}")


class TaskInputError(TaskflowError):
    """The caller supplied a malformed task payload or config value."""


class TaskNotFound(TaskflowError):
    """An administrative operation referenced a task that does not qualify."""
