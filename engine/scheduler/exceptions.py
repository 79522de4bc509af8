# engine/scheduler/exceptions.py

class TaskExecutionError(Exception):
    """Base class for errors raised while running a single task."""


class TaskFailure(TaskExecutionError):
    """Recoverable tool failure. Retried per policy."""


class TaskTimeout(TaskExecutionError):
    """The task (or its subprocess) exceeded its time limit. Never retried."""


class InfrastructureError(TaskExecutionError):
    """Subprocess launch failure or unparsable tool output."""


class TaskCancelled(TaskExecutionError):
    """The task observed its cancel signal and stopped."""
