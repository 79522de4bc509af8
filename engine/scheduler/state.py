from typing import Optional, Tuple

from scanner.models import RawFinding
from .types import TaskState


class TaskRuntimeState:
    """
    Scheduler-owned runtime state.

    Represents HOW a task is progressing.
    Exists only in memory, touched only by the coordinator loop.
    """

    __slots__ = (
        "task_id",
        "state",
        "attempts",
        "findings",
        "last_error",
        "skip_reason",
        "duration",
        "retry_at",
    )

    def __init__(self, task_id: str):
        self.task_id: str = task_id
        self.state: TaskState = TaskState.PENDING
        self.attempts: int = 0
        self.findings: Tuple[RawFinding, ...] = ()
        self.last_error: Optional[str] = None
        self.skip_reason: Optional[str] = None
        self.duration: float = 0.0
        self.retry_at: Optional[float] = None
