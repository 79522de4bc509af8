from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from engine.scheduler.types import TaskState
from scanner.models import RawFinding


@dataclass(frozen=True)
class Completion:
    """
    Message a worker posts back to the scheduler.

    The ONLY way execution influences scheduler state.
    """

    attempt_id: int
    task_id: str
    state: TaskState
    duration: float
    findings: Tuple[RawFinding, ...] = ()
    error: Optional[str] = None
    cancelled: bool = False


CompletionCallback = Callable[[Completion], None]


def notify_task_success(
    callback: CompletionCallback,
    *,
    attempt_id: int,
    task_id: str,
    findings: Tuple[RawFinding, ...],
    duration: float,
) -> None:
    callback(
        Completion(
            attempt_id=attempt_id,
            task_id=task_id,
            state=TaskState.SUCCESS,
            duration=duration,
            findings=findings,
        )
    )


def notify_task_failure(
    callback: CompletionCallback,
    *,
    attempt_id: int,
    task_id: str,
    state: TaskState,
    error: str,
    duration: float,
    cancelled: bool = False,
) -> None:
    callback(
        Completion(
            attempt_id=attempt_id,
            task_id=task_id,
            state=state,
            duration=duration,
            error=error,
            cancelled=cancelled,
        )
    )
