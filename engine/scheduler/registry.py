from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from engine.scheduler.context import CancelToken
from engine.scheduler.resources import ExecutionLease


@dataclass
class Attempt:
    """
    One running execution of a task.

    attempt_id is unique per scheduler run; completions carrying an
    unknown attempt_id belong to abandoned attempts and are ignored.
    """

    attempt_id: int
    task_id: str
    number: int
    lease: ExecutionLease
    cancel: CancelToken
    started_at: float
    deadline: float
    grace_deadline: Optional[float] = None
    cancel_cause: Optional[str] = None


class InFlightRegistry:
    """
    Tracks currently running attempts.

    Single source of truth for:
    - what is running
    - which lease each attempt holds
    """

    __slots__ = ("_attempts",)

    def __init__(self):
        self._attempts: Dict[int, Attempt] = {}

    def add(self, attempt: Attempt) -> None:
        if attempt.attempt_id in self._attempts:
            raise RuntimeError(f"Attempt already in flight: {attempt.attempt_id}")
        if self.by_task(attempt.task_id) is not None:
            raise RuntimeError(f"Task already in flight: {attempt.task_id}")
        self._attempts[attempt.attempt_id] = attempt

    def remove(self, attempt_id: int) -> Attempt:
        if attempt_id not in self._attempts:
            raise RuntimeError(f"Attempt not found in flight: {attempt_id}")
        return self._attempts.pop(attempt_id)

    def get(self, attempt_id: int) -> Optional[Attempt]:
        return self._attempts.get(attempt_id)

    def by_task(self, task_id: str) -> Optional[Attempt]:
        for attempt in self._attempts.values():
            if attempt.task_id == task_id:
                return attempt
        return None

    def __contains__(self, attempt_id: int) -> bool:
        return attempt_id in self._attempts

    def __len__(self) -> int:
        return len(self._attempts)

    def __iter__(self) -> Iterator[Attempt]:
        return iter(list(self._attempts.values()))
