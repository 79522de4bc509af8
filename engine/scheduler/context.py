import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping


class CancelToken:
    """
    Thread-safe cancellation flag.

    Used both for a whole-pipeline abort and for a single attempt.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self):
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class TaskContext:
    """
    Everything a tool runner may touch for one attempt.

    - workspace: shared checkout, READ-ONLY for every task
    - scratch_dir: private to this attempt, destroyed afterwards
    - credentials: never logged, never copied into findings
    """

    workspace: Path
    scratch_dir: Path
    cancel: CancelToken
    attempt: int = 1
    timeout_seconds: float | None = None
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False)
    options: Mapping[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
