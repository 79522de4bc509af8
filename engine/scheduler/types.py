from enum import Enum


class TaskState(str, Enum):
    """
    Finite-state machine for task execution.

    PENDING -> READY -> RUNNING -> {SUCCESS, FAILURE, TIMED_OUT, SKIPPED, ERROR}
    """

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed-out"
    SKIPPED = "skipped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    TaskState.SUCCESS,
    TaskState.FAILURE,
    TaskState.TIMED_OUT,
    TaskState.SKIPPED,
    TaskState.ERROR,
})

# Terminal states that count as "did not produce its output"
UNSUCCESSFUL_STATES = frozenset({
    TaskState.FAILURE,
    TaskState.TIMED_OUT,
    TaskState.ERROR,
})


class SkipReason(str, Enum):
    UPSTREAM_CANCELLED = "upstream-cancelled"
    UPSTREAM_FAILED = "upstream-failed"
    PIPELINE_ABORTED = "pipeline-aborted"
