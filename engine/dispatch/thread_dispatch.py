# engine/dispatch/thread_dispatch.py

"""
Thread dispatch adapter.

Responsibilities:
- Bridge scheduler -> worker threads
- Dispatch exactly ONE attempt per call
- Translate runner exceptions into Completion messages
- Never retry
- Never schedule
- Never inspect DAG
"""

import threading
import time
from typing import Callable, Sequence

from engine.dispatch.callbacks import (
    CompletionCallback,
    notify_task_failure,
    notify_task_success,
)
from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from engine.scheduler.exceptions import (
    InfrastructureError,
    TaskCancelled,
    TaskFailure,
    TaskTimeout,
)
from engine.scheduler.types import TaskState
from scanner.guardrails import redact_secrets
from scanner.models import RawFinding
from scanner.tools.utils import get_logger

log = get_logger("engine.dispatch")

TaskRunner = Callable[[ScanTask, TaskContext], Sequence[RawFinding]]


class ThreadDispatcher:
    """
    Stateless dispatcher.

    Scheduler calls this.
    One daemon thread executes each attempt, so an attempt that
    ignores its cancel signal can be abandoned without blocking
    the pool.
    """

    def __init__(self, runner: TaskRunner, on_complete: CompletionCallback):
        self.runner = runner
        self.on_complete = on_complete

    def dispatch(self, attempt_id: int, task: ScanTask, context: TaskContext) -> None:
        thread = threading.Thread(
            target=self._execute,
            args=(attempt_id, task, context),
            name=f"scangate-{task.task_id}-{context.attempt}",
            daemon=True,
        )
        thread.start()

    # -------------------------
    # WORKER SIDE
    # -------------------------

    def _execute(self, attempt_id: int, task: ScanTask, context: TaskContext) -> None:
        started = time.monotonic()
        secrets = list(context.credentials.values())

        def fail(state: TaskState, exc: BaseException, *, cancelled: bool = False) -> None:
            message = redact_secrets(str(exc) or type(exc).__name__, secrets)
            notify_task_failure(
                self.on_complete,
                attempt_id=attempt_id,
                task_id=task.task_id,
                state=state,
                error=message,
                duration=time.monotonic() - started,
                cancelled=cancelled,
            )

        try:
            findings = tuple(self.runner(task, context))
        except TaskCancelled as exc:
            fail(TaskState.ERROR, exc, cancelled=True)
        except TaskTimeout as exc:
            fail(TaskState.TIMED_OUT, exc)
        except TaskFailure as exc:
            fail(TaskState.FAILURE, exc)
        except InfrastructureError as exc:
            fail(TaskState.ERROR, exc)
        except Exception as exc:
            log.exception(f"Unexpected error in task {task.task_id}")
            fail(TaskState.ERROR, RuntimeError(f"{type(exc).__name__}: {exc}"))
        else:
            notify_task_success(
                self.on_complete,
                attempt_id=attempt_id,
                task_id=task.task_id,
                findings=findings,
                duration=time.monotonic() - started,
            )
