import time
from pathlib import Path
from queue import Empty, Queue
from typing import Dict, Mapping, Optional

from engine.dispatch.callbacks import Completion
from engine.dispatch.thread_dispatch import TaskRunner, ThreadDispatcher
from scanner.models import TaskResult
from scanner.tools.utils import get_logger

from .context import CancelToken, TaskContext
from .dag import ExecutionPlan, ScanTask
from .metrics import SchedulerMetrics
from .queue import SchedulerQueue
from .registry import Attempt, InFlightRegistry
from .resources import ExecutionLease, ResourceBudget
from .state import TaskRuntimeState
from .types import SkipReason, TaskState, UNSUCCESSFUL_STATES

log = get_logger("engine.scheduler")

CAUSE_TIMEOUT = "timeout"
CAUSE_ABORT = "abort"


class ScanScheduler:
    """
    Authoritative scheduler for one pipeline run.

    Owns:
    - task FSM
    - DAG dependency resolution
    - resource budgeting (slots + scratch dirs)
    - timeout, retry and skip decisions
    - scheduling order

    Does NOT:
    - execute tasks (ThreadDispatcher does)
    - interpret findings
    - generate reports

    All decisions happen in the coordinating thread that calls run().
    Workers only talk back through the completion queue.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        runner: TaskRunner,
        *,
        max_parallel: int = 4,
        grace_period: float = 10.0,
        backoff_base: float = 2.0,
        workspace: Optional[Path] = None,
        credentials: Optional[Mapping[str, str]] = None,
        options: Optional[Mapping[str, str]] = None,
        env: Optional[Mapping[str, str]] = None,
        scratch_root: Optional[Path] = None,
        metrics: Optional[SchedulerMetrics] = None,
        poll_interval: float = 0.05,
    ):
        self.plan = plan
        self.grace_period = grace_period
        self.backoff_base = backoff_base
        self.workspace = Path(workspace) if workspace else Path.cwd()
        self.credentials = dict(credentials or {})
        self.options = dict(options or {})
        self.env = dict(env or {})
        self.scratch_root = scratch_root
        self.poll_interval = poll_interval

        # core primitives
        self.queue = SchedulerQueue()
        self.resources = ResourceBudget(max_parallel)
        self.in_flight = InFlightRegistry()
        self.metrics = metrics or SchedulerMetrics()

        self._completions: "Queue[Completion]" = Queue()
        self.dispatcher = ThreadDispatcher(runner, self._completions.put)

        # execution graph
        self.tasks: Dict[str, ScanTask] = {t.task_id: t for t in plan.tasks}
        self.runtime: Dict[str, TaskRuntimeState] = {
            t.task_id: TaskRuntimeState(t.task_id) for t in plan.tasks
        }
        self.children = plan.children()

        self._round = 0
        self._next_attempt_id = 0
        self._aborting = False

        self.metrics.inc("tasks_submitted_total", len(self.tasks))

    # -------------------------
    # MAIN LOOP
    # -------------------------

    def run(self, cancel_token: Optional[CancelToken] = None) -> Dict[str, TaskResult]:
        """
        Execute the plan until every task is terminal.

        Returns one TaskResult per task, in declaration order.
        """
        cancel_token = cancel_token or CancelToken()
        self.metrics.mark_time("run")

        try:
            self.initialize_ready_tasks()

            while not self._all_terminal():
                if cancel_token.cancelled and not self._aborting:
                    self.abort(cancel_token.reason or "cancelled")

                now = time.monotonic()
                self._promote_due_retries(now)
                if not self._aborting:
                    self.schedule_once()
                self._check_deadlines(now)

                if self._all_terminal():
                    break

                if not self.in_flight and not self.queue and not self._retry_waiting():
                    self._resolve_stall()
                    continue

                try:
                    completion = self._completions.get(timeout=self._wait_time(now))
                except Empty:
                    continue
                self.on_task_complete(completion)
        finally:
            self._release_all()

        self.metrics.observe("run_duration_seconds", self.metrics.elapsed_since("run"))
        return self.results()

    def initialize_ready_tasks(self) -> None:
        """
        Mark root DAG nodes READY.
        """
        for task in self.plan.tasks:
            if not task.dependencies:
                self._transition_to_ready(task.task_id)

    def schedule_once(self) -> int:
        """
        Dispatch READY tasks while slots are available.
        """
        scheduled = 0

        while True:
            task_id = self.queue.peek()
            if task_id is None:
                break

            rt = self.runtime[task_id]

            # lazy invalidation
            if rt.state != TaskState.READY or rt.retry_at is not None:
                self.queue.pop()
                continue

            if not self.resources.can_allocate():
                break  # backpressure

            self.queue.pop()
            self._start_attempt(self.tasks[task_id], rt)
            scheduled += 1

        self.metrics.set_gauge("ready_queue_size", len(self.queue))
        return scheduled

    def on_task_complete(self, completion: Completion) -> None:
        """
        Worker callback, applied on the coordinating thread.
        The ONLY way execution influences scheduler state.
        """
        attempt = self.in_flight.get(completion.attempt_id)
        if attempt is None:
            # abandoned after its grace period expired
            log.debug(
                f"Ignoring late completion of {completion.task_id} "
                f"(attempt {completion.attempt_id})"
            )
            self.metrics.inc("late_completions_total")
            return

        self._end_attempt(attempt)
        self._round += 1

        rt = self.runtime[completion.task_id]
        td = self.tasks[completion.task_id]
        rt.duration = completion.duration
        self.metrics.observe("task_duration_seconds", completion.duration)

        if attempt.cancel_cause == CAUSE_ABORT and completion.state != TaskState.SUCCESS:
            self._skip(td.task_id, SkipReason.PIPELINE_ABORTED)
            return

        if attempt.cancel_cause == CAUSE_TIMEOUT:
            self._finish(
                td.task_id,
                TaskState.TIMED_OUT,
                error=f"exceeded timeout of {td.timeout_seconds:g}s",
            )
            return

        if completion.state == TaskState.SUCCESS:
            rt.findings = tuple(completion.findings)
            self._finish(td.task_id, TaskState.SUCCESS)
            return

        if completion.state == TaskState.FAILURE and self._should_retry(td, rt):
            self._schedule_retry(td, rt, completion.error)
            return

        state = completion.state
        if completion.cancelled:
            # runner stopped on a signal nobody sent
            state = TaskState.ERROR
        self._finish(td.task_id, state, error=completion.error)

    def abort(self, reason: str) -> None:
        """
        Pipeline-wide cancellation.

        - READY and backing-off tasks: skipped (pipeline-aborted)
        - running attempts: signalled, given the grace period
        - PENDING tasks: skipped (upstream-cancelled)
        """
        if self._aborting:
            return
        self._aborting = True
        log.warning(f"Pipeline aborted: {reason}")
        self.metrics.inc("pipeline_aborts_total")

        now = time.monotonic()
        self.queue.drain()

        for task in self.plan.tasks:
            if self.runtime[task.task_id].state == TaskState.READY:
                self._skip(task.task_id, SkipReason.PIPELINE_ABORTED)

        for attempt in self.in_flight:
            attempt.cancel.cancel("pipeline aborted")
            attempt.cancel_cause = CAUSE_ABORT
            attempt.grace_deadline = now + self.grace_period

        for task in self.plan.tasks:
            if self.runtime[task.task_id].state == TaskState.PENDING:
                self._skip(task.task_id, SkipReason.UPSTREAM_CANCELLED)

    def results(self) -> Dict[str, TaskResult]:
        results: Dict[str, TaskResult] = {}
        for task in self.plan.tasks:
            rt = self.runtime[task.task_id]
            results[task.task_id] = TaskResult(
                task_id=task.task_id,
                category=task.category,
                tool=task.tool,
                status=rt.state.value,
                findings=rt.findings,
                duration_seconds=round(rt.duration, 3),
                attempts=rt.attempts,
                error=rt.last_error,
                skip_reason=rt.skip_reason,
            )
        return results

    # -------------------------
    # ATTEMPTS
    # -------------------------

    def _start_attempt(self, td: ScanTask, rt: TaskRuntimeState) -> None:
        try:
            lease = ExecutionLease(
                td.task_id, self.resources, scratch_root=self.scratch_root
            )
        except OSError as exc:
            log.error(f"Could not prepare scratch space for {td.task_id}: {exc}")
            rt.attempts += 1
            self._finish(td.task_id, TaskState.ERROR, error=f"scratch allocation failed: {exc}")
            return

        self._next_attempt_id += 1
        rt.attempts += 1
        rt.state = TaskState.RUNNING

        now = time.monotonic()
        attempt = Attempt(
            attempt_id=self._next_attempt_id,
            task_id=td.task_id,
            number=rt.attempts,
            lease=lease,
            cancel=CancelToken(),
            started_at=now,
            deadline=now + td.timeout_seconds,
        )
        self.in_flight.add(attempt)

        context = TaskContext(
            workspace=self.workspace,
            scratch_dir=lease.scratch_dir,
            cancel=attempt.cancel,
            attempt=attempt.number,
            timeout_seconds=td.timeout_seconds,
            credentials=self.credentials,
            options=self.options,
            env=dict(self.env),
        )

        self.metrics.inc("tasks_started_total")
        self.metrics.set_gauge("in_flight_tasks", len(self.in_flight))
        self.metrics.set_gauge("budget_in_use", self.resources.in_use)
        log.info(f"Starting {td.task_id} (attempt {attempt.number})")

        try:
            self.dispatcher.dispatch(attempt.attempt_id, td, context)
        except RuntimeError as exc:
            # thread could not be started
            self._end_attempt(attempt)
            self._finish(td.task_id, TaskState.ERROR, error=f"dispatch failed: {exc}")

    def _end_attempt(self, attempt: Attempt) -> None:
        self.in_flight.remove(attempt.attempt_id)
        attempt.lease.release()
        self.metrics.set_gauge("in_flight_tasks", len(self.in_flight))
        self.metrics.set_gauge("budget_in_use", self.resources.in_use)

    def _check_deadlines(self, now: float) -> None:
        for attempt in self.in_flight:
            if attempt.grace_deadline is None:
                if now >= attempt.deadline:
                    log.warning(
                        f"{attempt.task_id} exceeded its timeout, "
                        f"signalling cancel ({self.grace_period:g}s grace)"
                    )
                    attempt.cancel.cancel("timeout")
                    attempt.cancel_cause = CAUSE_TIMEOUT
                    attempt.grace_deadline = now + self.grace_period
                continue

            if now >= attempt.grace_deadline:
                self._abandon(attempt)

    def _abandon(self, attempt: Attempt) -> None:
        """
        The attempt ignored its cancel signal. Reclaim the lease and
        record the outcome without waiting for the worker.
        """
        log.error(f"{attempt.task_id} did not stop within the grace period, abandoning it")
        self.metrics.inc("attempts_abandoned_total")
        self._end_attempt(attempt)
        self._round += 1

        rt = self.runtime[attempt.task_id]
        rt.duration = time.monotonic() - attempt.started_at

        if attempt.cancel_cause == CAUSE_ABORT:
            self._skip(attempt.task_id, SkipReason.PIPELINE_ABORTED)
        else:
            timeout = self.tasks[attempt.task_id].timeout_seconds
            self._finish(
                attempt.task_id,
                TaskState.TIMED_OUT,
                error=f"exceeded timeout of {timeout:g}s and did not stop within the grace period",
            )

    # -------------------------
    # RETRIES
    # -------------------------

    def _should_retry(self, td: ScanTask, rt: TaskRuntimeState) -> bool:
        return td.idempotent and not self._aborting and rt.attempts <= td.max_retries

    def _schedule_retry(self, td: ScanTask, rt: TaskRuntimeState, error: Optional[str]) -> None:
        delay = self.backoff_base * 2 ** (rt.attempts - 1)
        rt.state = TaskState.READY
        rt.last_error = error
        rt.retry_at = time.monotonic() + delay
        self.metrics.inc("tasks_retried_total")
        log.warning(
            f"{td.task_id} failed (attempt {rt.attempts}), retrying in {delay:g}s: {error}"
        )

    def _promote_due_retries(self, now: float) -> None:
        for task in self.plan.tasks:
            rt = self.runtime[task.task_id]
            if rt.state == TaskState.READY and rt.retry_at is not None and now >= rt.retry_at:
                rt.retry_at = None
                self._round += 1
                self.queue.push(self._round, task.declaration_index, task.task_id)

    def _retry_waiting(self) -> bool:
        return any(
            rt.state == TaskState.READY and rt.retry_at is not None
            for rt in self.runtime.values()
        )

    # -------------------------
    # TRANSITIONS
    # -------------------------

    def _transition_to_ready(self, task_id: str) -> None:
        rt = self.runtime[task_id]

        if rt.state != TaskState.PENDING:
            return

        rt.state = TaskState.READY
        self.queue.push(self._round, self.tasks[task_id].declaration_index, task_id)
        self.metrics.inc("tasks_ready_total")

    def _finish(self, task_id: str, state: TaskState, *, error: Optional[str] = None) -> None:
        rt = self.runtime[task_id]
        rt.state = state
        rt.retry_at = None
        if state == TaskState.SUCCESS:
            rt.last_error = None
        elif error is not None:
            rt.last_error = error

        if state == TaskState.SUCCESS:
            self.metrics.inc("tasks_completed_total")
            log.info(f"{task_id} succeeded ({len(rt.findings)} raw findings)")
        elif state == TaskState.TIMED_OUT:
            self.metrics.inc("tasks_timed_out_total")
            log.error(f"{task_id} timed out")
        elif state == TaskState.FAILURE:
            self.metrics.inc("tasks_failed_total")
            log.error(f"{task_id} failed after {rt.attempts} attempt(s): {rt.last_error}")
        elif state == TaskState.ERROR:
            self.metrics.inc("tasks_errored_total")
            log.error(f"{task_id} errored: {rt.last_error}")

        for child in self.children.get(task_id, []):
            self._evaluate_readiness(child)

    def _skip(self, task_id: str, reason: SkipReason) -> None:
        rt = self.runtime[task_id]
        if rt.state.is_terminal:
            return
        rt.state = TaskState.SKIPPED
        rt.skip_reason = reason.value
        rt.retry_at = None
        self.metrics.inc("tasks_skipped_total")
        log.info(f"{task_id} skipped ({reason.value})")

        for child in self.children.get(task_id, []):
            self._evaluate_readiness(child)

    def _evaluate_readiness(self, task_id: str) -> None:
        rt = self.runtime[task_id]

        if rt.state != TaskState.PENDING:
            return

        td = self.tasks[task_id]
        parents = sorted(td.dependencies, key=lambda p: self.tasks[p].declaration_index)

        # decided on final parent states only, so completion order never shows
        if not all(self.runtime[p].state.is_terminal for p in parents):
            return

        for parent in parents:
            parent_state = self.runtime[parent].state
            if parent_state == TaskState.SKIPPED:
                self._skip(task_id, SkipReason.UPSTREAM_CANCELLED)
                return
            if parent_state in UNSUCCESSFUL_STATES and not self.tasks[parent].best_effort:
                self._skip(task_id, SkipReason.UPSTREAM_FAILED)
                return

        if self._aborting:
            self._skip(task_id, SkipReason.UPSTREAM_CANCELLED)
        else:
            self._transition_to_ready(task_id)

    # -------------------------
    # HOUSEKEEPING
    # -------------------------

    def _all_terminal(self) -> bool:
        return all(rt.state.is_terminal for rt in self.runtime.values())

    def _wait_time(self, now: float) -> float:
        wake = now + self.poll_interval
        for attempt in self.in_flight:
            wake = min(wake, attempt.grace_deadline or attempt.deadline)
        for rt in self.runtime.values():
            if rt.retry_at is not None:
                wake = min(wake, rt.retry_at)
        return max(0.0, wake - now)

    def _resolve_stall(self) -> None:
        stuck = [t.task_id for t in self.plan.tasks if not self.runtime[t.task_id].state.is_terminal]
        log.error(f"Scheduler stalled with unresolved tasks: {', '.join(stuck)}")
        for task_id in stuck:
            self._skip(task_id, SkipReason.UPSTREAM_CANCELLED)

    def _release_all(self) -> None:
        for attempt in self.in_flight:
            attempt.cancel.cancel("scheduler shutdown")
            self.in_flight.remove(attempt.attempt_id)
            attempt.lease.release()
        self.metrics.set_gauge("in_flight_tasks", 0)
        self.metrics.set_gauge("budget_in_use", self.resources.in_use)
