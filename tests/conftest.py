import dataclasses
import os
import sys
import threading

import pytest

# Ensure project root is on sys.path so top-level packages (e.g., engine, scanner) are importable
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from engine.scheduler.dag import ExecutionPlan, ScanTask  # noqa: E402
from scanner.models import Category, Location, RawFinding  # noqa: E402


def pytest_sessionstart(session):
    # keep scanner credentials from the developer's shell out of tests
    for name in ("NVD_API_KEY", "NOTIFICATION_WEBHOOK_URL"):
        os.environ.pop(name, None)


def make_task(
    task_id,
    deps=(),
    *,
    category=Category.SAST,
    tool=None,
    timeout=5.0,
    max_retries=0,
    idempotent=True,
    best_effort=False,
    index=0,
):
    return ScanTask(
        task_id=task_id,
        category=category,
        tool=tool or task_id,
        dependencies=frozenset(deps),
        timeout_seconds=timeout,
        max_retries=max_retries,
        idempotent=idempotent,
        best_effort=best_effort,
        declaration_index=index,
    )


def make_plan(*tasks):
    indexed = [
        dataclasses.replace(t, declaration_index=i)
        for i, t in enumerate(tasks)
    ]
    categories = []
    for t in indexed:
        if t.category is not None and t.category not in categories:
            categories.append(t.category)
    return ExecutionPlan(tasks=tuple(indexed), enabled_categories=tuple(categories))


def raw_finding(tool, severity, *, rule_id="rule-1", path="src/app.py", line=10, message="Something bad"):
    return RawFinding(
        tool=tool,
        rule_id=rule_id,
        severity=severity,
        location=Location(path=path, start_line=line, end_line=line),
        message=message,
    )


class RecordingRunner:
    """
    Fake task runner.

    behaviours: task_id -> callable(task, context) or list of callables
    (one per attempt). Unlisted tasks succeed with no findings.
    """

    def __init__(self, behaviours=None):
        self.behaviours = dict(behaviours or {})
        self.started = []
        self.contexts = {}
        self._lock = threading.Lock()

    def __call__(self, task, context):
        with self._lock:
            self.started.append(task.task_id)
            self.contexts.setdefault(task.task_id, []).append(context)
        behaviour = self.behaviours.get(task.task_id)
        if isinstance(behaviour, list):
            behaviour = behaviour[min(context.attempt, len(behaviour)) - 1]
        if behaviour is None:
            return []
        return behaviour(task, context)


@pytest.fixture
def recording_runner():
    return RecordingRunner
