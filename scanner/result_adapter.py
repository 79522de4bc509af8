# scanner/result_adapter.py

from typing import Any, Sequence, Tuple

import pydantic

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from engine.scheduler.exceptions import InfrastructureError
from scanner.models import RawFinding
from scanner.tools.registry import get_tool, has_tool


def adapt_tool_result(tool: str, raw_result: Any) -> Tuple[RawFinding, ...]:
    """
    Normalize raw tool output into an ordered tuple of RawFinding.

    Defensive but permissive:
    - accepts RawFinding instances or plain dicts
    - rejects anything that is not a sequence of findings
    - does NOT reinterpret severities (the aggregator does)
    """

    if raw_result is None:
        return ()

    if isinstance(raw_result, (str, bytes, dict)) or not isinstance(raw_result, Sequence):
        raise InfrastructureError(
            f"{tool} returned {type(raw_result).__name__}, expected a list of findings"
        )

    findings = []
    for index, item in enumerate(raw_result):
        if isinstance(item, RawFinding):
            findings.append(item)
            continue
        try:
            findings.append(RawFinding.model_validate(item))
        except pydantic.ValidationError as exc:
            raise InfrastructureError(
                f"{tool} returned a malformed finding at index {index}: "
                f"{exc.error_count()} validation error(s)"
            ) from exc

    return tuple(findings)


def run_task(task: ScanTask, context: TaskContext) -> Tuple[RawFinding, ...]:
    """
    Default task runner: look the tool up in the registry, run it,
    validate what it returned.
    """

    if not has_tool(task.tool):
        raise InfrastructureError(f"No tool registered: {task.tool}")

    runner = get_tool(task.tool)
    return adapt_tool_result(task.tool, runner(task, context))
