import shlex
from typing import List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from engine.scheduler.exceptions import InfrastructureError, TaskFailure
from scanner.models import RawFinding
from .registry import register_tool
from .utils import get_logger, output_tail, run_subprocess

log = get_logger("scanner.tools.support")


def _run_configured_command(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Build / deploy steps. The command comes from the pipeline inputs
    (`build_command`, `deploy_command`) and runs without a shell.
    A missing command means the step is handled outside scangate.
    """
    command = context.options.get(f"{task.tool}_command")
    if not command:
        log.info(f"No {task.tool} command configured, nothing to run")
        return []

    try:
        cmd = shlex.split(command)
    except ValueError as e:
        raise InfrastructureError(f"invalid {task.tool} command: {e}") from e
    if not cmd:
        return []

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        cwd=str(context.workspace),
        env=context.env,
    )
    if proc.returncode != 0:
        raise TaskFailure(f"{task.tool} exited with code {proc.returncode}: {output_tail(proc)}")

    log.info(f"{task.tool} step finished")
    return []


register_tool("build", _run_configured_command, category=None)
register_tool("deploy", _run_configured_command, category=None)
