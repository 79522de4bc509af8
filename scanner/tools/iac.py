import json
from typing import Any, List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from engine.scheduler.exceptions import InfrastructureError, TaskFailure
from scanner.models import Category, Location, RawFinding
from .registry import register_tool
from .utils import (
    SCAN_EXCLUDE_DIRS,
    get_logger,
    line_number,
    output_tail,
    relative_path,
    require_tool,
    run_subprocess,
)

log = get_logger("scanner.tools.iac")

# Checkov OSS leaves severity empty for most checks
DEFAULT_CHECKOV_SEVERITY = "MEDIUM"


def _extract_json(output: str) -> Any:
    """
    Checkov may print text before the JSON document;
    start parsing at whichever of '[' / '{' comes first.
    """
    starts = [idx for idx in (output.find("["), output.find("{")) if idx != -1]
    if not starts:
        raise ValueError("no JSON document in output")
    return json.loads(output[min(starts):])


def run_checkov_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Checkov to find security flaws in Infrastructure-as-Code.
    """
    log.info(f"Starting Checkov scan on: {context.workspace}")
    require_tool("checkov")

    # Put flags BEFORE the directory argument to avoid parsing issues
    cmd = [
        "checkov",
        "-o", "json",
        "--soft-fail",
        "--quiet",
        "--compact",
    ]
    for exclude in SCAN_EXCLUDE_DIRS:
        cmd.extend(["--skip-path", exclude])
    cmd.extend(["-d", str(context.workspace)])

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )

    if not proc.stdout.strip():
        if proc.returncode != 0:
            raise TaskFailure(f"checkov exited with code {proc.returncode}: {output_tail(proc)}")
        # nothing to scan
        return []

    try:
        data = _extract_json(proc.stdout)
    except ValueError as e:
        raise InfrastructureError(f"checkov output could not be parsed: {e}") from e

    # one report per framework, or a single dict
    reports = [data] if isinstance(data, dict) else data

    findings = []
    for report in reports:
        results = report.get("results", {}) or {}
        for check in results.get("failed_checks", []) or []:
            line_range = check.get("file_line_range") or [None, None]
            findings.append(
                RawFinding(
                    tool="checkov",
                    rule_id=check.get("check_id", "unknown"),
                    severity=str(check.get("severity") or DEFAULT_CHECKOV_SEVERITY),
                    location=Location(
                        path=relative_path(check.get("file_path"), str(context.workspace)),
                        start_line=line_number(line_range[0]),
                        end_line=line_number(line_range[-1]),
                    ),
                    message=check.get("check_name") or check.get("check_id", ""),
                    help_uri=check.get("guideline"),
                )
            )

    log.info(f"Checkov scan complete. Findings: {len(findings)}")
    return findings


register_tool("checkov", run_checkov_scan, category=Category.IAC)
