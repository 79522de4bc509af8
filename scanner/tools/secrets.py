import os
from typing import List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from scanner.guardrails import redact_text
from scanner.models import Category, Location, RawFinding
from .registry import register_tool
from .utils import (
    get_logger,
    line_number,
    load_json_report,
    relative_path,
    require_tool,
    run_subprocess,
)

log = get_logger("scanner.tools.secrets")


def run_gitleaks_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Gitleaks over the workspace (working tree only).

    Matches are redacted by gitleaks itself; the finding message is
    built from the rule description only, never from the match.
    """
    log.info(f"Starting Gitleaks scan on: {context.workspace}")
    require_tool("gitleaks")

    report_path = os.path.join(context.scratch_dir, "gitleaks_report.json")
    cmd = [
        "gitleaks", "detect",
        "--no-banner",
        "--no-git",
        "--redact",
        "--exit-code", "0",
        "--source", str(context.workspace),
        "--report-format", "json",
        "--report-path", report_path,
    ]

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    data = load_json_report(report_path, proc, tool="gitleaks", ok_codes=(0,))

    findings = []
    for leak in data or []:
        rule = leak.get("RuleID") or "generic-secret"
        findings.append(
            RawFinding(
                tool="gitleaks",
                rule_id=rule,
                # gitleaks has no severity vocabulary; every leak is a "secret"
                severity="SECRET",
                location=Location(
                    path=relative_path(leak.get("File"), context.workspace),
                    start_line=line_number(leak.get("StartLine")),
                    end_line=line_number(leak.get("EndLine")),
                ),
                message=redact_text(leak.get("Description") or f"Secret matched rule {rule}"),
            )
        )

    log.info(f"Analysis complete. Found {len(findings)} leaked secrets.")
    return findings


register_tool("gitleaks", run_gitleaks_scan, category=Category.SECRET)
