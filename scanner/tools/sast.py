import os
from typing import List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from scanner.models import Category, Location, RawFinding
from .registry import register_tool
from .utils import (
    SCAN_EXCLUDE_DIRS,
    get_logger,
    line_number,
    load_json_report,
    relative_path,
    require_tool,
    run_subprocess,
)

log = get_logger("scanner.tools.sast")


def run_semgrep_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Semgrep to find security flaws in the source code.
    """
    log.info(f"Starting Semgrep scan on: {context.workspace}")
    require_tool("semgrep")

    report_path = os.path.join(context.scratch_dir, "semgrep_report.json")
    cmd = [
        "semgrep", "scan",
        "--config", context.options.get("semgrep_config", "auto"),
        "--json",
        "--output", report_path,
        "--metrics", "off",
        "--quiet",
    ]
    for exclude in SCAN_EXCLUDE_DIRS:
        cmd.extend(["--exclude", exclude])
    cmd.append(str(context.workspace))

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        cwd=str(context.workspace),
        env=context.env,
    )
    data = load_json_report(report_path, proc, tool="semgrep")

    findings = []
    for res in data.get("results", []):
        extra = res.get("extra", {})
        metadata = extra.get("metadata", {}) or {}
        references = metadata.get("references") or []
        findings.append(
            RawFinding(
                tool="semgrep",
                rule_id=res.get("check_id", "unknown"),
                severity=str(extra.get("severity", "INFO")),
                location=Location(
                    path=relative_path(res.get("path"), context.workspace),
                    start_line=line_number(res.get("start", {}).get("line")),
                    end_line=line_number(res.get("end", {}).get("line")),
                ),
                message=extra.get("message") or res.get("check_id", ""),
                help_uri=metadata.get("source") or (references[0] if references else None),
            )
        )

    log.info(f"Analysis complete. Found {len(findings)} issues.")
    return findings


def run_bandit_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Bandit (Python-only SAST).
    """
    log.info(f"Starting Bandit scan on: {context.workspace}")
    require_tool("bandit")

    report_path = os.path.join(context.scratch_dir, "bandit_report.json")
    cmd = [
        "bandit", "-r", str(context.workspace),
        "-f", "json",
        "-o", report_path,
        "-q",
        "-x", ",".join(SCAN_EXCLUDE_DIRS),
    ]

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    data = load_json_report(report_path, proc, tool="bandit")

    findings = []
    for res in data.get("results", []):
        line_range = res.get("line_range") or []
        findings.append(
            RawFinding(
                tool="bandit",
                rule_id=res.get("test_id", "unknown"),
                severity=str(res.get("issue_severity", "UNDEFINED")),
                location=Location(
                    path=relative_path(res.get("filename"), context.workspace),
                    start_line=line_number(res.get("line_number")),
                    end_line=line_number(line_range[-1]) if line_range else None,
                ),
                message=res.get("issue_text", ""),
                help_uri=res.get("more_info"),
            )
        )

    log.info(f"Analysis complete. Found {len(findings)} issues.")
    return findings


register_tool("semgrep", run_semgrep_scan, category=Category.SAST)
register_tool("bandit", run_bandit_scan, category=Category.SAST)
