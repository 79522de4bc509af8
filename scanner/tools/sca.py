import os
from typing import Any, Dict, List, Optional, Tuple

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from scanner.models import Category, Location, RawFinding
from .registry import register_tool
from .utils import (
    SCAN_EXCLUDE_DIRS,
    get_logger,
    load_json_report,
    relative_path,
    require_tool,
    run_subprocess,
)

log = get_logger("scanner.tools.sca")


def package_message(name: Optional[str], version: Optional[str]) -> str:
    """
    Canonical message for a vulnerable package.

    Every dependency/container adapter uses it, so two tools reporting
    the same CVE on the same package produce the same fingerprint.
    """
    return f"{name or 'unknown'} {version or 'unknown'}".strip()


def parse_trivy_report(data: Dict[str, Any], *, tool: str, workspace: Optional[str] = None) -> List[RawFinding]:
    findings = []
    for result in data.get("Results", []) or []:
        target = result.get("Target") or "."
        path = relative_path(target, workspace) if workspace else target
        for vuln in result.get("Vulnerabilities", []) or []:
            findings.append(
                RawFinding(
                    tool=tool,
                    rule_id=vuln.get("VulnerabilityID", "unknown"),
                    severity=str(vuln.get("Severity", "UNKNOWN")),
                    location=Location(path=path),
                    message=package_message(vuln.get("PkgName"), vuln.get("InstalledVersion")),
                    help_uri=vuln.get("PrimaryURL"),
                )
            )
    return findings


def run_trivy_fs_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Trivy in filesystem mode against the dependency manifests.
    """
    log.info(f"Starting Trivy filesystem scan on: {context.workspace}")
    require_tool("trivy")

    report_path = os.path.join(context.scratch_dir, "trivy_fs_report.json")
    cmd = [
        "trivy", "fs",
        "--scanners", "vuln",
        "--format", "json",
        "--output", report_path,
        "--quiet",
    ]
    for exclude in SCAN_EXCLUDE_DIRS:
        cmd.extend(["--skip-dirs", f"**/{exclude}"])
    cmd.append(str(context.workspace))

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    data = load_json_report(report_path, proc, tool="trivy-fs", ok_codes=(0,))

    findings = parse_trivy_report(data, tool="trivy-fs", workspace=str(context.workspace))
    log.info(f"Analysis complete. Found {len(findings)} vulnerabilities.")
    return findings


def _package_coordinates(dep: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    # package ids are purls: pkg:pypi/requests@2.19.0
    for package in dep.get("packages", []) or []:
        purl = package.get("id") or ""
        if purl.startswith("pkg:") and "@" in purl:
            name_part, version = purl.rsplit("@", 1)
            return name_part.rsplit("/", 1)[-1], version
    return dep.get("fileName"), None


def run_dependency_check_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs OWASP Dependency-Check.
    """
    log.info(f"Starting Dependency-Check scan on: {context.workspace}")
    require_tool("dependency-check")

    report_path = os.path.join(context.scratch_dir, "dependency-check-report.json")
    tool_log_file = os.path.join(context.scratch_dir, "dependency-check.log")

    cmd = [
        "dependency-check", "--scan", str(context.workspace),
        "--format", "JSON", "--out", str(context.scratch_dir),
        "--log", tool_log_file,
    ]

    api_key = context.credentials.get("NVD_API_KEY")
    if api_key:
        cmd.extend(["--nvdApiKey", api_key])

    for exclude in SCAN_EXCLUDE_DIRS:
        cmd.extend(["--exclude", f"**/{exclude}/**"])

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    if proc.returncode != 0 and os.path.exists(tool_log_file):
        with open(tool_log_file, "r", encoding="utf-8", errors="replace") as f:
            last_lines = "".join(f.readlines()[-20:])
        log.error(f"--- TAIL OF DEPENDENCY-CHECK LOG ---\n{last_lines}")

    report = load_json_report(report_path, proc, tool="dependency-check", ok_codes=(0,))

    findings = []
    for dep in report.get("dependencies", []) or []:
        name, version = _package_coordinates(dep)
        path = relative_path(dep.get("filePath") or dep.get("fileName"), str(context.workspace))
        for vuln in dep.get("vulnerabilities", []) or []:
            references = vuln.get("references") or []
            findings.append(
                RawFinding(
                    tool="dependency-check",
                    rule_id=vuln.get("name", "unknown"),
                    severity=str(vuln.get("severity", "UNKNOWN")),
                    location=Location(path=path),
                    message=package_message(name, version),
                    help_uri=references[0].get("url") if references else None,
                )
            )

    log.info(f"Analysis complete. Found {len(findings)} vulnerabilities.")
    return findings


register_tool("trivy-fs", run_trivy_fs_scan, category=Category.DEPENDENCY)
register_tool("dependency-check", run_dependency_check_scan, category=Category.DEPENDENCY)
