import os
from typing import List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from engine.scheduler.exceptions import InfrastructureError
from scanner.models import Category, Location, RawFinding
from .registry import register_tool
from .utils import get_logger, load_json_report, require_tool, run_subprocess

log = get_logger("scanner.dast.zap")

DEFAULT_ZAP_IMAGE = "ghcr.io/zaproxy/zaproxy:stable"


def _host_user() -> str:
    # report files must stay removable by the runner that owns the scratch dir
    if hasattr(os, "getuid"):
        return f"{os.getuid()}:{os.getgid()}"
    return "zap"


def run_zap_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs the ZAP baseline scan (via Docker) against the staging URL.
    """
    target_url = context.options.get("dast_target_url")
    if not target_url:
        raise InfrastructureError("ZAP scan needs a target URL")

    log.info(f"Starting ZAP scan on: {target_url}")
    require_tool("docker")

    abs_output_dir = os.path.abspath(str(context.scratch_dir))
    cmd = [
        "docker", "run", "--rm", "--user", _host_user(),
        "-v", f"{abs_output_dir}:/zap/wrk/:rw",
        context.options.get("zap_image") or DEFAULT_ZAP_IMAGE,
        "zap-baseline.py",
        "-t", target_url,
        "-J", "zap_report.json",
        "-I",
    ]

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    # zap-baseline: 0 clean, 1 FAIL alerts, 2 WARN alerts, 3 other error
    data = load_json_report(
        os.path.join(abs_output_dir, "zap_report.json"),
        proc,
        tool="zap",
        ok_codes=(0, 1, 2),
    )

    findings = []
    for site in data.get("site", []) or []:
        for alert in site.get("alerts", []) or []:
            instances = alert.get("instances") or [{}]
            findings.append(
                RawFinding(
                    tool="zap",
                    rule_id=str(alert.get("pluginid", "unknown")),
                    severity=str(alert.get("riskcode", "0")),
                    location=Location(path=instances[0].get("uri") or target_url),
                    message=alert.get("name") or alert.get("alert", ""),
                )
            )

    log.info(f"Analysis complete. Found {len(findings)} alerts.")
    return findings


register_tool("zap", run_zap_scan, category=Category.DAST)
