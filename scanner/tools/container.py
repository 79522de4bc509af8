import os
from typing import List

from engine.scheduler.context import TaskContext
from engine.scheduler.dag import ScanTask
from scanner.models import Category, RawFinding
from .registry import register_tool
from .sca import parse_trivy_report
from .utils import get_logger, load_json_report, require_tool, run_subprocess

log = get_logger("scanner.tools.container")

DEFAULT_IMAGE = "app:latest"


def run_trivy_image_scan(task: ScanTask, context: TaskContext) -> List[RawFinding]:
    """
    Runs Trivy against the image produced by the build task.
    """
    image = context.options.get("container_image") or DEFAULT_IMAGE
    log.info(f"Starting Trivy image scan on: {image}")
    require_tool("trivy")

    report_path = os.path.join(context.scratch_dir, "trivy_image_report.json")
    cmd = [
        "trivy", "image",
        "--scanners", "vuln",
        "--format", "json",
        "--output", report_path,
        "--quiet",
        image,
    ]

    proc = run_subprocess(
        cmd,
        cancel=context.cancel,
        timeout=context.timeout_seconds,
        env=context.env,
    )
    data = load_json_report(report_path, proc, tool="trivy-image", ok_codes=(0,))

    findings = parse_trivy_report(data, tool="trivy-image")
    log.info(f"Analysis complete. Found {len(findings)} vulnerabilities.")
    return findings


register_tool("trivy-image", run_trivy_image_scan, category=Category.CONTAINER)
