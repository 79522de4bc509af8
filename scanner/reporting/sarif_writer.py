"""
SARIF 2.1.0 export.

One run per scanner that took part, so code-scanning UIs can show
which tool raised what. A finding merged from several tools is listed
once, under the first of its tools; the others are recorded in the
result's properties.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from scanner.models import AggregatedReport, Finding, Severity
from scanner.reporting.exceptions import ReportIOError

SARIF_VERSION = "2.1.0"
SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"

# SARIF level mapping
SARIF_LEVEL_MAP = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
}

# Numeric security-severity, as read by GitHub code scanning
SECURITY_SEVERITY_MAP = {
    Severity.CRITICAL: "9.5",
    Severity.HIGH: "8.0",
    Severity.MEDIUM: "5.5",
    Severity.LOW: "2.0",
}


def _create_rule(finding: Finding) -> Dict[str, Any]:
    rule: Dict[str, Any] = {
        "id": finding.rule_id,
        "shortDescription": {"text": finding.description or finding.rule_id},
        "defaultConfiguration": {"level": SARIF_LEVEL_MAP[finding.severity]},
        "properties": {
            "security-severity": SECURITY_SEVERITY_MAP[finding.severity],
            "tags": ["security", finding.category.value],
        },
    }
    if finding.help_uri:
        rule["helpUri"] = finding.help_uri
    return rule


def _create_result(finding: Finding, rule_index: int) -> Dict[str, Any]:
    region: Dict[str, int] = {}
    if finding.location.start_line is not None:
        region["startLine"] = finding.location.start_line
        if finding.location.end_line is not None:
            region["endLine"] = finding.location.end_line

    physical: Dict[str, Any] = {"artifactLocation": {"uri": finding.location.path}}
    if region:
        physical["region"] = region

    return {
        "ruleId": finding.rule_id,
        "ruleIndex": rule_index,
        "level": SARIF_LEVEL_MAP[finding.severity],
        "message": {"text": finding.description or finding.rule_id},
        "locations": [{"physicalLocation": physical}],
        "partialFingerprints": {"scangate/v1": finding.fingerprint},
        "properties": {
            "category": finding.category.value,
            "severity": finding.severity.value,
            "tools": list(finding.tools),
        },
    }


def build_sarif(report: AggregatedReport) -> Dict[str, Any]:
    # scanners that completed, in plan order
    tool_names: List[str] = []
    for summary in report.tools:
        if summary.category is not None and summary.status == "success" and summary.tool not in tool_names:
            tool_names.append(summary.tool)

    by_tool: Dict[str, List[Finding]] = {name: [] for name in tool_names}
    for finding in report.all_findings():
        primary = finding.tools[0]
        by_tool.setdefault(primary, []).append(finding)

    runs = []
    for name, findings in by_tool.items():
        rules: List[Dict[str, Any]] = []
        rule_index: Dict[str, int] = {}
        results = []
        for finding in findings:
            if finding.rule_id not in rule_index:
                rule_index[finding.rule_id] = len(rules)
                rules.append(_create_rule(finding))
            results.append(_create_result(finding, rule_index[finding.rule_id]))

        runs.append({
            "tool": {"driver": {"name": name, "rules": rules}},
            "automationDetails": {"id": f"scangate/{report.run_id}/{name}"},
            "results": results,
        })

    return {
        "version": SARIF_VERSION,
        "$schema": SARIF_SCHEMA,
        "runs": runs,
    }


def write_sarif_report(report: AggregatedReport, output_path: str) -> str:
    out = Path(output_path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", encoding="utf-8") as f:
            json.dump(build_sarif(report), f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as exc:
        raise ReportIOError(f"Cannot write SARIF report to {out}: {exc}") from exc
    return str(out)
