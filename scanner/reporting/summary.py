from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from scanner.models import AggregatedReport, Severity, Verdict

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}

STATUS_STYLES = {
    "success": "green",
    "failure": "red",
    "timed-out": "red",
    "error": "bold red",
    "skipped": "dim",
}


def _verdict_text(verdict: Verdict) -> Text:
    if verdict == Verdict.PASS:
        return Text("PASS", style="bold green")
    return Text("FAIL", style="bold red")


def render_summary(
    report: AggregatedReport,
    console: Optional[Console] = None,
    *,
    max_findings: int = 20,
) -> None:
    """
    Human readable run summary: gate per category, then per-tool
    execution, then the most severe findings.
    """
    console = console or Console()

    gate = Table(title="Security Gate", show_header=True, header_style="bold magenta")
    gate.add_column("Category", style="bold white")
    gate.add_column("Threshold")
    for severity in sorted(Severity, reverse=True):
        gate.add_column(severity.value.capitalize(), justify="right", style=SEVERITY_STYLES[severity])
    gate.add_column("Verdict")

    for category, cat_report in report.categories.items():
        gate.add_row(
            category.value,
            cat_report.threshold.value,
            *[str(cat_report.counts.get(sev.value, 0)) for sev in sorted(Severity, reverse=True)],
            _verdict_text(cat_report.verdict),
        )
    console.print(gate)

    tools = Table(title="Tool Execution", show_header=True, header_style="bold magenta")
    tools.add_column("Task", style="dim")
    tools.add_column("Status")
    tools.add_column("Attempts", justify="right")
    tools.add_column("Duration", justify="right")
    tools.add_column("Findings", justify="right")
    tools.add_column("Note")

    for summary in report.tools:
        note = summary.skip_reason or summary.error or "; ".join(summary.warnings)
        tools.add_row(
            summary.task_id,
            Text(summary.status, style=STATUS_STYLES.get(summary.status, "white")),
            str(summary.attempts),
            f"{summary.duration_seconds:.1f}s",
            str(summary.finding_count),
            (note or "")[:80],
        )
    console.print(tools)

    findings = sorted(
        report.all_findings(),
        key=lambda f: (-f.severity.rank, f.category.value, f.location.path, f.location.start_line or 0),
    )
    if findings:
        top = Table(title="Top Findings", show_header=True, header_style="bold magenta")
        top.add_column("Severity")
        top.add_column("Category")
        top.add_column("Rule")
        top.add_column("Location", style="dim")
        top.add_column("Tools")
        for finding in findings[:max_findings]:
            top.add_row(
                Text(finding.severity.value, style=SEVERITY_STYLES[finding.severity]),
                finding.category.value,
                finding.rule_id,
                finding.location.describe(),
                ", ".join(finding.tools),
            )
        console.print(top)
        if len(findings) > max_findings:
            console.print(f"[dim]... {len(findings) - max_findings} more finding(s) in the JSON report[/dim]")

    border = "green" if report.passed else "red"
    console.print(
        Panel.fit(
            Text.assemble("Overall verdict: ", _verdict_text(report.verdict), f"   run {report.run_id}"),
            border_style=border,
        )
    )
