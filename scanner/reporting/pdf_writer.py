from pathlib import Path

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from scanner.models import AggregatedReport
from scanner.reporting.exceptions import ReportIOError


def write_pdf_report(
    report: AggregatedReport,
    output_path: str,
    *,
    max_findings: int = 500,
) -> str:
    """
    Generate a human-readable PDF report.

    For very large scans, limits findings to keep PDF usable.
    """

    out = Path(output_path)

    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        c = canvas.Canvas(str(out), pagesize=A4)
        width, height = A4
        y = height - 40

        def line(text: str, *, font: str = "Helvetica", size: int = 9, step: int = 12) -> None:
            nonlocal y
            if y < 40:
                c.showPage()
                y = height - 40
            c.setFont(font, size)
            c.drawString(40, y, text[:120])
            y -= step

        # Title
        line(f"scangate Security Report - {report.run_id}", font="Helvetica-Bold", size=14, step=22)
        line(f"Started {report.started_at}   Finished {report.finished_at}")
        line(f"Overall verdict: {report.verdict.value.upper()}", font="Helvetica-Bold", size=11, step=20)

        # Gate
        line("Security gate:", font="Helvetica-Bold", size=10, step=16)
        for category, cat_report in report.categories.items():
            counts = ", ".join(f"{sev}: {n}" for sev, n in cat_report.counts.items())
            line(
                f"  {category.value:<12} threshold {cat_report.threshold.value:<9} "
                f"{cat_report.verdict.value.upper():<5} ({counts})"
            )
        y -= 8

        # Tools
        line("Tool execution:", font="Helvetica-Bold", size=10, step=16)
        for summary in report.tools:
            note = summary.skip_reason or summary.error or ""
            line(
                f"  {summary.task_id:<28} {summary.status:<10} attempts {summary.attempts}  "
                f"findings {summary.finding_count}  {note}"
            )
        y -= 8

        # Findings (bounded)
        line("Findings:", font="Helvetica-Bold", size=10, step=16)
        findings = report.all_findings()
        for count, finding in enumerate(findings):
            if count >= max_findings:
                line("... output truncated ...")
                break
            line(
                f"  [{finding.severity.value.upper()}] {finding.rule_id}  "
                f"{finding.location.describe()}  ({', '.join(finding.tools)})"
            )
            if finding.description:
                line(f"      {finding.description}")

        c.save()

    except OSError as exc:
        raise ReportIOError(f"Cannot write PDF report to {out}: {exc}") from exc

    return str(out)
